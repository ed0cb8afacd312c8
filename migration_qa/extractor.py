"""
1.0 Extractor
Applies a test spec's selector to one part of a response.
"""

import logging
import re
from typing import Dict, Optional, Union

from migration_qa.models import EMPTY, NOT_AVAILABLE, Endpoint, FetchOutcome, Source
from migration_qa.registry import RESULT_GROUP, TestSpec

logger = logging.getLogger(__name__)


def regex_result(pattern: Optional[Union[str, "re.Pattern[str]"]], subject: Optional[str]) -> str:
    """
    Single match of `pattern` against `subject`, read from the named group "result".

    Returns:
        N/A when nothing matched, EMPTY for an empty match, the captured text otherwise.
    """
    if pattern is None or subject is None:
        return NOT_AVAILABLE
    match = re.search(pattern, subject)
    if match is None:
        return NOT_AVAILABLE
    try:
        result = match.group(RESULT_GROUP)
    except IndexError:
        return NOT_AVAILABLE
    if result is None:
        return NOT_AVAILABLE
    return result if result != "" else EMPTY


def extract(
    spec: TestSpec,
    endpoint: Endpoint,
    status_line: str,
    first_header: str,
    last_header: str,
    body: str,
) -> str:
    """Raw textual result of one test for one endpoint. Placeholder specs yield N/A."""
    if spec.is_placeholder:
        return NOT_AVAILABLE

    sources = {
        Source.BODY: body,
        Source.FIRST_HEADER: first_header,
        Source.LAST_HEADER: last_header,
    }
    selector = spec.selector_for(endpoint == Endpoint.TARGET)
    return regex_result(selector, sources[spec.source])


def extract_all(tests: Dict[str, TestSpec], outcome: FetchOutcome) -> Dict[str, str]:
    """Every applicable test's raw result for one fetched endpoint."""
    return {
        test_id: extract(
            spec,
            outcome.endpoint,
            outcome.status_line,
            outcome.first_header,
            outcome.last_header,
            outcome.body,
        )
        for test_id, spec in tests.items()
    }
