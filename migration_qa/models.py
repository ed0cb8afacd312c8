"""
1.0 Shared Data Model
Sentinels, enumerations and records passed between the QA components.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

# 1.1 Sentinel values standing in for absent data
NOT_AVAILABLE = "N/A"
EMPTY = "EMPTY"
SENTINELS = (NOT_AVAILABLE, EMPTY)

# 1.2 Retry policy
MAX_RETRIES = 3


class Endpoint(str, Enum):
    ORIGIN = "origin"
    TARGET = "target"


class Source(str, Enum):
    """Part of a response a test selector is applied to."""
    BODY = "body"
    FIRST_HEADER = "first_header"
    LAST_HEADER = "last_header"


class OutputMode(str, Enum):
    NONE = "none"
    MISSING = "missing"
    DIFFERENCE = "difference"


class Outcome(str, Enum):
    """Result of a single comparison. SKIP omits the test from the report."""
    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"

    @classmethod
    def from_bool(cls, passed: bool) -> "Outcome":
        return cls.PASS if passed else cls.FAIL


@dataclass
class URLRecord:
    """
    2.0 A URL waiting in the work queue.

    `origin_values` is only populated when the origin side comes from a
    previously saved report (test id -> stored value).
    """
    url: str
    section: str
    attempts: int = 0
    origin_values: Optional[Dict[str, str]] = None


@dataclass
class FetchOutcome:
    """2.1 Response data for one endpoint of one URL."""
    endpoint: Endpoint
    url: str
    status_line: str = ""
    first_header: str = ""
    last_header: str = ""
    body: str = ""
    http_code: int = 0
    transport_error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.transport_error is not None or not self.http_code


@dataclass
class TestResult:
    """2.2 Outcome of one test for one URL, as written to the report."""
    __test__ = False  # not a pytest class

    test_id: str
    name: str
    origin_value: str
    target_value: str
    passed: bool


@dataclass
class RunCounters:
    urls_with_failed_tests: int = 0
    urls_with_fetch_errors: int = 0
    retry_counts: Dict[str, int] = field(default_factory=dict)


class Strategy(str, Enum):
    """
    3.0 Comparison strategies, one per configurable callback name.

    Output-mode variants (`*_difference`, `*_missing`) are usually not
    configured directly; the comparator substitutes them for their base strategy.
    """
    CASE_INSENSITIVE = "compare_case_insensitive"
    COMMA_SEPARATED = "compare_comma_separated"
    DATE = "compare_date"
    PRESENCE = "compare_presence"
    WITH_REGEX = "compare_with_regex"
    WITH_TRANSFORM = "compare_with_transform"
    IMAGES = "compare_images"
    IMAGES_COUNT = "compare_images_count"
    SCHEMAS = "compare_schemas"
    SCHEMAS_DIFFERENCE = "compare_schemas_difference"
    SCHEMAS_MISSING = "compare_schemas_missing"
    GTM_DATA = "compare_gtm_data"
    GTM_DATA_DIFFERENCE = "compare_gtm_data_difference"
    GTM_DATA_MISSING = "compare_gtm_data_missing"
