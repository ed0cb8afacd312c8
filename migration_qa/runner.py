"""
1.0 Migration QA Runner
Drives the batch loop: fetch, triage, extract, compare, report.

Key features:
- Explicit FIFO work queue of URLRecords, consumed one batch window at a time
- Transport failures requeued at the tail, at most 3 retries per URL
- Client errors reported once, never retried
- Extraction and comparison of a batch finish before the next batch is fetched
- Report rows per URL: failed tests first, then by display name
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Iterable, List, Optional, Union

from migration_qa.comparator import Comparator
from migration_qa.config import Settings
from migration_qa.extractor import extract_all
from migration_qa.fetcher import PairFetcher
from migration_qa.models import MAX_RETRIES, Endpoint, FetchOutcome, RunCounters, TestResult, URLRecord
from migration_qa.registry import TestRegistry
from migration_qa.reporter import Reporter

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 20
PERMANENT_FAILURE_MESSAGE = "Failed to fetch data"


@dataclass
class RunSummary:
    urls_with_failed_tests: int = 0
    urls_with_fetch_errors: int = 0
    report_paths: Dict[str, str] = field(default_factory=dict)
    line_counts: Dict[str, int] = field(default_factory=dict)


def sort_results(results: List[TestResult]) -> List[TestResult]:
    """Failed tests first, then by display name."""
    return sorted(results, key=lambda result: (result.passed, result.name))


class MigrationQA:
    """
    2.0 MigrationQA Class
    Runs every URL of the working set through fetch, compare and report.
    """

    def __init__(
        self,
        settings: Settings,
        registry: TestRegistry,
        reporter: Reporter,
        fetcher: Optional[PairFetcher] = None,
        fetch_origin: bool = True,
        sleep_func: Callable[[float], None] = time.sleep,
    ):
        """
        2.1 Initialize the runner.

        Args:
            settings: Run settings
            registry: Read-only test definitions
            reporter: Destination of report and error rows (owns the counters)
            fetcher: HTTP side; built from settings when omitted
            fetch_origin: False when origin values come from a stored report
            sleep_func: Pause between batches
        """
        self.settings = settings
        self.registry = registry
        self.reporter = reporter
        self.counters: RunCounters = reporter.counters
        self.fetcher = fetcher or PairFetcher(settings)
        self.fetch_origin = fetch_origin
        self.comparator = Comparator(settings, fetch_origin=fetch_origin)
        self.sleep_func = sleep_func
        self.processed = 0

    # =========================================================================
    # 3.0 WORK QUEUE
    # =========================================================================

    @staticmethod
    def _records(urls: Union[Dict[str, str], Iterable[URLRecord]]) -> List[URLRecord]:
        if isinstance(urls, dict):
            return [URLRecord(url=url, section=section) for url, section in urls.items()]
        return list(urls)

    def _requeue(self, record: URLRecord, outcome: FetchOutcome, queue: Deque[URLRecord]) -> None:
        """
        3.1 Send a URL back to the tail of the queue, or give up on it.
        """
        retries = self.counters.retry_counts.get(record.url, 0) + 1
        self.counters.retry_counts[record.url] = retries

        if retries > MAX_RETRIES:
            logger.error(f"Giving up on {record.url} after {MAX_RETRIES} retries")
            self.reporter.log_error(outcome.url, PERMANENT_FAILURE_MESSAGE, url_key=record.url)
            return

        record.attempts = retries
        queue.append(record)
        logger.warning(f"Requeued {record.url} (retry {retries}/{MAX_RETRIES})")

    def _triage(
        self,
        record: URLRecord,
        outcomes: Dict[Endpoint, FetchOutcome],
        queue: Deque[URLRecord],
    ) -> bool:
        """
        3.2 Decide what happens to a fetched URL.

        Client errors are final: they are reported once and the URL is dropped,
        even when the other endpoint got no status. Only a URL without client
        errors goes back to the queue.

        Returns:
            True when the URL can be compared.
        """
        failed = [outcome for outcome in outcomes.values() if outcome.transport_error is not None]
        if failed:
            for outcome in failed:
                self.reporter.log_error(outcome.url, outcome.transport_error, url_key=record.url)
            return False

        for outcome in outcomes.values():
            if not outcome.http_code:
                self._requeue(record, outcome, queue)
                return False
        return True

    # =========================================================================
    # 4.0 COMPARISON
    # =========================================================================

    def compare_url(self, record: URLRecord, outcomes: Dict[Endpoint, FetchOutcome]) -> List[TestResult]:
        """
        4.1 Extract and compare every applicable test for one fetched URL.
        """
        tests = self.registry.applicable_tests(record.section)
        target_values = extract_all(tests, outcomes[Endpoint.TARGET])

        if self.fetch_origin:
            origin_values = extract_all(tests, outcomes[Endpoint.ORIGIN])
        else:
            origin_values = record.origin_values or {}

        results = []
        for test_id, spec in tests.items():
            if test_id not in origin_values:
                continue
            result = self.comparator.evaluate(
                spec, origin_values[test_id], target_values[test_id], current_url=record.url
            )
            if result is not None:
                results.append(result)
        return sort_results(results)

    def _process_batch(self, window: List[URLRecord], queue: Deque[URLRecord], total: int) -> None:
        results = self.fetcher.fetch_batch(window, self.fetch_origin)

        for record in window:
            outcomes = results[record.url]
            if not self._triage(record, outcomes, queue):
                continue

            origin_url = outcomes[Endpoint.ORIGIN].url if Endpoint.ORIGIN in outcomes else record.url
            test_results = self.compare_url(record, outcomes)
            self.reporter.log_report(test_results, origin_url, outcomes[Endpoint.TARGET].url)

            self.processed += 1
            logger.info(f"Processed {record.url}")
            if self.processed % PROGRESS_EVERY == 0:
                logger.info(f"Progress: {self.processed}/{total}")

    # =========================================================================
    # 5.0 RUN
    # =========================================================================

    def run(self, urls: Union[Dict[str, str], Iterable[URLRecord]]) -> RunSummary:
        """
        5.1 Process the working set from the configured offset onwards.

        Args:
            urls: Ordered URL -> section mapping, or prepared URLRecords

        Returns:
            RunSummary with the failure counters and written report paths
        """
        records = self._records(urls)[self.settings.offset:]
        queue: Deque[URLRecord] = deque(records)
        total = len(records)
        batch = self.settings.batch

        logger.info(
            f"Starting run: {total} URLs, batch={batch}, offset={self.settings.offset}, "
            f"origin={'live' if self.fetch_origin else 'stored data'}"
        )

        while queue:
            window = [queue.popleft() for _ in range(min(batch, len(queue)))]
            self._process_batch(window, queue, total)

            if queue and self.settings.sleep > 0:
                logger.debug(f"Sleeping {self.settings.sleep}s before next batch")
                self.sleep_func(self.settings.sleep)

        logger.info(f"Run finished: {self.processed}/{total} URLs compared")
        return RunSummary(
            urls_with_failed_tests=self.counters.urls_with_failed_tests,
            urls_with_fetch_errors=self.counters.urls_with_fetch_errors,
            report_paths=self.reporter.report_paths,
            line_counts=self.reporter.line_counts(),
        )
