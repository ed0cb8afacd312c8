"""
1.0 Reporter Module
Writes the comparison report and the error report as CSV files.

Key features:
- Two named streams: "report" (one row per test) and "errors" (one row per fetch failure)
- Files created lazily on the first row, UTF-8 with BOM, header row first
- Rows appended with pandas as they are produced
- File names: <prefix>-<DOMAIN CODE>_<MonD_HH.MM.SS>-<stream>.csv
"""

import logging
import os
from datetime import datetime
from typing import Dict, List, Optional, Set

import pandas as pd

from migration_qa.models import RunCounters, TestResult

logger = logging.getLogger(__name__)

# 1.1 Stream names and column headers
REPORT_STREAM = "report"
ERROR_STREAM = "errors"

COL_ORIGIN_URL = "Original URL"
COL_TARGET_URL = "Migration URL"
COL_METRIC = "Metric"
COL_ORIGIN_VALUE = "Original Value"
COL_TARGET_VALUE = "Migration Value"
COL_RESULT = "Pass or Fail"
COL_URL = "URL"
COL_ERROR = "Error"

STORED_DATA_SUFFIX = " (Stored Data)"
PASS = "Pass"
FAIL = "Fail"


def domain_code(domain: str) -> str:
    """Upper-cased first label of the domain, ignoring a leading "www"."""
    labels = domain.split(":", 1)[0].split(".")
    if len(labels) > 1 and labels[0].lower() == "www":
        labels = labels[1:]
    return labels[0].upper()


def report_file_name(prefix: str, domain: str, run_ts: datetime, stream: str) -> str:
    stamp = f"{run_ts:%b}{run_ts.day}_{run_ts:%H.%M.%S}"
    return f"{prefix}-{domain_code(domain)}_{stamp}-{stream}.csv"


class ReportStream:
    """
    2.0 One CSV output file. Nothing touches the disk until the first write.
    """

    def __init__(self, name: str, path: str, columns: List[str]):
        self.name = name
        self.path = path
        self.columns = columns
        self.line_count = 0
        self.created = False

    def _create(self) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        # utf-8-sig writes the BOM ahead of the header row
        pd.DataFrame(columns=self.columns).to_csv(self.path, mode='w', index=False, encoding='utf-8-sig')
        self.created = True
        logger.info(f"Created {self.name} file: {self.path}")

    def write_rows(self, rows: List[List[str]]) -> None:
        if not rows:
            return
        if not self.created:
            self._create()
        pd.DataFrame(rows, columns=self.columns).to_csv(
            self.path, mode='a', header=False, index=False, encoding='utf-8'
        )
        self.line_count += len(rows)


class Reporter:
    """
    3.0 Reporter Class
    Owns the output streams and the run-level failure counters.
    """

    def __init__(
        self,
        report_dir: str,
        domain: str,
        prefix: str = "QA_Crawl",
        stored_data: bool = False,
        counters: Optional[RunCounters] = None,
        run_ts: Optional[datetime] = None,
    ):
        """
        3.1 Initialize the reporter.

        Args:
            report_dir: Directory the CSV files are written to
            domain: Target domain, used for the file name's domain code
            prefix: File name prefix
            stored_data: Origin values come from a stored report
            counters: Shared run counters, updated on every logged row
            run_ts: Timestamp used in the file names (default: now)
        """
        self.report_dir = report_dir
        self.counters = counters if counters is not None else RunCounters()
        self._error_urls: Set[str] = set()
        run_ts = run_ts or datetime.now()

        origin_column = COL_ORIGIN_URL + (STORED_DATA_SUFFIX if stored_data else "")
        columns = {
            REPORT_STREAM: [origin_column, COL_TARGET_URL, COL_METRIC, COL_ORIGIN_VALUE, COL_TARGET_VALUE, COL_RESULT],
            ERROR_STREAM: [COL_URL, COL_ERROR],
        }
        self.streams: Dict[str, ReportStream] = {
            name: ReportStream(
                name,
                os.path.join(report_dir, report_file_name(prefix, domain, run_ts, name)),
                stream_columns,
            )
            for name, stream_columns in columns.items()
        }
        logger.info(f"Reporter initialized with report directory: {report_dir}")

    # =========================================================================
    # 4.0 LOGGING ROWS
    # =========================================================================

    def log_error(self, url: str, message: str, url_key: Optional[str] = None) -> None:
        """
        4.1 One error row.

        `url_key` names the URL under test when the row is about one of its
        endpoints; a URL counts once however many rows it produces.
        """
        self.streams[ERROR_STREAM].write_rows([[url, message]])
        key = url_key or url
        if key not in self._error_urls:
            self._error_urls.add(key)
            self.counters.urls_with_fetch_errors += 1
        logger.warning(f"Fetch error for {url}: {message}")

    def log_report(self, results: List[TestResult], origin_url: str, target_url: str) -> None:
        """
        4.2 All test rows of one URL, in the order given.

        The URL counts as failed when any of its tests failed.
        """
        rows = [
            [
                origin_url,
                target_url,
                result.name,
                result.origin_value,
                result.target_value,
                PASS if result.passed else FAIL,
            ]
            for result in results
        ]
        self.streams[REPORT_STREAM].write_rows(rows)
        if any(not result.passed for result in results):
            self.counters.urls_with_failed_tests += 1

    # =========================================================================
    # 5.0 SUMMARY HELPERS
    # =========================================================================

    @property
    def report_paths(self) -> Dict[str, str]:
        """Paths of the streams that were actually written."""
        return {name: stream.path for name, stream in self.streams.items() if stream.created}

    def line_counts(self) -> Dict[str, int]:
        return {name: stream.line_count for name, stream in self.streams.items()}
