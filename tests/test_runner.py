"""
RUNNER TESTS - end-to-end batch loop with a scripted fetcher
"""

import json
from datetime import datetime

import pandas as pd
import pytest

from migration_qa.models import Endpoint, FetchOutcome, OutputMode, TestResult, URLRecord
from migration_qa.registry import TestRegistry
from migration_qa.reporter import Reporter
from migration_qa.runner import MigrationQA, sort_results

OK = "HTTP/1.1 200 OK\r\nContent-Type: text/html"
MOVED = "HTTP/1.1 301 Moved Permanently\r\nLocation: /elsewhere/"


def page(body="", header=OK, first_header=None):
    return {"body": body, "header": header, "first_header": first_header or header}


class ScriptedFetcher:
    """
    Stands in for PairFetcher.

    pages: origin URL -> (origin page, target page)
    transport_failures: origin URL -> number of leading attempts without a status
    client_errors: origin URL -> error message for the target endpoint
    origin_client_errors: origin URL -> error message for the origin endpoint
    """

    def __init__(self, pages, transport_failures=None, client_errors=None, origin_client_errors=None):
        self.pages = pages
        self.transport_failures = dict(transport_failures or {})
        self.client_errors = dict(client_errors or {})
        self.origin_client_errors = dict(origin_client_errors or {})
        self.batches = []

    @staticmethod
    def target_url(url):
        return url.replace("www.example.com", "new.example.com")

    def _outcome(self, endpoint, url, data):
        return FetchOutcome(
            endpoint=endpoint,
            url=url,
            status_line=data["header"].split("\r\n", 1)[0],
            first_header=data["first_header"],
            last_header=data["header"],
            body=data["body"],
            http_code=int(data["header"].split(" ")[1]),
        )

    def fetch_batch(self, records, fetch_origin=True):
        self.batches.append([record.url for record in records])
        results = {}
        for record in records:
            origin_page, target_page = self.pages.get(record.url, (page(), page()))
            target_url = self.target_url(record.url)
            outcomes = {}
            if fetch_origin:
                outcomes[Endpoint.ORIGIN] = self._outcome(Endpoint.ORIGIN, record.url, origin_page)
            outcomes[Endpoint.TARGET] = self._outcome(Endpoint.TARGET, target_url, target_page)

            if self.transport_failures.get(record.url, 0) > 0:
                self.transport_failures[record.url] -= 1
                outcomes[Endpoint.TARGET] = FetchOutcome(Endpoint.TARGET, target_url)
            if record.url in self.client_errors:
                outcomes[Endpoint.TARGET] = FetchOutcome(
                    Endpoint.TARGET, target_url, transport_error=self.client_errors[record.url]
                )
            if fetch_origin and record.url in self.origin_client_errors:
                outcomes[Endpoint.ORIGIN] = FetchOutcome(
                    Endpoint.ORIGIN, record.url, transport_error=self.origin_client_errors[record.url]
                )
            results[record.url] = outcomes
        return results


def read_csv(path):
    return pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")


@pytest.fixture
def registry(tests_config):
    return TestRegistry.from_config(tests_config)


@pytest.fixture
def make_runner(tmp_path, registry, make_settings):
    def _make(fetcher, fetch_origin=True, sleeps=None, **settings_kwargs):
        settings = make_settings(**settings_kwargs)
        reporter = Reporter(
            str(tmp_path), settings.domain, stored_data=not fetch_origin, run_ts=datetime(2024, 1, 2, 3, 4, 5)
        )
        sleep_func = sleeps.append if sleeps is not None else (lambda seconds: None)
        return MigrationQA(settings, registry, reporter, fetcher=fetcher, fetch_origin=fetch_origin, sleep_func=sleep_func)
    return _make


def report_rows(summary):
    return read_csv(summary.report_paths["report"])


# =============================================================================
# 1. END-TO-END SCENARIOS
# =============================================================================


def test_title_passes(make_runner):
    url = "https://www.example.com/"
    fetcher = ScriptedFetcher({url: (page("<title>Hello</title>"), page("<title>Hello</title>"))})
    summary = make_runner(fetcher).run({url: "home"})

    df = report_rows(summary)
    title = df[df["Metric"] == "Title"].iloc[0]
    assert title["Original Value"] == "Hello"
    assert title["Migration Value"] == "Hello"
    assert title["Pass or Fail"] == "Pass"
    assert title["Migration URL"] == "https://new.example.com/"
    assert summary.line_counts["report"] == len(df)
    assert summary.urls_with_failed_tests == 0
    assert summary.urls_with_fetch_errors == 0


def test_http_status_fails(make_runner):
    url = "https://www.example.com/moved/"
    fetcher = ScriptedFetcher({url: (page("<title>A</title>"), page("<title>A</title>", header=MOVED))})
    summary = make_runner(fetcher).run({url: "home"})

    df = report_rows(summary)
    status = df[df["Metric"] == "HTTP Status"].iloc[0]
    assert (status["Original Value"], status["Migration Value"], status["Pass or Fail"]) == ("200", "301", "Fail")
    assert summary.urls_with_failed_tests == 1

    # 1.1 Failed tests come first
    assert df.iloc[0]["Metric"] == "HTTP Status"


def test_gtm_missing_mode(make_runner):
    url = "https://www.example.com/"
    fetcher = ScriptedFetcher({url: (
        page('<script>dataLayer.push({"a":1,"b":2});</script>'),
        page('<script>dataLayer.push({"a":1});</script>'),
    )})
    summary = make_runner(fetcher, output_mode=OutputMode.MISSING).run({url: "home"})

    df = report_rows(summary)
    gtm = df[df["Metric"] == "GTM Data (missing in target only)"].iloc[0]
    assert gtm["Pass or Fail"] == "Fail"
    assert json.loads(gtm["Original Value"]) == {"b": 2}
    assert gtm["Migration Value"] == '{"a":1}'


def test_section_specific_tests(make_runner):
    url = "https://www.example.com/post/"
    body = '<title>Post</title><meta name="author" content="Jane DOE">'
    fetcher = ScriptedFetcher({url: (page(body), page(body.replace("Jane DOE", "jane doe")))})
    summary = make_runner(fetcher).run({url: "post"})

    df = report_rows(summary)
    assert set(df["Metric"]) == {"Post Title", "Author", "HTTP Status", "GTM Data"}
    assert (df["Pass or Fail"] == "Pass").all()


# =============================================================================
# 2. RETRIES AND ERRORS
# =============================================================================


def test_four_transport_failures_give_one_error_row(make_runner):
    bad = "https://www.example.com/flaky/"
    good = "https://www.example.com/"
    fetcher = ScriptedFetcher(
        {good: (page("<title>Home</title>"), page("<title>Home</title>"))},
        transport_failures={bad: 4},
    )
    runner = make_runner(fetcher, batch=2)
    summary = runner.run({bad: "home", good: "home"})

    errors = read_csv(summary.report_paths["errors"])
    assert errors.values.tolist() == [["https://new.example.com/flaky/", "Failed to fetch data"]]
    assert summary.urls_with_fetch_errors == 1
    assert runner.counters.retry_counts[bad] == 4

    report = report_rows(summary)
    assert bad not in set(report["Original URL"])
    assert set(report["Original URL"]) == {good}

    # 2.1 Retries go to the back of the queue, one URL per window here
    assert fetcher.batches == [[bad, good], [bad], [bad], [bad]]


def test_transient_failure_recovers(make_runner):
    url = "https://www.example.com/"
    fetcher = ScriptedFetcher(
        {url: (page("<title>Home</title>"), page("<title>Home</title>"))},
        transport_failures={url: 2},
    )
    summary = make_runner(fetcher).run({url: "home"})

    assert "errors" not in summary.report_paths
    report = report_rows(summary)
    assert (report["Metric"] == "Title").sum() == 1
    assert len(fetcher.batches) == 3


def test_client_error_is_not_retried(make_runner):
    url = "https://www.example.com/loop/"
    fetcher = ScriptedFetcher({}, client_errors={url: "Exceeded 5 redirects."})
    summary = make_runner(fetcher).run({url: "home"})

    assert fetcher.batches == [[url]]
    errors = read_csv(summary.report_paths["errors"])
    assert errors.values.tolist() == [["https://new.example.com/loop/", "Exceeded 5 redirects."]]
    assert "report" not in summary.report_paths


def test_client_error_with_no_status_on_other_side(make_runner):
    url = "https://www.example.com/loop/"
    fetcher = ScriptedFetcher(
        {},
        transport_failures={url: 10},
        origin_client_errors={url: "Exceeded 5 redirects."},
    )
    runner = make_runner(fetcher)
    summary = runner.run({url: "home"})

    # 2.2 Reported once, never requeued
    assert fetcher.batches == [[url]]
    errors = read_csv(summary.report_paths["errors"])
    assert errors.values.tolist() == [[url, "Exceeded 5 redirects."]]
    assert summary.urls_with_fetch_errors == 1
    assert url not in runner.counters.retry_counts


def test_client_errors_on_both_sides_count_one_url(make_runner):
    url = "https://www.example.com/bad/"
    fetcher = ScriptedFetcher(
        {},
        client_errors={url: "Invalid URL"},
        origin_client_errors={url: "Invalid URL"},
    )
    summary = make_runner(fetcher).run({url: "home"})

    assert len(read_csv(summary.report_paths["errors"])) == 2
    assert summary.urls_with_fetch_errors == 1


# =============================================================================
# 3. BATCHING
# =============================================================================


def test_offset_and_batches(make_runner):
    urls = {f"https://www.example.com/{i}/": "home" for i in range(5)}
    fetcher = ScriptedFetcher({})
    sleeps = []
    make_runner(fetcher, sleeps=sleeps, batch=2, offset=1, sleep=3).run(urls)

    assert fetcher.batches == [
        ["https://www.example.com/1/", "https://www.example.com/2/"],
        ["https://www.example.com/3/", "https://www.example.com/4/"],
    ]
    assert sleeps == [3]


def test_report_rows_follow_url_order(make_runner):
    urls = {f"https://www.example.com/{i}/": "home" for i in range(3)}
    summary = make_runner(ScriptedFetcher({}), batch=2).run(urls)
    df = report_rows(summary)
    assert list(dict.fromkeys(df["Original URL"])) == list(urls)


# =============================================================================
# 4. STORED DATA
# =============================================================================


def test_stored_origin_values(make_runner):
    url = "https://www.example.com/"
    record = URLRecord(url, "home", origin_values={"title": "Hello", "http-status": "200"})
    fetcher = ScriptedFetcher({url: (page(), page("<title>Hello</title>"))})
    summary = make_runner(fetcher, fetch_origin=False).run([record])

    df = report_rows(summary)
    assert df.columns[0] == "Original URL (Stored Data)"
    assert set(df["Metric"]) == {"Title", "HTTP Status"}
    assert (df["Pass or Fail"] == "Pass").all()
    assert df.iloc[0]["Original URL (Stored Data)"] == url


# =============================================================================
# 5. HELPERS
# =============================================================================


def test_sort_results():
    results = [
        TestResult("b", "B", "", "", True),
        TestResult("c", "C", "", "", False),
        TestResult("a", "A", "", "", True),
        TestResult("d", "A2", "", "", False),
    ]
    assert [r.name for r in sort_results(results)] == ["A2", "C", "A", "B"]
