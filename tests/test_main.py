"""
MAIN TESTS - CLI parsing, config errors, a full run with a scripted fetcher
"""

import json

import pytest

from conftest import STATUS_SELECTOR, TITLE_SELECTOR

from migration_qa import main as main_module
from migration_qa.models import Endpoint, FetchOutcome

OK = "HTTP/1.1 200 OK\r\nContent-Type: text/html"


def write_config(tmp_path, **overrides):
    config = {
        "domain": "new.example.com",
        "report_directory": str(tmp_path / "output"),
        "tests": {
            "all": {
                "http-status": {"name": "HTTP Status", "source": "last_header", "selector": STATUS_SELECTOR},
                "title": {"name": "Title", "source": "body", "selector": TITLE_SELECTOR},
            }
        },
        "urls_to_test": {
            "https://www.example.com/": "home",
            "https://www.example.com/blog/post/": "post",
        },
    }
    config.update(overrides)
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    return str(path)


class StaticFetcher:
    """Origin and target serve the same page; the target title can be overridden per URL."""

    target_titles = {}
    extra_body = ""

    def __init__(self, settings, session=None):
        self.settings = settings

    def fetch_batch(self, records, fetch_origin=True):
        results = {}
        for record in records:
            target_url = record.url.replace("www.example.com", self.settings.domain)
            title = self.target_titles.get(record.url, "Same")
            results[record.url] = {
                Endpoint.ORIGIN: FetchOutcome(Endpoint.ORIGIN, record.url, "HTTP/1.1 200 OK", OK, OK,
                                              "<title>Same</title>" + self.extra_body, 200),
                Endpoint.TARGET: FetchOutcome(Endpoint.TARGET, target_url, "HTTP/1.1 200 OK", OK, OK,
                                              f"<title>{title}</title>" + self.extra_body, 200),
            }
        return results


@pytest.fixture
def static_fetcher(monkeypatch):
    StaticFetcher.target_titles = {}
    StaticFetcher.extra_body = ""
    monkeypatch.setattr("migration_qa.runner.PairFetcher", StaticFetcher)
    return StaticFetcher


# =============================================================================
# 1. ARGUMENTS
# =============================================================================


def test_parse_args():
    args = main_module.parse_args([
        "--domain", "new.example.com",
        "--sections", "post,category",
        "--format-output", "difference",
        "--batch", "5",
    ])
    assert args.domain == "new.example.com"
    assert args.sections == "post,category"
    assert args.format_output == "difference"
    assert args.batch == 5
    assert args.offset is None
    assert args.config == "config.json"


def test_parse_args_rejects_unknown_format():
    with pytest.raises(SystemExit):
        main_module.parse_args(["--format-output", "everything"])


# =============================================================================
# 2. FATAL ERRORS
# =============================================================================


def test_missing_config(tmp_path):
    assert main_module.main(["--config", str(tmp_path / "nope.json")]) == 1


def test_invalid_domain(tmp_path, static_fetcher):
    path = write_config(tmp_path)
    assert main_module.main(["--config", path, "--domain", "not a domain!"]) == 1


def test_invalid_selector(tmp_path, static_fetcher):
    path = write_config(tmp_path, tests={"all": {"t": {"name": "T", "source": "body", "selector": "(.*)"}}})
    assert main_module.main(["--config", path]) == 1


def test_stored_data_needs_one_section(tmp_path, static_fetcher):
    path = write_config(tmp_path)
    assert main_module.main(["--config", path, "--origin-data-path", str(tmp_path / "old.csv")]) == 1


def test_no_urls(tmp_path, static_fetcher):
    path = write_config(tmp_path)
    assert main_module.main(["--config", path, "--sections", "feed"]) == 1


# =============================================================================
# 3. FULL RUN
# =============================================================================


def test_full_run(tmp_path, static_fetcher, caplog):
    static_fetcher.target_titles = {"https://www.example.com/blog/post/": "Changed"}
    path = write_config(tmp_path)

    with caplog.at_level("INFO"):
        assert main_module.main(["--config", path, "--batch", "1"]) == 0

    reports = list((tmp_path / "output").glob("QA_Crawl-NEW_*-report.csv"))
    assert len(reports) == 1
    assert "URLs with failed tests: 1" in caplog.text
    assert "URLs with fetch errors: 0" in caplog.text


def test_full_run_filtered_by_section(tmp_path, static_fetcher):
    path = write_config(tmp_path)
    assert main_module.main(["--config", path, "--sections", "post"]) == 0
    assert len(list((tmp_path / "output").glob("*-report.csv"))) == 1


# =============================================================================
# 4. FATAL ERRORS DURING THE RUN
# =============================================================================


def test_duplicate_schema_key_is_fatal(tmp_path, static_fetcher):
    person = {"@type": "Person"}
    graph = {"@context": "https://schema.org", "@graph": [person] * 5}
    static_fetcher.extra_body = f'<script type="application/ld+json">{json.dumps(graph)}</script>'
    path = write_config(tmp_path, tests={"all": {
        "schemas": {"name": "Schemas", "source": "body", "selector": "(?is)(?P<result>.+)", "callback": "compare_schemas"},
    }})

    assert main_module.main(["--config", path]) == 1
    assert not list((tmp_path / "output").glob("*-report.csv"))
