"""
Shared fixtures. No network: HTTP is faked at the session / fetcher level.
"""

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from migration_qa.config import Settings  # noqa: E402
from migration_qa.models import OutputMode  # noqa: E402

TARGET_DOMAIN = "new.example.com"
ORIGIN_HOST = "www.example.com"

TITLE_SELECTOR = r"(?is)<title[^>]*>(?P<result>.*?)</title>"
STATUS_SELECTOR = r"^HTTP/[\d.]+ (?P<result>\d{3})"


@pytest.fixture
def settings():
    return Settings(domain=TARGET_DOMAIN)


@pytest.fixture
def make_settings():
    def _make(**kwargs):
        kwargs.setdefault("domain", TARGET_DOMAIN)
        kwargs.setdefault("output_mode", OutputMode.NONE)
        return Settings(**kwargs)
    return _make


@pytest.fixture
def tests_config():
    return {
        "all": {
            "http-status": {"name": "HTTP Status", "source": "last_header", "selector": STATUS_SELECTOR},
            "title": {"name": "Title", "source": "body", "selector": TITLE_SELECTOR},
            "gtm-data": {
                "name": "GTM Data",
                "source": "body",
                "selector": r"(?is)dataLayer\.push\((?P<result>\{.*?\})\);",
                "callback": "compare_gtm_data",
            },
        },
        "post, page": {
            "title": {"name": "Post Title", "source": "body", "selector": TITLE_SELECTOR},
            "author": {
                "name": "Author",
                "source": "body",
                "selector": r'(?is)<meta name="author" content="(?P<result>[^"]*)"',
                "callback": "compare_case_insensitive",
            },
        },
    }


class FakeResponse:
    """Just enough of requests.Response for the fetcher."""

    def __init__(self, status_code=200, reason="OK", headers=None, text="", history=None, version=11):
        self.status_code = status_code
        self.reason = reason
        self.headers = headers or {"Content-Type": "text/html"}
        self.text = text
        self.history = history or []
        self.raw = SimpleNamespace(version=version)

    def raise_for_status(self):
        if self.status_code >= 400:
            import requests
            raise requests.exceptions.HTTPError(f"{self.status_code} {self.reason}")


class FakeSession:
    """Scripted session: url -> FakeResponse or exception instance."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def get(self, url, timeout=None, allow_redirects=True, auth=None):
        self.calls.append({"url": url, "timeout": timeout, "auth": auth})
        response = self.responses.get(url)
        if response is None:
            return FakeResponse(status_code=404, reason="Not Found", text="")
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fake_session():
    return FakeSession
