"""
1.0 Pair Fetcher
Concurrently fetches the origin and target responses for a batch of URLs.

Key features:
- One GET per endpoint, all requests of a batch in flight together
- Basic auth on the target side only
- Redirects followed up to 5 hops, HTTP/HTTPS only
- No transport-level retries: failed URLs are requeued by the runner
- Raw header blocks rebuilt for every hop of the redirect chain
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, unquote, urlsplit, urlunsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from migration_qa.config import Settings
from migration_qa.models import Endpoint, FetchOutcome, URLRecord

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 5

_UNSAFE_CHARS = {" ": "%20", '"': "%22", "<": "%3C", ">": "%3E"}
_HTTP_VERSIONS = {9: "0.9", 10: "1.0", 11: "1.1", 20: "2", 30: "3"}


# =============================================================================
# 2.0 URL HELPERS
# =============================================================================

def escape_unsafe_chars(url: str) -> str:
    for char, replacement in _UNSAFE_CHARS.items():
        url = url.replace(char, replacement)
    return url


def sanitize_url_path(url: str) -> str:
    """Re-encode every path segment, which may or may not already be encoded."""
    parts = urlsplit(url)
    if not parts.path:
        return url
    segments = parts.path.split("/")[1:]
    path = "".join("/" + quote(unquote(segment), safe="") for segment in segments)
    return urlunsplit(parts._replace(path=path))


def replace_host(url: str, domain: str) -> str:
    host = urlsplit(url).hostname
    if not host:
        return url
    return re.sub(
        r"^(https?://)" + re.escape(host),
        lambda m: m.group(1) + domain,
        url,
        flags=re.IGNORECASE,
    )


def build_target_url(url: str, settings: Settings) -> str:
    """Target URL: rewrite rules applied, then the host swapped for the target domain."""
    return replace_host(settings.rewrite(url), settings.domain)


def request_url_for(url: str) -> str:
    return sanitize_url_path(escape_unsafe_chars(url))


# =============================================================================
# 3.0 RESPONSE HELPERS
# =============================================================================

def _status_line(response: requests.Response) -> str:
    version = getattr(getattr(response, "raw", None), "version", 11)
    version = _HTTP_VERSIONS.get(version, "1.1")
    return f"HTTP/{version} {response.status_code} {response.reason or ''}".rstrip()


def header_block(response: requests.Response) -> str:
    lines = [_status_line(response)]
    lines.extend(f"{name}: {value}" for name, value in response.headers.items())
    return "\r\n".join(lines)


def header_blocks(response: requests.Response) -> List[str]:
    """One block per hop of the redirect chain, earliest first."""
    return [header_block(r) for r in list(response.history) + [response]]


# =============================================================================
# 4.0 FETCHER
# =============================================================================

class PairFetcher:
    """
    4.1 Fetches origin/target pairs for one batch window.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        """
        Args:
            settings: Run settings (domain, credentials, timeout, batch size)
            session: Optional pre-built session, mainly for tests
        """
        self.settings = settings
        self.timeout = settings.timeout
        self.max_workers = max(1, settings.batch * 2)
        self.session = session or self._create_session()

        logger.info(
            f"PairFetcher initialized: "
            f"target={settings.domain}, "
            f"timeout={self.timeout}s, "
            f"max_in_flight={self.max_workers}, "
            f"auth={'yes' if settings.credentials else 'no'}"
        )

    def _create_session(self) -> requests.Session:
        """
        4.2 Session sized for a full batch of concurrent requests.

        Transport retries are disabled: a failing URL is requeued as a whole.
        """
        session = requests.Session()

        retry_strategy = Retry(total=0, raise_on_status=False)
        adapter = HTTPAdapter(
            pool_connections=self.max_workers,
            pool_maxsize=self.max_workers,
            max_retries=retry_strategy,
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.max_redirects = MAX_REDIRECTS
        session.headers.update({"User-Agent": self.settings.user_agent})
        return session

    def fetch(self, endpoint: Endpoint, url: str, request_url: str) -> FetchOutcome:
        """
        4.3 Fetch one endpoint.

        Timeouts and connection errors yield http_code 0 (the URL is retried);
        any other client error is reported in `transport_error`.
        """
        auth = self.settings.credentials if endpoint == Endpoint.TARGET else None
        outcome = FetchOutcome(endpoint=endpoint, url=url)

        try:
            response = self.session.get(
                request_url,
                timeout=self.timeout,
                allow_redirects=True,
                auth=auth,
            )
        except requests.exceptions.Timeout:
            logger.warning(f"Timeout fetching {endpoint.value} {request_url} after {self.timeout}s")
            return outcome
        except requests.exceptions.ConnectionError as e:
            logger.warning(f"Connection error fetching {endpoint.value} {request_url}: {e}")
            return outcome
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error fetching {endpoint.value} {request_url}: {e}")
            outcome.transport_error = str(e) or type(e).__name__
            return outcome

        blocks = header_blocks(response)
        outcome.first_header = blocks[0]
        outcome.last_header = blocks[-1]
        outcome.status_line = blocks[-1].split("\r\n", 1)[0]
        outcome.body = response.text
        outcome.http_code = response.status_code
        return outcome

    def plan(self, record: URLRecord, fetch_origin: bool) -> List[Tuple[Endpoint, str, str]]:
        """(endpoint, display URL, request URL) for every request of a record."""
        requests_planned = []
        if fetch_origin:
            requests_planned.append((Endpoint.ORIGIN, record.url, request_url_for(record.url)))
        target_url = build_target_url(record.url, self.settings)
        requests_planned.append((Endpoint.TARGET, target_url, request_url_for(target_url)))
        return requests_planned

    def fetch_batch(
        self,
        records: List[URLRecord],
        fetch_origin: bool = True,
    ) -> Dict[str, Dict[Endpoint, FetchOutcome]]:
        """
        4.4 Fetch every endpoint of every record concurrently.

        Returns:
            URL -> endpoint -> outcome, in record order, endpoints origin first
        """
        results: Dict[str, Dict[Endpoint, FetchOutcome]] = {record.url: {} for record in records}
        if not records:
            return results

        jobs = [
            (record.url, planned)
            for record in records
            for planned in self.plan(record, fetch_origin)
        ]

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(jobs))) as executor:
            future_to_job = {
                executor.submit(self.fetch, *planned): (url, planned[0])
                for url, planned in jobs
            }
            for future in as_completed(future_to_job):
                url, endpoint = future_to_job[future]
                results[url][endpoint] = future.result()

        # Restore origin-then-target order regardless of completion order
        return {
            url: {endpoint: outcomes[endpoint] for endpoint in Endpoint if endpoint in outcomes}
            for url, outcomes in results.items()
        }
