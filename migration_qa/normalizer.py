"""
1.0 Normalizer
Text and URL canonicalization shared by nearly every comparison.

- normalize(): decode HTML/XML entities and fold typographic punctuation to ASCII
- canonicalize_url(): reduce URLs on the migrated hosts to a comparable path
- parse_datetime(): lenient date/time parsing for date comparisons
"""

import html
import re
import warnings
from dataclasses import dataclass
from typing import Any, Optional, Sequence
from urllib.parse import urlparse

import pandas as pd

# 1.1 Typographic punctuation folded to ASCII (non-breaking space is kept as is)
_TYPOGRAPHY = str.maketrans({
    "’": "'",    # right single quotation mark
    "‘": "'",    # left single quotation mark
    "”": '"',    # right double quotation mark
    "“": '"',    # left double quotation mark
    "–": "-",    # en dash
    "—": "-",    # em dash
    "…": "...",  # ellipsis
    "«": '"',    # left double angle quote
    "»": '"',    # right double angle quote
    "„": '"',    # double low-9 quotation mark
    "‚": "'",    # single low-9 quotation mark
    "‹": "'",    # single left-pointing angle quote
    "›": "'",    # single right-pointing angle quote
    "‐": "-",    # hyphen
    "†": "+",    # dagger
    "‡": "++",   # double dagger
    "•": "*",    # bullet
    "‒": "-",    # figure dash
    "′": "'",    # prime
    "″": '"',    # double prime
    "‵": "`",    # reversed prime
    "‶": "``",   # reversed double prime
})

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")
_RELATIVE_LINK_RE = re.compile(r"^(?:https?:)?//[^/]+(/?.*)", re.IGNORECASE | re.DOTALL)
_UPLOADS_RE = re.compile(r"^(?:/wp)?(?:/wp-content)?(/uploads/.*?)(?:\?auto.+)?$", re.IGNORECASE | re.DOTALL)

# 1.2 A value must carry a full calendar date (day, month and year) to be parsed as one
_DATE_SHAPE_RE = re.compile(
    r"\d{4}[-/.]\d{1,2}[-/.]\d{1,2}"
    r"|\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}"
    r"|\d{1,2}(?:st|nd|rd|th)?,? [A-Za-z]{3,}\.?,? \d{4}"
    r"|[A-Za-z]{3,}\.? \d{1,2}(?:st|nd|rd|th)?,? \d{4}"
)


def decode_entities(text: str) -> str:
    """Decode HTML/XML entities until nothing is left to decode."""
    decoded = html.unescape(text)
    while decoded != text:
        text = decoded
        decoded = html.unescape(text)
    return decoded


def normalize(text: Any) -> str:
    """Canonical form of a value for comparison. Idempotent."""
    if text is None:
        return ""
    return decode_entities(str(text)).translate(_TYPOGRAPHY)


def is_absolute_url(value: Any) -> bool:
    """True for syntactically valid absolute URLs (scheme and host present)."""
    if not isinstance(value, str) or not value or any(ch.isspace() for ch in value):
        return False
    try:
        parsed = urlparse(value)
        hostname = parsed.hostname
    except ValueError:
        return False
    return bool(_SCHEME_RE.match(parsed.scheme or "")) and bool(hostname)


def url_host(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        return urlparse(url if "//" in url else f"//{url}").hostname
    except ValueError:
        return None


def make_link_relative(url: str) -> str:
    """Strip scheme and host, keeping path, query and fragment."""
    return _RELATIVE_LINK_RE.sub(r"\1", url)


def canonicalize_url(
    value: Any,
    current_url: Optional[str],
    domain: str,
    rewrites: Sequence = (),
) -> Any:
    """
    2.0 Reduce a URL on the target domain (or the host currently being QAed)
    to a host-relative path without query string.

    Anything else, including non-string values and URLs on foreign hosts,
    is returned unchanged.

    Args:
        value: Candidate URL
        current_url: URL currently being processed (comparison context)
        domain: Configured target domain
        rewrites: Ordered URL rewrite rules (objects with an `apply` method)
    """
    if not is_absolute_url(value):
        return value

    hosts = {url_host(domain), url_host(current_url)} - {None}
    if urlparse(value).hostname not in hosts:
        return value

    for rule in rewrites:
        value = rule.apply(value)

    value = make_link_relative(value)
    value = _UPLOADS_RE.sub(r"\1", value)
    return value.split("?", 1)[0]


@dataclass(frozen=True)
class UrlContext:
    """Read-only URL canonicalization context for one URL under test."""
    domain: str
    current_url: Optional[str] = None
    rewrites: Sequence = ()

    def canonicalize(self, value: Any) -> Any:
        return canonicalize_url(value, self.current_url, self.domain, self.rewrites)

    def unify(self, value: Any) -> str:
        """URL canonicalization followed by text normalization."""
        return normalize(self.canonicalize(value))


def parse_datetime(value: Any) -> Optional[pd.Timestamp]:
    """Parse a date/time string to a UTC timestamp, or None when it is not one."""
    if not isinstance(value, str) or not _DATE_SHAPE_RE.search(value):
        return None
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            parsed = pd.to_datetime(value.strip(), utc=True, errors="coerce")
        except (ValueError, TypeError, OverflowError):
            return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed


def dates_equal(origin: Any, target: Any) -> bool:
    """Both values parse as date/time and denote the same instant."""
    origin_ts = parse_datetime(origin)
    target_ts = parse_datetime(target)
    return origin_ts is not None and target_ts is not None and origin_ts == target_ts
