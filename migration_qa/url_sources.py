"""
1.0 URL Sources
Builds the ordered URL -> section working set the runner consumes.

Key features:
- Origin list: newline-separated rows of "url[,section]", from a URL
- Stored data: a previous report CSV, origin values matched to tests by Metric name
- Sitemap XML: urlset or (recursively) sitemap index, parsed with lxml
- Static list: the "urls_to_test" config mapping, filtered by section
"""

import csv
import logging
import os
from typing import Dict, List, Optional, Set

import pandas as pd
import requests
from lxml import etree

from migration_qa.config import ConfigurationError
from migration_qa.models import URLRecord
from migration_qa.normalizer import is_absolute_url
from migration_qa.registry import TestRegistry

logger = logging.getLogger(__name__)

SITEMAP_NS = {'sm': 'http://www.sitemaps.org/schemas/sitemap/0.9'}

# Column positions in a stored report
STORED_URL_COLUMN = 0
STORED_METRIC_COLUMN = 2
STORED_VALUE_COLUMN = 3


def parse_sections(value: Optional[str]) -> List[str]:
    """Comma-separated --sections value -> list of section names."""
    if not value:
        return []
    return [s.strip() for s in value.split(",") if s.strip()]


def _single_section(sections: List[str], what: str) -> str:
    if not sections:
        raise ConfigurationError(f"A section is required for {what}.")
    if len(sections) > 1:
        raise ConfigurationError(f"Exactly one section is allowed for {what}, got {', '.join(sections)}.")
    return sections[0]


def _require_http_url(url: str, what: str) -> None:
    if not is_absolute_url(url) or not url.lower().startswith(("http://", "https://")):
        raise ConfigurationError(f"Invalid {what}: {url}")


# =============================================================================
# 2.0 ORIGIN LIST
# =============================================================================

def load_origin_list(text: str, sections: List[str]) -> Dict[str, str]:
    """
    2.1 Parse an origin list.

    Each non-empty row is "url" or "url,section". Rows without a section use
    the single --sections value.

    Raises:
        ConfigurationError: when a row has no section and none can be inferred.
    """
    urls: Dict[str, str] = {}
    for row in csv.reader(text.splitlines()):
        if not row or not row[0].strip():
            continue
        url = row[0].strip()
        section = row[1].strip() if len(row) > 1 and row[1].strip() else None
        if section is None:
            section = _single_section(sections, f"origin list row '{url}'")
        urls[url] = section

    logger.info(f"Loaded {len(urls)} URLs from origin list")
    return urls


def fetch_origin_list(
    url: str,
    sections: List[str],
    session: Optional[requests.Session] = None,
    timeout: int = 30,
) -> Dict[str, str]:
    """
    2.2 Download and parse an origin list.

    Raises:
        ConfigurationError: on an invalid URL or a failed download.
    """
    _require_http_url(url, "origin list URL")
    session = session or requests.Session()
    try:
        response = session.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise ConfigurationError(f"Could not download origin list {url}: {e}") from e
    return load_origin_list(response.text, sections)


# =============================================================================
# 3.0 STORED DATA
# =============================================================================

def load_stored_origin_data(path: str, registry: TestRegistry, sections: List[str]) -> List[URLRecord]:
    """
    3.1 Rebuild origin values from a previously written report.

    Rows whose Metric matches no configured test are skipped.

    Raises:
        ConfigurationError: missing file, unreadable CSV, or not exactly one section.
    """
    section = _single_section(sections, "stored origin data")
    if not os.path.exists(path):
        raise ConfigurationError(f"Stored origin data not found: {path}")

    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding='utf-8-sig')
    except (ValueError, OSError) as e:
        raise ConfigurationError(f"Could not read stored origin data {path}: {e}") from e

    if len(df.columns) <= STORED_VALUE_COLUMN:
        raise ConfigurationError(f"Stored origin data {path} does not look like a report file")

    records: Dict[str, URLRecord] = {}
    unknown_metrics: Set[str] = set()
    for row in df.itertuples(index=False):
        url = row[STORED_URL_COLUMN]
        metric = row[STORED_METRIC_COLUMN]
        test_id = registry.find_test_id(metric)
        if test_id is None:
            unknown_metrics.add(metric)
            continue
        record = records.setdefault(url, URLRecord(url=url, section=section, origin_values={}))
        record.origin_values[test_id] = row[STORED_VALUE_COLUMN]

    if unknown_metrics:
        logger.warning(f"Skipped unknown metrics in stored data: {sorted(unknown_metrics)}")
    logger.info(f"Loaded stored origin data for {len(records)} URLs from {path}")
    return list(records.values())


# =============================================================================
# 4.0 SITEMAPS
# =============================================================================

def parse_sitemap(xml_content: str) -> Dict[str, List[str]]:
    """
    4.1 Parse sitemap XML.

    Returns:
        {"type": "sitemapindex" | "urlset" | "error", "urls": [...]}
    """
    if not xml_content:
        return {"type": "error", "urls": []}
    try:
        parser = etree.XMLParser(recover=True, remove_blank_text=True)
        root = etree.fromstring(xml_content.encode('utf-8'), parser=parser)
    except etree.XMLSyntaxError as e:
        logger.error(f"XML syntax error while parsing sitemap: {e}")
        return {"type": "error", "urls": []}
    if root is None:
        return {"type": "error", "urls": []}

    root_tag_name = etree.QName(root.tag).localname
    if root_tag_name == 'sitemapindex':
        locs = root.xpath('//sm:sitemap/sm:loc', namespaces=SITEMAP_NS)
        sitemap_type = "sitemapindex"
    elif root_tag_name == 'urlset':
        locs = root.xpath('//sm:url/sm:loc', namespaces=SITEMAP_NS)
        sitemap_type = "urlset"
    else:
        logger.error(f"Unknown sitemap root element '{root.tag}'")
        return {"type": "error", "urls": []}

    return {"type": sitemap_type, "urls": [loc.text.strip() for loc in locs if loc.text and loc.text.strip()]}


def urls_from_sitemap(parsed: Dict[str, List[str]], section: str) -> Dict[str, str]:
    """Page URLs of a parsed urlset, all tagged with `section`."""
    if parsed["type"] != "urlset":
        return {}
    return {url: section for url in parsed["urls"]}


def fetch_sitemap_urls(
    sitemap_url: str,
    sections: List[str],
    session: Optional[requests.Session] = None,
    timeout: int = 30,
    _seen: Optional[Set[str]] = None,
) -> Dict[str, str]:
    """
    4.2 Collect page URLs from a sitemap, following sitemap indexes.

    Raises:
        ConfigurationError: on an invalid URL or not exactly one section.
    """
    section = _single_section(sections, "sitemap URLs")
    _require_http_url(sitemap_url, "sitemap URL")
    session = session or requests.Session()
    seen = _seen if _seen is not None else set()

    if sitemap_url in seen:
        logger.info(f"Sitemap {sitemap_url} already processed. Skipping.")
        return {}
    seen.add(sitemap_url)

    logger.info(f"Processing sitemap: {sitemap_url}")
    try:
        response = session.get(sitemap_url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.warning(f"Failed to fetch sitemap {sitemap_url}: {e}")
        return {}

    parsed = parse_sitemap(response.text)
    if parsed["type"] == "urlset":
        urls = urls_from_sitemap(parsed, section)
        logger.info(f"URL set {sitemap_url} contains {len(urls)} page URLs.")
        return urls

    urls: Dict[str, str] = {}
    if parsed["type"] == "sitemapindex":
        logger.info(f"Sitemap index {sitemap_url} contains {len(parsed['urls'])} sub-sitemaps.")
        for sub_url in parsed["urls"]:
            for url, sub_section in fetch_sitemap_urls(sub_url, [section], session, timeout, seen).items():
                urls.setdefault(url, sub_section)
    else:
        logger.error(f"Could not parse sitemap {sitemap_url}")
    return urls


# =============================================================================
# 5.0 STATIC LIST
# =============================================================================

def static_urls(config_urls: Dict[str, str], sections: List[str]) -> Dict[str, str]:
    """The configured URL -> section mapping, limited to `sections` when given."""
    if not sections:
        return dict(config_urls)
    return {url: section for url, section in config_urls.items() if section in sections}
