import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from migration_qa.models import OutputMode

logger = logging.getLogger(__name__)

CONFIG_FILE_PATH = "config.json"

DEFAULT_BATCH = 10
DEFAULT_OFFSET = 0
DEFAULT_TIMEOUT = 30
DEFAULT_SLEEP = 0
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; MigrationQA/1.0)"
DEFAULT_REPORT_DIRECTORY = "output"
DEFAULT_REPORT_PREFIX = "QA_Crawl"

_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}(?::\d+)?$)[A-Za-z0-9_](?:[A-Za-z0-9_-]{0,61}[A-Za-z0-9_])?"
    r"(?:\.[A-Za-z0-9_](?:[A-Za-z0-9_-]{0,61}[A-Za-z0-9_])?)*(?::\d{1,5})?$"
)


class ConfigurationError(Exception):
    """Invalid or missing settings. Fatal: the run stops before any fetching."""


@dataclass(frozen=True)
class UrlRewrite:
    """A single URL rewrite rule, applied with `re.sub`."""
    pattern: "re.Pattern[str]"
    replacement: str

    def apply(self, value: str) -> str:
        return self.pattern.sub(self.replacement, value)


@dataclass(frozen=True)
class Settings:
    """Run settings, built once at startup and passed to every component."""
    domain: str
    domain_user: Optional[str] = None
    domain_password: Optional[str] = None
    batch: int = DEFAULT_BATCH
    offset: int = DEFAULT_OFFSET
    timeout: int = DEFAULT_TIMEOUT
    sleep: int = DEFAULT_SLEEP
    output_mode: OutputMode = OutputMode.NONE
    url_rewrites: Tuple[UrlRewrite, ...] = ()
    user_agent: str = DEFAULT_USER_AGENT
    report_directory: str = DEFAULT_REPORT_DIRECTORY
    report_prefix: str = DEFAULT_REPORT_PREFIX

    @property
    def credentials(self) -> Optional[Tuple[str, str]]:
        if self.domain_user is None and self.domain_password is None:
            return None
        return (self.domain_user or "", self.domain_password or "")

    def rewrite(self, value: str) -> str:
        """Apply every configured rewrite in order, each on the previous output."""
        for rule in self.url_rewrites:
            value = rule.apply(value)
        return value


def load_config(path: str = CONFIG_FILE_PATH) -> Optional[Dict[str, Any]]:
    """Loads the configuration from a JSON file."""
    if not os.path.exists(path):
        logger.error(f"Configuration file not found: {path}")
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
        logger.info(f"Successfully loaded configuration from {path}")
        if not validate_config(config_data):
            return None
        return config_data
    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON from {path}: {e}")
        return None
    except OSError as e:
        logger.error(f"Could not read configuration file {path}: {e}")
        return None


def validate_config(config: Dict[str, Any]) -> bool:
    """Validates the structure of the configuration."""
    if not isinstance(config, dict):
        logger.error("Configuration must be a dictionary.")
        return False

    tests = config.get("tests")
    if not isinstance(tests, dict) or not tests:
        logger.error("'tests' key is missing or not a non-empty dictionary in config.")
        return False

    for group, group_tests in tests.items():
        if not isinstance(group_tests, dict):
            logger.error(f"Test group '{group}' must be a dictionary of test definitions.")
            return False
        for test_id, test in group_tests.items():
            if not isinstance(test, dict) or not test.get("name"):
                logger.error(f"Test '{test_id}' in group '{group}' must be a dictionary with a 'name'.")
                return False

    if "all" not in tests:
        logger.warning("No 'all' test group configured. Only section-specific tests will run.")

    rewrites = config.get("url_rewrites", [])
    if not isinstance(rewrites, list):
        logger.error("'url_rewrites' must be a list.")
        return False
    for i, rule in enumerate(rewrites):
        if not isinstance(rule, dict) or not isinstance(rule.get("pattern"), str):
            logger.error(f"URL rewrite at index {i} must be a dictionary with a 'pattern' string.")
            return False

    urls_to_test = config.get("urls_to_test", {})
    if not isinstance(urls_to_test, dict):
        logger.error("'urls_to_test' must be a dictionary of URL -> section.")
        return False

    logger.info("Configuration validation successful.")
    return True


def is_valid_domain(domain: Optional[str]) -> bool:
    return bool(domain) and bool(_DOMAIN_RE.match(domain))


def compile_url_rewrites(rules) -> Tuple[UrlRewrite, ...]:
    compiled = []
    for rule in rules or []:
        try:
            pattern = re.compile(rule["pattern"])
        except re.error as e:
            raise ConfigurationError(f"Invalid URL rewrite pattern {rule['pattern']!r}: {e}") from e
        compiled.append(UrlRewrite(pattern=pattern, replacement=rule.get("replacement", "")))
    return tuple(compiled)


def _as_int(name: str, value: Any, minimum: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"'{name}' must be an integer, got {value!r}") from e
    if number < minimum:
        raise ConfigurationError(f"'{name}' must be >= {minimum}, got {number}")
    return number


def build_settings(config: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Build immutable run settings from the config file, with CLI overrides.

    Raises:
        ConfigurationError: on a missing or invalid domain or invalid numbers.
    """
    values = {**config, **{k: v for k, v in (overrides or {}).items() if v is not None}}

    domain = values.get("domain")
    if not is_valid_domain(domain):
        raise ConfigurationError("Target domain is not provided or invalid.")

    output_mode = values.get("format_output") or OutputMode.NONE.value
    try:
        output_mode = OutputMode(output_mode)
    except ValueError as e:
        raise ConfigurationError(f"Unknown output format: {output_mode}") from e

    return Settings(
        domain=domain,
        domain_user=values.get("domain_user") or None,
        domain_password=values.get("domain_password") or None,
        batch=_as_int("batch", values.get("batch", DEFAULT_BATCH), 1),
        offset=_as_int("offset", values.get("offset", DEFAULT_OFFSET), 0),
        timeout=_as_int("timeout", values.get("timeout", DEFAULT_TIMEOUT), 1),
        sleep=_as_int("sleep", values.get("sleep", DEFAULT_SLEEP), 0),
        output_mode=output_mode,
        url_rewrites=compile_url_rewrites(values.get("url_rewrites")),
        user_agent=values.get("user_agent") or DEFAULT_USER_AGENT,
        report_directory=values.get("report_directory") or DEFAULT_REPORT_DIRECTORY,
        report_prefix=values.get("report_prefix") or DEFAULT_REPORT_PREFIX,
    )
