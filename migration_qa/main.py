"""
1.0 Main Orchestrator Module
Command-line entry point for a site migration QA run.

Key features:
- JSON config file with command-line overrides
- URL working set from stored report data, an origin list, a sitemap or the config
- Fatal configuration / schema errors exit with status 1
- Run summary logged at the end
"""

import argparse
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple, Union

from migration_qa.config import CONFIG_FILE_PATH, ConfigurationError, Settings, build_settings, load_config
from migration_qa.models import URLRecord
from migration_qa.registry import TestRegistry
from migration_qa.reporter import Reporter
from migration_qa.runner import MigrationQA, RunSummary
from migration_qa.structured_data import DuplicateSchemaKeyError
from migration_qa.url_sources import (
    fetch_origin_list,
    fetch_sitemap_urls,
    load_stored_origin_data,
    parse_sections,
    static_urls,
)

logger = logging.getLogger(__name__)

LOG_FILE = "migration_qa.log"


def setup_logging(level: int = logging.INFO) -> None:
    """1.1 Log to file and console."""
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(LOG_FILE),
            logging.StreamHandler()
        ]
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    2.0 Command-line options. Anything left unset falls back to the config file.
    """
    parser = argparse.ArgumentParser(
        description="Compare origin and migrated pages and report the differences"
    )
    parser.add_argument("--config", default=CONFIG_FILE_PATH, help=f"Config file (default: {CONFIG_FILE_PATH})")
    parser.add_argument("--domain", help="Target (migration) domain")
    parser.add_argument("--domain-user", help="Basic auth user for the target domain")
    parser.add_argument("--domain-password", help="Basic auth password for the target domain")
    parser.add_argument("--sections", help="Comma-separated sections to test")
    parser.add_argument("--origin-list-url", help="URL of a newline-separated origin list (url[,section])")
    parser.add_argument("--origin-data-path", help="Previous report CSV to use as origin data")
    parser.add_argument("--sitemap-url", help="Sitemap (or sitemap index) listing the origin URLs")
    parser.add_argument(
        "--format-output",
        choices=["none", "missing", "difference"],
        help="Narrow structured-data results to missing or differing parts"
    )
    parser.add_argument("--batch", type=int, help="URLs per batch")
    parser.add_argument("--offset", type=int, help="Index of the first URL to process")
    parser.add_argument("--timeout", type=int, help="Per-request timeout in seconds")
    parser.add_argument("--sleep", type=int, help="Seconds to pause between batches")
    return parser.parse_args(argv)


def collect_urls(
    args: argparse.Namespace,
    config: Dict,
    settings: Settings,
    registry: TestRegistry,
) -> Tuple[Union[Dict[str, str], List[URLRecord]], bool]:
    """
    3.0 Build the working set from the first configured URL source.

    Returns:
        (URLs, fetch_origin): fetch_origin is False for stored report data
    """
    sections = parse_sections(args.sections)

    if args.origin_data_path:
        logger.info(f"Using stored origin data: {args.origin_data_path}")
        return load_stored_origin_data(args.origin_data_path, registry, sections), False

    if args.origin_list_url:
        logger.info(f"Using origin list: {args.origin_list_url}")
        return fetch_origin_list(args.origin_list_url, sections, timeout=settings.timeout), True

    if args.sitemap_url:
        logger.info(f"Using sitemap: {args.sitemap_url}")
        return fetch_sitemap_urls(args.sitemap_url, sections, timeout=settings.timeout), True

    return static_urls(config.get("urls_to_test", {}), sections), True


def log_summary(summary: RunSummary) -> None:
    logger.info("=" * 60)
    logger.info("Migration QA Summary:")
    logger.info(f"  URLs with failed tests: {summary.urls_with_failed_tests}")
    logger.info(f"  URLs with fetch errors: {summary.urls_with_fetch_errors}")
    if summary.report_paths:
        for name, path in summary.report_paths.items():
            logger.info(f"  {name}: {path} ({summary.line_counts.get(name, 0)} rows)")
    else:
        logger.info("  No report files written")
    logger.info("=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    """
    4.0 Run a migration QA pass.

    Flow:
    1. Load configuration and apply command-line overrides
    2. Build the test registry
    3. Collect the URL working set
    4. Fetch, compare and report batch by batch
    5. Log the summary

    Returns:
        Process exit status
    """
    args = parse_args(argv)

    logger.info("=" * 60)
    logger.info("Starting migration QA run")
    logger.info(f"Run timestamp: {datetime.now(timezone.utc).isoformat()}")
    logger.info("=" * 60)

    # 4.1 Load configuration
    config = load_config(args.config)
    if not config:
        logger.error("Failed to load configuration. Exiting.")
        return 1

    overrides = {
        "domain": args.domain,
        "domain_user": args.domain_user,
        "domain_password": args.domain_password,
        "format_output": args.format_output,
        "batch": args.batch,
        "offset": args.offset,
        "timeout": args.timeout,
        "sleep": args.sleep,
    }

    try:
        # 4.2 Settings, tests and URLs: everything fatal happens before fetching
        settings = build_settings(config, overrides)
        registry = TestRegistry.from_config(config["tests"])
        urls, fetch_origin = collect_urls(args, config, settings, registry)

        if not urls:
            logger.error("No URLs to test. Exiting.")
            return 1

        reporter = Reporter(
            report_dir=settings.report_directory,
            domain=settings.domain,
            prefix=settings.report_prefix,
            stored_data=not fetch_origin,
        )
        runner = MigrationQA(settings, registry, reporter, fetch_origin=fetch_origin)

        # 4.3 Run
        summary = runner.run(urls)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except DuplicateSchemaKeyError as e:
        logger.error(f"Schema error: {e}")
        return 1

    # 4.4 Summary
    log_summary(summary)
    return 0


def run() -> None:
    """Console script entry point."""
    setup_logging()
    sys.exit(main())


if __name__ == "__main__":
    # 5.0 Entry point - run from the project root so the default config is found
    project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    if not os.path.exists(CONFIG_FILE_PATH) and os.path.exists(os.path.join(project_root, CONFIG_FILE_PATH)):
        os.chdir(project_root)
    run()
