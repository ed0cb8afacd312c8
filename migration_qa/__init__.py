"""
Site Migration QA - Source Package

Modules:
- config: Configuration loading and validation
- normalizer: Text and URL canonicalization
- structured_data: Lenient JSON parsing and recursive JSON-LD / GTM diffing
- registry: Test definitions per section
- extractor: Regex extraction from status line, headers and body
- comparator: Comparison strategies
- fetcher: Concurrent origin/target fetching
- runner: Batch loop with retry queue
- reporter: CSV report and error files
- url_sources: Origin list, stored data, sitemap and static URL sources
"""

__version__ = "1.0.0"
