"""
1.0 Comparator
Dispatches each extracted origin/target pair to its comparison strategy.

Key features:
- Default rule: canonicalize + normalize both sides, compare for equality
- Closed set of strategies (models.Strategy) dispatched through a lookup table
- Output-mode variants looked up by (strategy, output mode); the display name
  gains a "(difference only)" / "(missing in target only)" suffix
- Strategies return the values to display, never mutate their inputs
"""

import html
import json
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

from migration_qa.config import Settings
from migration_qa.extractor import regex_result
from migration_qa.models import (
    NOT_AVAILABLE,
    SENTINELS,
    OutputMode,
    Outcome,
    Strategy,
    TestResult,
)
from migration_qa.normalizer import UrlContext, dates_equal, normalize
from migration_qa.registry import TestSpec, name_suffix
from migration_qa.structured_data import extract_schema_graph, format_diff, json_difference

logger = logging.getLogger(__name__)

PRESENT = "Present"
MISSING = "Missing"

_IMG_RE = re.compile(r'<img\b(?P<img>[^>]*?\ssrc="(?P<src>[^"]*?)"[^>]*?)/?>', re.IGNORECASE | re.DOTALL)
_ALT_RE = re.compile(r'\salt="(?P<alt>[^"]*)"', re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class Comparison:
    """Strategy result: outcome plus the values to display in the report."""
    outcome: Outcome
    origin: str
    target: str


@dataclass(frozen=True)
class StrategyContext:
    """What a strategy may know beyond the two values and its static args."""
    urls: UrlContext
    fetch_origin: bool = True


# =============================================================================
# 2.0 HELPERS
# =============================================================================

def extract_images_data(content: str, context: UrlContext, pattern_remove: Optional[str] = None) -> str:
    """
    2.1 One "url (alt)" line per <img> tag, or N/A when there is none.

    The src is URL-canonicalized; a blank alt is reported as EMPTY and a
    missing one as N/A.
    """
    if pattern_remove:
        content = re.sub(pattern_remove, "", content)

    images = []
    for match in _IMG_RE.finditer(content):
        url = context.canonicalize(match.group("src"))
        alt_match = _ALT_RE.search(match.group("img"))
        alt = alt_match.group("alt").strip() if alt_match else NOT_AVAILABLE
        images.append(f"{url} ({alt or 'EMPTY'})")

    return "\n".join(images) if images else NOT_AVAILABLE


def count_images(images_data: str) -> int:
    if images_data == NOT_AVAILABLE:
        return 0
    return len(images_data.split("\n"))


def _decode_json_string(value: str) -> str:
    try:
        return json.loads('"' + value + '"')
    except ValueError:
        return value


def transformed_values_equal(
    origin: str,
    target: str,
    pattern_origin: str,
    pattern_target: str,
    context: UrlContext,
) -> bool:
    """
    2.2 Compare every named group of `pattern_origin` matched over origin with
    the same group of `pattern_target` matched over target, occurrence by
    occurrence, case-insensitively.
    """
    compiled_origin = re.compile(pattern_origin)
    compiled_target = re.compile(pattern_target)
    matches_origin = [m.groupdict() for m in compiled_origin.finditer(origin)]
    matches_target = [m.groupdict() for m in compiled_target.finditer(target)]

    for group in compiled_origin.groupindex:
        values_origin = [m.get(group) or "" for m in matches_origin]
        values_target = [m.get(group) or "" for m in matches_target if group in m]
        if len(values_origin) != len(values_target):
            return False
        for value_origin, value_target in zip(values_origin, values_target):
            if context.unify(_decode_json_string(value_origin.lower())) != context.unify(
                _decode_json_string(value_target.lower())
            ):
                return False
    return True


def _presence(value: str) -> str:
    return MISSING if value in SENTINELS else PRESENT


def _split_comma_separated(value: str) -> set:
    return set(value.replace(", ", ",").split(","))


# =============================================================================
# 3.0 STRATEGIES
# Signature: (origin, target, args, context) -> Comparison
# =============================================================================

def compare_default(origin: str, target: str, args: Sequence, ctx: StrategyContext) -> Comparison:
    return Comparison(Outcome.from_bool(ctx.urls.unify(origin) == ctx.urls.unify(target)), origin, target)


def compare_case_insensitive(origin, target, args, ctx) -> Comparison:
    return Comparison(Outcome.from_bool(origin.upper() == target.upper()), origin, target)


def compare_comma_separated(origin, target, args, ctx) -> Comparison:
    passed = _split_comma_separated(origin) == _split_comma_separated(target)
    return Comparison(Outcome.from_bool(passed), origin, target)


def compare_date(origin, target, args, ctx) -> Comparison:
    return Comparison(Outcome.from_bool(dates_equal(origin, target)), origin, target)


def compare_presence(origin, target, args, ctx) -> Comparison:
    return Comparison(Outcome.from_bool(_presence(origin) == _presence(target)), origin, target)


def compare_with_regex(origin, target, args, ctx) -> Comparison:
    pattern, pattern_origin, pattern_target = (list(args) + [None] * 3)[:3]
    if ctx.fetch_origin:
        origin = regex_result(pattern, origin)
    target = regex_result(pattern, target)

    if pattern_origin and pattern_target:
        passed = transformed_values_equal(origin, target, pattern_origin, pattern_target, ctx.urls)
    else:
        passed = ctx.urls.unify(origin) == ctx.urls.unify(target)
    return Comparison(Outcome.from_bool(passed), origin, target)


def compare_with_transform(origin, target, args, ctx) -> Comparison:
    pattern_origin, pattern_target = (list(args) + [None] * 2)[:2]
    if not pattern_origin or not pattern_target:
        return compare_default(origin, target, args, ctx)
    passed = transformed_values_equal(origin, target, pattern_origin, pattern_target, ctx.urls)
    return Comparison(Outcome.from_bool(passed), origin, target)


def _images(origin, target, args, ctx) -> Tuple[str, str]:
    pattern_remove = args[0] if args else None
    if ctx.fetch_origin:
        origin = extract_images_data(origin, ctx.urls, pattern_remove)
    return origin, extract_images_data(target, ctx.urls, pattern_remove)


def compare_images(origin, target, args, ctx) -> Comparison:
    origin, target = _images(origin, target, args, ctx)
    return Comparison(Outcome.from_bool(ctx.urls.unify(origin) == ctx.urls.unify(target)), origin, target)


def compare_images_count(origin, target, args, ctx) -> Comparison:
    origin, target = _images(origin, target, args, ctx)
    return Comparison(Outcome.from_bool(count_images(origin) == count_images(target)), origin, target)


def _schemas(origin, target, ctx) -> Tuple[str, str]:
    if ctx.fetch_origin:
        origin = extract_schema_graph(origin)
    return origin, extract_schema_graph(target)


def _json_full(origin, target, ctx) -> Comparison:
    diff = json_difference(origin, target, ctx.urls)
    if diff.both_malformed:
        return Comparison(Outcome.SKIP, diff.origin_text, diff.target_text)
    return Comparison(Outcome.from_bool(diff.is_empty), diff.origin_text, diff.target_text)


def _json_difference(origin, target, ctx) -> Comparison:
    diff = json_difference(origin, target, ctx.urls)
    if diff.both_malformed:
        return Comparison(Outcome.SKIP, diff.origin_text, diff.target_text)
    return Comparison(
        Outcome.from_bool(diff.is_empty),
        format_diff(diff.only_origin),
        format_diff(diff.only_target),
    )


def _json_missing(origin, target, ctx) -> Comparison:
    diff = json_difference(origin, target, ctx.urls)
    if diff.both_malformed:
        return Comparison(Outcome.SKIP, diff.origin_text, diff.target_text)
    return Comparison(Outcome.from_bool(not diff.only_origin), format_diff(diff.only_origin), diff.target_text)


def compare_schemas(origin, target, args, ctx) -> Comparison:
    return _json_full(*_schemas(origin, target, ctx), ctx)


def compare_schemas_difference(origin, target, args, ctx) -> Comparison:
    return _json_difference(*_schemas(origin, target, ctx), ctx)


def compare_schemas_missing(origin, target, args, ctx) -> Comparison:
    return _json_missing(*_schemas(origin, target, ctx), ctx)


def compare_gtm_data(origin, target, args, ctx) -> Comparison:
    return _json_full(origin, target, ctx)


def compare_gtm_data_difference(origin, target, args, ctx) -> Comparison:
    return _json_difference(origin, target, ctx)


def compare_gtm_data_missing(origin, target, args, ctx) -> Comparison:
    return _json_missing(origin, target, ctx)


STRATEGIES: Dict[Strategy, Callable[..., Comparison]] = {
    Strategy.CASE_INSENSITIVE: compare_case_insensitive,
    Strategy.COMMA_SEPARATED: compare_comma_separated,
    Strategy.DATE: compare_date,
    Strategy.PRESENCE: compare_presence,
    Strategy.WITH_REGEX: compare_with_regex,
    Strategy.WITH_TRANSFORM: compare_with_transform,
    Strategy.IMAGES: compare_images,
    Strategy.IMAGES_COUNT: compare_images_count,
    Strategy.SCHEMAS: compare_schemas,
    Strategy.SCHEMAS_DIFFERENCE: compare_schemas_difference,
    Strategy.SCHEMAS_MISSING: compare_schemas_missing,
    Strategy.GTM_DATA: compare_gtm_data,
    Strategy.GTM_DATA_DIFFERENCE: compare_gtm_data_difference,
    Strategy.GTM_DATA_MISSING: compare_gtm_data_missing,
}

OUTPUT_MODE_VARIANTS: Dict[Tuple[Strategy, OutputMode], Strategy] = {
    (Strategy.SCHEMAS, OutputMode.DIFFERENCE): Strategy.SCHEMAS_DIFFERENCE,
    (Strategy.SCHEMAS, OutputMode.MISSING): Strategy.SCHEMAS_MISSING,
    (Strategy.GTM_DATA, OutputMode.DIFFERENCE): Strategy.GTM_DATA_DIFFERENCE,
    (Strategy.GTM_DATA, OutputMode.MISSING): Strategy.GTM_DATA_MISSING,
}


# =============================================================================
# 4.0 COMPARATOR
# =============================================================================

class Comparator:
    """
    4.1 Compares extracted origin/target values under each test's strategy.
    """

    def __init__(self, settings: Settings, fetch_origin: bool = True):
        """
        Args:
            settings: Run settings (domain, URL rewrites, output mode)
            fetch_origin: False when origin values come from a stored report
        """
        self.settings = settings
        self.output_mode = settings.output_mode
        self.fetch_origin = fetch_origin

    def resolve(self, spec: TestSpec) -> Tuple[Optional[Strategy], str]:
        """Effective strategy and display name of a test under the output mode."""
        strategy = spec.callback
        name = spec.name
        if strategy is None:
            return None, name

        variant = OUTPUT_MODE_VARIANTS.get((strategy, self.output_mode))
        if variant is not None:
            strategy = variant
            suffix = name_suffix(self.output_mode)
            if not name.endswith(suffix):
                name += suffix
        return strategy, name

    def context_for(self, current_url: Optional[str]) -> StrategyContext:
        return StrategyContext(
            urls=UrlContext(self.settings.domain, current_url, self.settings.url_rewrites),
            fetch_origin=self.fetch_origin,
        )

    def compare(self, spec: TestSpec, origin: str, target: str, current_url: Optional[str] = None) -> Comparison:
        """4.2 Run the test's strategy (or the default rule) on one pair."""
        strategy, _ = self.resolve(spec)
        func = STRATEGIES[strategy] if strategy is not None else compare_default
        return func(origin, target, spec.callback_args, self.context_for(current_url))

    def evaluate(self, spec: TestSpec, origin: str, target: str, current_url: Optional[str] = None) -> Optional[TestResult]:
        """
        4.3 Report-ready result for one pair, or None when the strategy skipped it.
        """
        comparison = self.compare(spec, origin, target, current_url)
        if comparison.outcome == Outcome.SKIP:
            logger.debug(f"Skipped test '{spec.id}' for {current_url}")
            return None

        _, name = self.resolve(spec)
        return TestResult(
            test_id=spec.id,
            name=name,
            origin_value=html.unescape(comparison.origin),
            target_value=html.unescape(comparison.target),
            passed=comparison.outcome == Outcome.PASS,
        )
