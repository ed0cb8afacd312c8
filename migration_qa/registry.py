"""
1.0 Test Definition Registry
Resolves, per URL section, the ordered set of applicable test specs.

Config structure (the "tests" key of config.json):
{
    "all": {
        "title": {
            "name": "Title",
            "source": "body",
            "selector": "(?is)<title[^>]*>(?P<result>.*?)</title>"
        }
    },
    "post,category": {
        "schemas": {"name": "Schemas", "source": "body",
                    "selector": "(?is)(?P<result>.+)", "callback": "compare_schemas"}
    }
}
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from migration_qa.config import ConfigurationError
from migration_qa.models import OutputMode, Source, Strategy

logger = logging.getLogger(__name__)

ALL_SECTIONS = "all"
RESULT_GROUP = "result"
MAX_CALLBACK_ARGS = 3

# Strategies whose static arguments are regular expressions
_REGEX_ARG_STRATEGIES = {
    Strategy.WITH_REGEX,
    Strategy.WITH_TRANSFORM,
    Strategy.IMAGES,
    Strategy.IMAGES_COUNT,
}

_NAME_SUFFIXES = {
    OutputMode.MISSING: " (missing in target only)",
    OutputMode.DIFFERENCE: " (difference only)",
}


def name_suffix(mode: OutputMode) -> str:
    return _NAME_SUFFIXES.get(mode, "")


@dataclass(frozen=True)
class TestSpec:
    """A named extraction + comparison rule."""
    __test__ = False  # not a pytest class

    id: str
    name: str
    source: Optional[Source] = None
    selector: Optional["re.Pattern[str]"] = None
    selector_target: Optional["re.Pattern[str]"] = None
    callback: Optional[Strategy] = None
    callback_args: Tuple[Optional[str], ...] = (None, None, None)

    @property
    def is_placeholder(self) -> bool:
        return self.source is None or self.selector is None

    def selector_for(self, target: bool) -> Optional["re.Pattern[str]"]:
        if target and self.selector_target is not None:
            return self.selector_target
        return self.selector


def _compile_selector(pattern: Optional[str], where: str) -> Optional["re.Pattern[str]"]:
    if not pattern:
        return None
    try:
        compiled = re.compile(pattern)
    except re.error as e:
        raise ConfigurationError(f"Invalid selector for {where}: {e}") from e
    if RESULT_GROUP not in compiled.groupindex:
        raise ConfigurationError(f"Selector for {where} has no named group '{RESULT_GROUP}'")
    return compiled


def _callback_args(test: Dict[str, Any], where: str) -> Tuple[Optional[str], ...]:
    args = test.get("callback_args")
    if args is None:
        args = [
            test.get(f"callback-arg-{i}", test.get(f"callback_arg_{i}"))
            for i in range(1, MAX_CALLBACK_ARGS + 1)
        ]
    if not isinstance(args, list) or len(args) > MAX_CALLBACK_ARGS:
        raise ConfigurationError(f"'callback_args' for {where} must be a list of at most {MAX_CALLBACK_ARGS} values")
    args = list(args) + [None] * (MAX_CALLBACK_ARGS - len(args))
    return tuple(args)


def build_test_spec(test_id: str, test: Dict[str, Any], group: str) -> TestSpec:
    """Validate and compile a single test definition from config."""
    where = f"test '{test_id}' in group '{group}'"

    source = test.get("source")
    if source is not None:
        try:
            source = Source(source)
        except ValueError as e:
            raise ConfigurationError(f"Unknown source '{source}' for {where}") from e

    callback = test.get("callback")
    if callback is not None:
        try:
            callback = Strategy(callback)
        except ValueError as e:
            raise ConfigurationError(f"Unknown callback '{callback}' for {where}") from e

    callback_args = _callback_args(test, where)
    if callback in _REGEX_ARG_STRATEGIES:
        for arg in callback_args:
            if arg:
                try:
                    re.compile(arg)
                except re.error as e:
                    raise ConfigurationError(f"Invalid callback pattern {arg!r} for {where}: {e}") from e

    return TestSpec(
        id=test_id,
        name=str(test["name"]),
        source=source,
        selector=_compile_selector(test.get("selector"), where),
        selector_target=_compile_selector(test.get("selector_target", test.get("selector-target")), where),
        callback=callback,
        callback_args=callback_args,
    )


class TestRegistry:
    """
    2.0 Read-only registry of test specs keyed by section group.

    A section group is either "all" or a comma-separated list of sections.
    """
    __test__ = False  # not a pytest class

    def __init__(self, groups: Dict[str, Dict[str, TestSpec]]):
        self._groups = {key: dict(tests) for key, tests in groups.items()}
        logger.info(
            f"TestRegistry initialized: {len(self._groups)} groups, "
            f"{sum(len(t) for t in self._groups.values())} test definitions"
        )

    @classmethod
    def from_config(cls, tests_config: Dict[str, Dict[str, Any]]) -> "TestRegistry":
        """
        Raises:
            ConfigurationError: on any invalid test definition.
        """
        groups = {}
        for group, tests in tests_config.items():
            groups[group] = {
                test_id: build_test_spec(test_id, test, group)
                for test_id, test in tests.items()
            }
        return cls(groups)

    @staticmethod
    def group_sections(group: str) -> List[str]:
        return [s.strip() for s in group.split(",")]

    def groups_for(self, section: str) -> List[str]:
        """Section-specific groups in config order, then "all"."""
        keys = [
            key for key in self._groups
            if key != ALL_SECTIONS and section in self.group_sections(key)
        ]
        if ALL_SECTIONS in self._groups:
            keys.append(ALL_SECTIONS)
        return keys

    def applicable_tests(self, section: str) -> Dict[str, TestSpec]:
        """
        2.1 Ordered test id -> TestSpec for a section.

        The first definition of a test id wins, so section-specific
        definitions take precedence over "all".
        """
        tests: Dict[str, TestSpec] = {}
        for key in self.groups_for(section):
            for test_id, spec in self._groups[key].items():
                tests.setdefault(test_id, spec)
        return tests

    def __iter__(self) -> Iterator[TestSpec]:
        for tests in self._groups.values():
            yield from tests.values()

    def find_test_id(self, name: str) -> Optional[str]:
        """
        2.2 Test id for a report Metric name, accepting output-mode suffixed names.
        """
        for spec in self:
            if name == spec.name:
                return spec.id
            for suffix in _NAME_SUFFIXES.values():
                if name == spec.name + suffix:
                    return spec.id
        return None
