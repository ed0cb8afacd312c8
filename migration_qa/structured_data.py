"""
1.0 Structured-Data Differ
Lenient JSON parsing, schema.org graph extraction/canonicalization and
recursive structural diffing of origin vs target data.

Key features:
- Tolerates trailing commas and unquoted or single-quoted keys (GTM dataLayer pushes)
- Re-keys @graph / itemListElement entries by @type so reordered graphs align
- Scalars compare equal on articleBody whitespace, date/time instant or canonical URL
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from migration_qa.models import NOT_AVAILABLE, SENTINELS
from migration_qa.normalizer import UrlContext, dates_equal, parse_datetime

logger = logging.getLogger(__name__)

SCHEMA_CONTEXT = "https://schema.org"
ARTICLE_BODY = "articleBody"
REKEYED_LISTS = ("@graph", "itemListElement")
DISAMBIGUATION_KEYS = ("position", "name", "@id")

_TRAILING_COMMA_RE = re.compile(r",(?!\s*?[{\[\"'\w])", re.DOTALL)
_SINGLE_QUOTED_KEY_RE = re.compile(r"^\s+'\w+?':", re.MULTILINE)
_UNQUOTED_KEY_RE = re.compile(r"^(\s+)([^'\"]+?):", re.MULTILINE)
_WHITESPACE_RE = re.compile(r"\s+")
_NUMERIC_RE = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_LD_JSON_RE = re.compile(
    r"<script\s[^>]*?type=(['\"])application/ld\+json\1[^>]*>(?P<result>.+?)</script>",
    re.IGNORECASE | re.DOTALL,
)


class DuplicateSchemaKeyError(Exception):
    """A schema graph entry could not be given a unique key. Fatal for the run."""


# =============================================================================
# 2.0 PARSING
# =============================================================================

def parse_lenient_json(text: str) -> Tuple[Any, bool]:
    """
    2.1 Parse JSON, tolerating trailing commas and unquoted/single-quoted keys.

    Returns:
        (value, True) on success, value always a dict or list.
        ([error], False) on failure, where error is the sentinel itself for
        N/A / EMPTY input and a parse error message otherwise.
    """
    formatted = _TRAILING_COMMA_RE.sub("", text or "")
    if _SINGLE_QUOTED_KEY_RE.search(formatted):
        formatted = formatted.replace("'", '"')
    formatted = _UNQUOTED_KEY_RE.sub(r'\1"\2":', formatted)

    try:
        value = json.loads(_TRAILING_COMMA_RE.sub("", formatted))
    except json.JSONDecodeError as e:
        error = text if text in SENTINELS else f"Syntax error: {e.msg}"
        return [error], False

    if not isinstance(value, (dict, list)):
        value = [value]
    return value, True


def extract_gtm_json(text: str) -> Any:
    """2.2 Decode a GTM-like dataLayer object; parse errors yield [error]."""
    return parse_lenient_json(text)[0]


def is_schema_document(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and value.get("@context") == SCHEMA_CONTEXT
        and bool(value.get("@graph"))
    )


def load_json_document(text: str, context: UrlContext) -> Tuple[Any, bool]:
    """2.3 Lenient parse, canonicalizing schema.org documents."""
    value, ok = parse_lenient_json(text)
    if ok and is_schema_document(value):
        value = canonicalize_schema(value, context)
    return value, ok


# =============================================================================
# 3.0 SCHEMA.ORG CANONICALIZATION
# =============================================================================

def _map_leaves(value: Any, func) -> Any:
    if isinstance(value, dict):
        return {k: _map_leaves(v, func) for k, v in value.items()}
    if isinstance(value, list):
        return [_map_leaves(v, func) for v in value]
    return func(value)


def _key_part(value: Any) -> str:
    if value is None or value is False:
        return ""
    if value is True:
        return "1"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def _entries(value: Any) -> Dict[Any, Any]:
    return dict(enumerate(value)) if isinstance(value, list) else dict(value)


def disambiguate_entries(items: Any) -> Dict[Any, Any]:
    """
    3.1 Re-key typed entries of a @graph / itemListElement list by @type.

    Colliding keys are extended with #position, then #name, then #@id.
    Untyped entries keep their positional key.

    Raises:
        DuplicateSchemaKeyError: if the key still collides after that.
    """
    result = _entries(items)
    for old_key, item in list(result.items()):
        if not isinstance(item, dict) or "@type" not in item:
            continue

        schema_type = item["@type"]
        new_key = "_".join(map(str, schema_type)) if isinstance(schema_type, list) else str(schema_type)
        for part in DISAMBIGUATION_KEYS:
            if new_key not in result:
                break
            new_key += "#" + _key_part(item.get(part, ""))

        if new_key in result:
            raise DuplicateSchemaKeyError(f"Duplicate key: {new_key}")

        result[new_key] = item
        del result[old_key]
    return result


def _rekey(node: Any) -> Any:
    if isinstance(node, list):
        return [_rekey(item) for item in node]
    if not isinstance(node, dict):
        return node

    out = {}
    for key, value in node.items():
        if isinstance(value, (dict, list)):
            if key in REKEYED_LISTS:
                value = disambiguate_entries(value)
            out[key] = _rekey(value)
        elif isinstance(key, str) and key.upper() == ARTICLE_BODY.upper():
            out[ARTICLE_BODY] = value
        else:
            out[key] = value
    return out


def canonicalize_schema(document: Dict[str, Any], context: UrlContext) -> Dict[str, Any]:
    """3.2 Canonicalize URLs in the graph and re-key entries for identity alignment."""
    document = {**document, "@graph": _map_leaves(document["@graph"], context.canonicalize)}
    return _rekey(document)


def extract_schema_graph(content: str) -> str:
    """
    3.3 Merge every schema.org JSON-LD block of a page into one document.

    Returns:
        Compact JSON text of {"@context", "@graph"}, or N/A if no block matched.
    """
    schemas: Optional[Dict[str, Any]] = None
    next_index = 0

    for match in _LD_JSON_RE.finditer(content or ""):
        try:
            schema = json.loads(match.group("result"))
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping unparsable JSON-LD block: {e}")
            continue
        if isinstance(schema, list) and len(schema) == 1:
            schema = schema[0]
        if not isinstance(schema, dict) or schema.get("@context") != SCHEMA_CONTEXT:
            continue

        if schemas is None:
            schemas = {"@context": schema["@context"], "@graph": {}}
        schema = {k: v for k, v in schema.items() if k != "@context"}

        graph = schema.get("@graph")
        if graph and isinstance(graph, (dict, list)):
            for item_id, item in _entries(graph).items():
                if isinstance(item_id, int) or _NUMERIC_RE.match(item_id):
                    schemas["@graph"][next_index] = item
                    next_index += 1
                else:
                    schemas["@graph"][item_id] = item
        else:
            schemas["@graph"][next_index] = schema
            next_index += 1

    if schemas is None:
        return NOT_AVAILABLE
    return json.dumps(to_jsonable(schemas), ensure_ascii=False, separators=(",", ":"))


# =============================================================================
# 4.0 DIFFING
# =============================================================================

def _strict_equal(a: Any, b: Any) -> bool:
    return type(a) is type(b) and a == b


def scalars_equal(key: Any, a: Any, b: Any, context: UrlContext) -> bool:
    """4.1 Equality of two leaf values under the canonicalization rules."""
    if _strict_equal(context.canonicalize(a), context.canonicalize(b)):
        return True
    if (
        key == ARTICLE_BODY
        and isinstance(a, str)
        and isinstance(b, str)
        and _WHITESPACE_RE.sub("", a) == _WHITESPACE_RE.sub("", b)
    ):
        return True
    if (parse_datetime(a) is not None or parse_datetime(b) is not None) and dates_equal(a, b):
        return True
    return False


def recursive_diff(a: Any, b: Any, context: UrlContext) -> Dict[Any, Any]:
    """
    4.2 Everything in `a` that has no equivalent in `b`.

    Nested structures are diffed recursively and only kept when non-empty.
    """
    other = _entries(b)
    diff = {}
    for key, value in _entries(a).items():
        if key not in other:
            diff[key] = value
        elif isinstance(value, (dict, list)):
            if isinstance(other[key], (dict, list)):
                nested = recursive_diff(value, other[key], context)
                if nested:
                    diff[key] = nested
            else:
                diff[key] = value
        elif not scalars_equal(key, value, other[key], context):
            diff[key] = value
    return diff


def symmetric_diff(a: Any, b: Any, context: UrlContext) -> Tuple[Dict, Dict]:
    """(only in a, only in b)"""
    return recursive_diff(a, b, context), recursive_diff(b, a, context)


def to_jsonable(value: Any) -> Any:
    """Mappings keyed 0..n-1 become lists again; other keys become strings."""
    if isinstance(value, list):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        if list(value.keys()) == list(range(len(value))):
            return [to_jsonable(v) for v in value.values()]
        return {str(k): to_jsonable(v) for k, v in value.items()}
    return value


def format_diff(diff: Dict[Any, Any]) -> str:
    """Pretty-printed diff subtree, or an empty string when there is none."""
    if not diff:
        return ""
    return json.dumps(to_jsonable(diff), indent=4, ensure_ascii=False)


@dataclass
class JsonDifference:
    """Structural difference of two JSON texts."""
    origin_text: str
    target_text: str
    only_origin: Dict[Any, Any]
    only_target: Dict[Any, Any]
    origin_ok: bool
    target_ok: bool

    @property
    def is_empty(self) -> bool:
        return not self.only_origin and not self.only_target

    @property
    def both_malformed(self) -> bool:
        """Both sides failed to parse, and neither was merely absent data."""
        return (
            not self.origin_ok
            and not self.target_ok
            and self.origin_text not in SENTINELS
            and self.target_text not in SENTINELS
        )


def json_difference(origin_text: str, target_text: str, context: UrlContext) -> JsonDifference:
    """
    4.3 Parse both sides and diff them both ways.

    A side that fails to parse is replaced by its error text, which is also
    what gets diffed (wrapped in a single-element list).
    """
    origin, origin_ok = load_json_document(origin_text, context)
    target, target_ok = load_json_document(target_text, context)
    only_origin, only_target = symmetric_diff(origin, target, context)
    return JsonDifference(
        origin_text=origin_text if origin_ok else origin[0],
        target_text=target_text if target_ok else target[0],
        only_origin=only_origin,
        only_target=only_target,
        origin_ok=origin_ok,
        target_ok=target_ok,
    )
