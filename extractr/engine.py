"""Field extraction engine.

Turns every element matched by a template's container selector into one
record. Fields are evaluated in declaration order:

1. nested fields become a list of sub-records, one per matched element
2. otherwise a single target is resolved (``"~ "`` selectors search the
   container's parent); no target means the field's fallback
3. the raw value is an attribute, the inner HTML, or the trimmed text
4. transforms run in declared order
5. the field type coerces the result

Each field evaluation yields a ``FieldOutcome``; any exception inside a
field turns into its fallback at that boundary, so one bad field never
costs the record, and every declared field is always present as a key.
"""

import copy
import re
from collections.abc import Iterable, Sequence
from functools import lru_cache
from typing import Any, NamedTuple
from urllib.parse import urljoin

import pandas as pd

from config.constants import SIBLING_SELECTOR_PREFIX
from extractr.dom import DocumentNode
from extractr.exceptions import UnsafeRegexError
from extractr.logger import get_logger
from extractr.models import (
    FieldDefinition,
    Record,
    RegexTransform,
    ReplaceTransform,
    SimpleTransform,
    SliceTransform,
    SplitTransform,
    Transform,
)
from extractr.validator import RegexVerdict, check_regex

log = get_logger(__name__)

_INT_STRIP = re.compile(r"[^0-9-]")
_FLOAT_STRIP = re.compile(r"[^0-9.-]")
_INT_PREFIX = re.compile(r"^-?\d+")
_FLOAT_PREFIX = re.compile(r"^-?(?:\d+\.?\d*|\.\d+)")
_ABSOLUTE_URL = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
_REPLACEMENT_TOKEN = re.compile(r"\$(\$|&|\d{1,2})")

_FLAG_BITS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


class FieldOutcome(NamedTuple):
    """Result of evaluating one field against one element."""

    value: Any
    fallback_used: bool = False
    error: str | None = None


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def stringify(value: Any) -> str:
    """Render a value the way page scripts stringify it.

    Lists join with commas, ``None`` is empty, booleans are lowercase and
    integral floats lose their ``.0``.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join(stringify(item) for item in value)
    return str(value)


def parse_int(value: Any) -> int:
    """Keep digits and minus signs, parse the leading integer; 0 if none."""
    match = _INT_PREFIX.match(_INT_STRIP.sub("", stringify(value)))
    return int(match.group()) if match else 0


def parse_float(value: Any) -> float:
    """Keep digits, dots and minus signs, parse the leading number; 0.0 if none."""
    if _is_number(value):
        return float(value)
    match = _FLOAT_PREFIX.match(_FLOAT_STRIP.sub("", stringify(value)))
    return float(match.group()) if match else 0.0


# Words pandas resolves against the current clock
_RELATIVE_DATE_WORDS = frozenset({"now", "today", "tomorrow", "yesterday"})


def to_iso_date(value: Any) -> str | None:
    """Parse a date/time and render it as ISO-8601 UTC with milliseconds.

    Numbers are epoch milliseconds and naive times are taken as UTC.
    Relative words such as "now" or "today" are not dates and yield None.

    Returns:
        e.g. ``"2024-01-15T00:00:00.000Z"``, or None when unparsable.
    """
    if value is None or value == "":
        return None

    try:
        if _is_number(value):
            stamp = pd.Timestamp(value, unit="ms")
        else:
            text = stringify(value).strip()
            if text.lower() in _RELATIVE_DATE_WORDS:
                return None
            stamp = pd.Timestamp(text)
    except (ValueError, TypeError, OverflowError):
        return None

    if pd.isna(stamp):
        return None

    stamp = stamp.tz_localize("UTC") if stamp.tzinfo is None else stamp.tz_convert("UTC")
    return stamp.strftime("%Y-%m-%dT%H:%M:%S.") + f"{stamp.microsecond // 1000:03d}Z"


def resolve_url(value: Any, page_url: str) -> Any:
    """Resolve a relative link against the page address.

    Values that already carry a scheme, empty values and values that fail
    to resolve are returned unchanged.
    """
    if not value:
        return value

    text = stringify(value)
    if _ABSOLUTE_URL.match(text):
        return value

    try:
        return urljoin(page_url, text)
    except ValueError:
        return value


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------


@lru_cache(maxsize=256)
def compile_pattern(pattern: str, flags: str = "") -> re.Pattern[str] | None:
    """Compile a transform pattern behind the regex safety gate.

    Args:
        pattern: Regular expression source.
        flags: Script-style flag letters (``i``, ``m``, ``s``; others ignored).

    Returns:
        The compiled pattern, or None when it does not compile.

    Raises:
        UnsafeRegexError: If the pattern is too long or has a ReDoS shape.
    """
    verdict = check_regex(pattern)
    if verdict in (RegexVerdict.TOO_LONG, RegexVerdict.DANGEROUS):
        raise UnsafeRegexError(pattern, reason=verdict.value)
    if verdict is RegexVerdict.INVALID:
        return None

    bits = 0
    for flag in flags:
        bits |= _FLAG_BITS.get(flag, 0)

    try:
        return re.compile(pattern, bits)
    except re.error:
        return None


def _expand_replacement(match: re.Match[str], replacement: str) -> str:
    """Expand ``$1``, ``$&`` and ``$$`` tokens in a replacement string."""

    def _token(token: re.Match[str]) -> str:
        ref = token.group(1)
        if ref == "$":
            return "$"
        if ref == "&":
            return match.group(0)
        index = int(ref)
        if 0 < index <= (match.re.groups or 0):
            return match.group(index) or ""
        return token.group(0)

    return _REPLACEMENT_TOKEN.sub(_token, replacement)


def apply_transform(value: Any, transform: Transform) -> Any:
    """Apply one transform; the input is stringified first."""
    text = stringify(value)

    if isinstance(transform, SimpleTransform):
        if transform.type == "trim":
            return text.strip()
        if transform.type == "lowercase":
            return text.lower()
        if transform.type == "uppercase":
            return text.upper()
        if transform.type == "parseInt":
            return parse_int(text)
        return parse_float(text)

    if isinstance(transform, ReplaceTransform):
        params = transform.params
        compiled = compile_pattern(params.pattern, params.flags)
        if compiled is None:
            return value
        count = 0 if "g" in params.flags else 1
        return compiled.sub(
            lambda match: _expand_replacement(match, params.replacement), text, count=count
        )

    if isinstance(transform, RegexTransform):
        params = transform.params
        compiled = compile_pattern(params.pattern, params.flags)
        if compiled is None or params.group > compiled.groups:
            return value
        match = compiled.search(text)
        if match is None:
            return value
        return match.group(params.group)

    if isinstance(transform, SplitTransform):
        separator = transform.params.separator
        return list(text) if separator == "" else text.split(separator)

    if isinstance(transform, SliceTransform):
        return text[transform.params.start : transform.params.end]

    raise TypeError(f"Unsupported transform: {transform!r}")


def apply_transforms(value: Any, transforms: Iterable[Transform]) -> Any:
    """Run a transform pipeline in declared order."""
    for transform in transforms:
        value = apply_transform(value, transform)
    return value


def coerce_type(value: Any, field_type: str, page_url: str = "") -> Any:
    """Final coercion step; ``text``, ``list``, ``nested`` and ``html`` pass through."""
    if field_type in ("number", "currency"):
        return parse_float(value)
    if field_type == "date":
        return to_iso_date(value)
    if field_type == "boolean":
        return bool(value)
    if field_type == "url":
        return resolve_url(value, page_url)
    return value


# ---------------------------------------------------------------------------
# Field evaluation
# ---------------------------------------------------------------------------


def resolve_target(container: DocumentNode, selector: str) -> DocumentNode | None:
    """Find a field's element, honouring the sibling prefix."""
    if selector.startswith(SIBLING_SELECTOR_PREFIX):
        parent = container.parent
        if parent is None:
            return None
        return parent.query_selector(selector[len(SIBLING_SELECTOR_PREFIX) :])
    return container.query_selector(selector)


def read_raw_value(element: DocumentNode, field: FieldDefinition) -> str:
    if field.attr:
        attribute = element.get_attribute(field.attr)
        return attribute if attribute is not None else ""
    if field.type == "html":
        return element.inner_html()
    return element.text_content().strip()


def evaluate_field(
    container: DocumentNode,
    field: FieldDefinition,
    page_url: str,
    debug: bool = False,
) -> FieldOutcome:
    """Evaluate one field; never raises."""
    try:
        if field.nested is not None:
            elements = container.query_selector_all(field.selector)
            return FieldOutcome(
                [build_record(element, field.nested, page_url, debug) for element in elements]
            )

        element = resolve_target(container, field.selector)
        if element is None:
            return FieldOutcome(copy.deepcopy(field.fallback), fallback_used=True)

        value = read_raw_value(element, field)
        value = apply_transforms(value, field.transforms)
        return FieldOutcome(coerce_type(value, field.type, page_url))

    except Exception as exc:
        error = f"{type(exc).__name__}: {exc}"
        if debug:
            log.warning(
                "Field extraction failed",
                field=field.name,
                selector=field.selector,
                error=error,
            )
        return FieldOutcome(copy.deepcopy(field.fallback), fallback_used=True, error=error)


def build_record(
    element: DocumentNode,
    fields: Sequence[FieldDefinition],
    page_url: str,
    debug: bool = False,
) -> Record:
    """Build one record with exactly one key per declared field."""
    return {
        field.name: evaluate_field(element, field, page_url, debug).value for field in fields
    }


def extract_records(
    root: DocumentNode,
    container: str,
    fields: Sequence[FieldDefinition],
    page_url: str,
    debug: bool = False,
) -> list[Record]:
    """Extract one record per container element in document order.

    Args:
        root: Document (or subtree) to search.
        container: CSS selector of the repeated record element.
        fields: Field definitions, evaluated in order.
        page_url: Address used to resolve relative ``url`` fields.
        debug: Log every field failure.

    Returns:
        Records in container order.
    """
    containers = root.query_selector_all(container)
    records = [build_record(element, fields, page_url, debug) for element in containers]

    log.debug(
        "Containers processed",
        container=container,
        containers=len(containers),
        fields=len(fields),
    )
    return records
