"""Pre-flight checks for templates, transform patterns and target URLs.

This module implements:
- ``validate_template``: structural validation returning every violation
  as a human-readable string (never raises)
- ``check_regex`` / ``is_regex_safe``: the regex safety gate, also used by
  the engine right before a pattern is compiled
- ``validate_url`` / ``normalize_url``: target URL normalization

The regex gate is a heuristic catalogue of known catastrophic-backtracking
shapes (nested unbounded quantifiers, overlapping alternation), not a proof
of linear matching time.
"""

import re
from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ValidationError

from config.constants import (
    FIELD_TYPES,
    REGEX_FLAGS,
    REGEX_MAX_LENGTH,
    TRANSFORM_TYPES,
    TRANSFORMS_REQUIRING_PATTERN,
)
from extractr.exceptions import InvalidTemplateError, InvalidUrlError
from extractr.logger import get_logger
from extractr.models import Template

log = get_logger(__name__)


# ---------------------------------------------------------------------------
# Regex safety
# ---------------------------------------------------------------------------


class RegexVerdict(StrEnum):
    SAFE = "safe"
    TOO_LONG = "too_long"
    DANGEROUS = "dangerous"
    INVALID = "invalid"


# One token of a group body: an escape, a character class, or a plain char
_GROUP_BODY = r"(?:\\.|\[(?:\\.|[^\]\\])*\]|[^()\\\[])*"
_UNBOUNDED = r"(?:[*+]|\{\d+,\})"

_DANGEROUS_SHAPES: tuple[re.Pattern[str], ...] = (
    # (X*)*, (X+)+, (.*)+, ([a-z]+)+, (a+){2,}, lazy variants
    re.compile(r"\(" + _GROUP_BODY + _UNBOUNDED + r"\??\)" + _UNBOUNDED),
    # (a|a)*
    re.compile(r"\(([^()|]+)\|\1\)" + _UNBOUNDED),
)


def check_regex(pattern: str) -> RegexVerdict:
    """Classify a transform pattern.

    Args:
        pattern: Regular expression source.

    Returns:
        ``SAFE`` or the reason the pattern must not run.
    """
    if len(pattern) > REGEX_MAX_LENGTH:
        return RegexVerdict.TOO_LONG

    if any(shape.search(pattern) for shape in _DANGEROUS_SHAPES):
        return RegexVerdict.DANGEROUS

    try:
        re.compile(pattern)
    except re.error:
        return RegexVerdict.INVALID

    return RegexVerdict.SAFE


def is_regex_safe(pattern: str) -> bool:
    """Return True when the pattern is short, compiles and has no known ReDoS shape."""
    if not isinstance(pattern, str):
        return False
    return check_regex(pattern) is RegexVerdict.SAFE


# ---------------------------------------------------------------------------
# Template validation
# ---------------------------------------------------------------------------


def _is_nonempty_str(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integral(value: Any) -> bool:
    return _is_number(value) and float(value).is_integer()


def _is_array(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def _validate_pattern(pattern: Any, owner: str) -> list[str]:
    if not isinstance(pattern, str):
        return [f"{owner} requires params.pattern (string)"]

    verdict = check_regex(pattern)
    if verdict is RegexVerdict.TOO_LONG:
        return [
            f"{owner} has dangerous pattern (longer than {REGEX_MAX_LENGTH} characters)"
        ]
    if verdict is RegexVerdict.DANGEROUS:
        return [f"{owner} has dangerous pattern (possible ReDoS): {pattern}"]
    if verdict is RegexVerdict.INVALID:
        return [f"{owner} has invalid regex pattern: {pattern}"]
    return []


def _validate_transform(transform: Any, owner: str) -> list[str]:
    if not isinstance(transform, Mapping):
        return [f"{owner} must be an object"]

    ttype = transform.get("type")
    if ttype not in TRANSFORM_TYPES:
        return [f'{owner} has invalid type "{ttype}"']

    owner = f"{owner} ({ttype})"
    params = transform.get("params")
    if params is None:
        params = {}
    elif not isinstance(params, Mapping):
        return [f"{owner} params must be an object"]

    errors: list[str] = []

    if ttype in TRANSFORMS_REQUIRING_PATTERN:
        errors.extend(_validate_pattern(params.get("pattern"), owner))

        flags = params.get("flags")
        if flags is not None:
            if not isinstance(flags, str):
                errors.append(f"{owner} params.flags must be a string")
            elif set(flags) - REGEX_FLAGS:
                errors.append(
                    f"{owner} params.flags contains unsupported flag: {flags}"
                )

    if ttype == "regex":
        group = params.get("group")
        if group is not None and not (_is_integral(group) and group >= 0):
            errors.append(f"{owner} params.group must be a non-negative number")

    if ttype == "split":
        separator = params.get("separator")
        if separator is not None and not isinstance(separator, str):
            errors.append(f"{owner} params.separator must be a string")

    if ttype == "slice":
        for key in ("start", "end"):
            value = params.get(key)
            if value is not None and not _is_integral(value):
                errors.append(f"{owner} params.{key} must be a number")

    return errors


def _validate_field(field: Any, path: str) -> list[str]:
    if not isinstance(field, Mapping):
        return [f"Field at {path} must be an object"]

    errors: list[str] = []
    name = field.get("name")
    if not _is_nonempty_str(name):
        errors.append(f"Field at {path} must have a name")
        label = path
    else:
        label = f'"{name}"'

    if not _is_nonempty_str(field.get("selector")):
        errors.append(f"Field {label} must have a selector")

    ftype = field.get("type")
    if ftype is not None and ftype not in FIELD_TYPES:
        errors.append(f'Field {label} has invalid type "{ftype}"')

    attr = field.get("attr")
    if attr is not None and not isinstance(attr, str):
        errors.append(f"Field {label} attr must be a string")

    transforms = field.get("transforms")
    if transforms is not None:
        if not _is_array(transforms):
            errors.append(f"Field {label} transforms must be an array")
        else:
            for idx, transform in enumerate(transforms):
                errors.extend(
                    _validate_transform(transform, f"Field {label} transform {idx}")
                )

    nested = field.get("nested")
    if nested is not None:
        if not _is_array(nested):
            errors.append(f"Field {label} nested must be an array")
        else:
            for idx, child in enumerate(nested):
                errors.extend(_validate_field(child, f"{path}.nested[{idx}]"))

    return errors


def _validate_pagination(pagination: Any) -> list[str]:
    if not isinstance(pagination, Mapping):
        return ["Pagination must be an object"]

    errors: list[str] = []
    if not _is_nonempty_str(pagination.get("nextSelector")):
        errors.append("Pagination must have a nextSelector (string)")

    max_pages = pagination.get("maxPages")
    if max_pages is not None and not (_is_integral(max_pages) and max_pages >= 1):
        errors.append("Pagination maxPages must be a number >= 1")

    wait_ms = pagination.get("waitMs")
    if wait_ms is not None and not (_is_integral(wait_ms) and wait_ms >= 0):
        errors.append("Pagination waitMs must be a number >= 0")

    return errors


def _validate_options(options: Any) -> list[str]:
    if not isinstance(options, Mapping):
        return ["Options must be an object"]

    errors: list[str] = []
    for key in ("timeout", "waitMs"):
        value = options.get(key)
        if value is not None and not (_is_integral(value) and value >= 0):
            errors.append(f"Options {key} must be a number >= 0")

    wait_for = options.get("waitForSelector")
    if wait_for is not None and not isinstance(wait_for, str):
        errors.append("Options waitForSelector must be a string")

    enable_js = options.get("enableJs")
    if enable_js is not None and not isinstance(enable_js, bool):
        errors.append("Options enableJs must be a boolean")

    return errors


def validate_template(template: Any) -> list[str]:
    """Validate a template document.

    Every check runs independently, so the result lists all violations,
    including those in arbitrarily deep nested fields.

    Args:
        template: Raw template mapping (as loaded from YAML/JSON) or a
            ``Template`` model.

    Returns:
        Human-readable error strings; empty when the template is valid.
    """
    if isinstance(template, Template):
        template = template.to_document()

    if not isinstance(template, Mapping):
        return ["Template must be an object"]

    errors: list[str] = []

    if not _is_nonempty_str(template.get("name")):
        errors.append("Template must have a name (string)")

    if not _is_nonempty_str(template.get("container")):
        errors.append("Template must have a container selector (string)")

    fields = template.get("fields")
    if fields is not None and not _is_array(fields):
        errors.append("Template must have a fields array")
    elif not fields:
        errors.append("Template must have at least one field")
    else:
        for idx, field in enumerate(fields):
            errors.extend(_validate_field(field, f"fields[{idx}]"))

    if template.get("pagination") is not None:
        errors.extend(_validate_pagination(template["pagination"]))

    if template.get("options") is not None:
        errors.extend(_validate_options(template["options"]))

    return errors


def parse_template(raw: Any) -> Template:
    """Validate a template document and build the immutable model.

    Args:
        raw: Template mapping or an existing ``Template``.

    Returns:
        The parsed template.

    Raises:
        InvalidTemplateError: With every violation found.
    """
    errors = validate_template(raw)
    name = raw.get("name") if isinstance(raw, Mapping) else getattr(raw, "name", None)

    if errors:
        log.debug("Template rejected", template=name, error_count=len(errors))
        raise InvalidTemplateError(errors, template_name=name)

    if isinstance(raw, Template):
        return raw

    try:
        return Template.model_validate(raw)
    except ValidationError as exc:
        messages = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        ]
        raise InvalidTemplateError(messages, template_name=name) from exc


# ---------------------------------------------------------------------------
# URL validation
# ---------------------------------------------------------------------------


class UrlValidation(BaseModel):
    valid: bool
    normalized: str | None = None
    error: str | None = None


_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_HOSTNAME_RE = re.compile(r"^(?:[\w\-.]+|[0-9a-f:.]+)$", re.IGNORECASE)


def validate_url(url: Any) -> UrlValidation:
    """Validate and normalize a target URL.

    A missing scheme defaults to ``https``; an empty path becomes ``/``.

    Args:
        url: User supplied URL.

    Returns:
        UrlValidation with either ``normalized`` or ``error`` set.
    """
    if not isinstance(url, str):
        return UrlValidation(valid=False, error="URL must be a non-empty string")

    candidate = url.strip()
    if not candidate:
        return UrlValidation(valid=False, error="URL cannot be empty")

    if any(ch.isspace() for ch in candidate):
        return UrlValidation(valid=False, error=f"Invalid URL: {candidate}")

    if not _SCHEME_RE.match(candidate):
        candidate = f"https://{candidate}"

    try:
        parts = urlsplit(candidate)
        parts.port  # noqa: B018 - raises ValueError on a malformed port
    except ValueError:
        return UrlValidation(valid=False, error=f"Invalid URL: {candidate}")

    if parts.scheme.lower() not in ("http", "https"):
        return UrlValidation(
            valid=False, error=f"Invalid URL: unsupported scheme '{parts.scheme}'"
        )

    hostname = parts.hostname
    if not hostname or not _HOSTNAME_RE.match(hostname):
        return UrlValidation(valid=False, error=f"Invalid URL: no hostname in {candidate}")

    netloc = parts.netloc if "@" in parts.netloc else parts.netloc.lower()
    normalized = urlunsplit(
        (parts.scheme.lower(), netloc, parts.path or "/", parts.query, parts.fragment)
    )
    return UrlValidation(valid=True, normalized=normalized)


def normalize_url(url: Any) -> str:
    """Return the normalized URL or raise ``InvalidUrlError``."""
    result = validate_url(url)
    if not result.valid or result.normalized is None:
        raise InvalidUrlError(url=url, reason=result.error or "Invalid URL")
    return result.normalized
