"""Rendering of extracted records as JSON, JSON Lines or CSV text."""

import json
import re
from collections.abc import Sequence
from typing import Any, Literal

from extractr.engine import stringify
from extractr.models import Record

OutputFormat = Literal["json", "jsonl", "csv"]
OUTPUT_FORMATS: tuple[str, ...] = ("json", "jsonl", "csv")

# Leading characters spreadsheets evaluate as formulas
_FORMULA_PREFIX = re.compile(r"^[=+\-@\t\r]")
_NEEDS_QUOTING = (",", '"', "\n", "'")


def escape_csv_cell(value: str) -> str:
    """Neutralize formula prefixes and quote cells with special characters."""
    if _FORMULA_PREFIX.match(value):
        value = "'" + value

    if any(char in value for char in _NEEDS_QUOTING):
        return '"' + value.replace('"', '""') + '"'
    return value


def _cell_text(value: Any) -> str:
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return stringify(value)


def _format_csv(records: Sequence[Record]) -> str:
    if not records:
        return ""

    headers = list(records[0].keys())
    lines = [",".join(escape_csv_cell(header) for header in headers)]
    for record in records:
        lines.append(
            ",".join(escape_csv_cell(_cell_text(record.get(header))) for header in headers)
        )
    return "\n".join(lines)


def format_output(records: Sequence[Record], fmt: str = "json") -> str:
    """Render records in the requested output format.

    Args:
        records: Extracted records in output order.
        fmt: One of ``json``, ``jsonl`` or ``csv``.

    Returns:
        The rendered text without a trailing newline.

    Raises:
        ValueError: If the format is not supported.
    """
    if fmt == "json":
        return json.dumps(list(records), indent=2, ensure_ascii=False, default=str)
    if fmt == "jsonl":
        return "\n".join(
            json.dumps(record, ensure_ascii=False, default=str) for record in records
        )
    if fmt == "csv":
        return _format_csv(records)
    raise ValueError(f"Unsupported output format '{fmt}'. Use one of: {', '.join(OUTPUT_FORMATS)}")
