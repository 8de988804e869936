"""Tests for the field extraction engine.

Validates record building including:
- Raw value reading (text, attributes, inner HTML)
- Transform pipelines and their declared order
- Type coercion
- Fallback substitution and the per-field failure boundary
- Nested and sibling-scoped fields

Testing Philosophy:
    The engine is pure: it walks a DocumentNode and returns data. Every
    test runs it against a real lxml document built from a small fixture,
    so selector semantics match what production sees.
"""

from typing import Any

import pytest
from hypothesis import given, strategies as st

from extractr.dom import parse_document
from extractr.engine import (
    FieldOutcome,
    apply_transforms,
    build_record,
    coerce_type,
    evaluate_field,
    extract_records,
    parse_float,
    parse_int,
    stringify,
    to_iso_date,
)
from extractr.models import FieldDefinition

PAGE_URL = "https://shop.test/list?page=1"

CATALOG_HTML = """
<html><head><title>Catalog</title></head><body>
<div class="list">
  <div class="card" data-id="1">
    <h2 class="title">  Widget  </h2>
    <span class="price">$1,234.56</span>
    <a class="link" href="/w/1">more</a>
    <div class="desc"><p>Nice <b>bold</b></p> tail</div>
    <ul class="variants">
      <li><span class="color">red</span><span class="size">S</span></li>
      <li><span class="color">blue</span></li>
    </ul>
    <time class="added">2024-01-15T10:30:00Z</time>
  </div>
  <div class="card" data-id="2">
    <h2 class="title">Gadget</h2>
    <a class="link" href="https://other.test/g/2">more</a>
    <time class="added">not a date</time>
  </div>
</div>
</body></html>
"""

STORY_HTML = """
<html><body><table><tbody>
  <tr class="athing"><td><span class="titleline"><a href="https://a.test/">Story A</a></span></td></tr>
  <tr><td class="subtext"><span class="score">42 points</span> by <a class="hnuser">alice</a></td></tr>
</tbody></table></body></html>
"""


def _field(**definition: Any) -> FieldDefinition:
    return FieldDefinition.model_validate(definition)


def _transforms(*transforms: dict[str, Any]):
    return _field(name="t", selector="x", transforms=list(transforms)).transforms


@pytest.fixture
def catalog():
    return parse_document(CATALOG_HTML)


@pytest.fixture
def first_card(catalog):
    return catalog.query_selector(".card")


class TestRawValues:
    """Test suite for reading values off the target element."""

    def test_text_is_trimmed(self, first_card) -> None:
        assert evaluate_field(first_card, _field(name="t", selector=".title"), PAGE_URL).value == "Widget"

    def test_attribute_value(self, first_card) -> None:
        field = _field(name="id", selector=".link", attr="href")
        assert evaluate_field(first_card, field, PAGE_URL).value == "/w/1"

    def test_missing_attribute_is_empty_string(self, first_card) -> None:
        field = _field(name="id", selector=".link", attr="data-missing")
        assert evaluate_field(first_card, field, PAGE_URL).value == ""

    def test_html_type_returns_inner_markup(self, first_card) -> None:
        field = _field(name="desc", selector=".desc", type="html")
        assert evaluate_field(first_card, field, PAGE_URL).value == "<p>Nice <b>bold</b></p> tail"


class TestFallbacks:
    """Test suite for fallback substitution."""

    def test_missing_element_yields_null(self, first_card) -> None:
        outcome = evaluate_field(first_card, _field(name="x", selector=".absent"), PAGE_URL)
        assert outcome == FieldOutcome(None, fallback_used=True)

    def test_missing_element_yields_declared_fallback(self, first_card) -> None:
        field = _field(name="x", selector=".absent", fallback="n/a")
        assert evaluate_field(first_card, field, PAGE_URL).value == "n/a"

    def test_fallback_is_copied_per_record(self, catalog) -> None:
        field = _field(name="tags", selector=".absent", fallback=[])
        records = extract_records(catalog, ".card", [field], PAGE_URL)

        assert records[0]["tags"] == []
        assert records[0]["tags"] is not records[1]["tags"]
        assert records[0]["tags"] is not field.fallback

    def test_invalid_selector_degrades_to_fallback(self, first_card) -> None:
        field = _field(name="x", selector="[[", fallback=0)
        outcome = evaluate_field(first_card, field, PAGE_URL)

        assert outcome.value == 0
        assert outcome.fallback_used is True
        assert outcome.error is not None

    def test_unsafe_pattern_degrades_to_fallback(self, first_card) -> None:
        """Patterns are re-checked at extraction time, even without validation."""
        field = _field(
            name="t",
            selector=".title",
            fallback="blocked",
            transforms=[{"type": "regex", "params": {"pattern": "(.*)+"}}],
        )
        outcome = evaluate_field(first_card, field, PAGE_URL, debug=True)

        assert outcome.value == "blocked"
        assert "UnsafeRegexError" in outcome.error

    def test_record_shape_is_stable(self, catalog) -> None:
        """Every declared field is a key in every record, failures included."""
        fields = [
            _field(name="title", selector=".title"),
            _field(name="price", selector=".price", type="currency"),
            _field(name="broken", selector="[[", fallback=None),
        ]
        records = extract_records(catalog, ".card", fields, PAGE_URL)

        assert len(records) == 2
        for record in records:
            assert list(record) == ["title", "price", "broken"]
        assert records[1]["price"] is None


class TestTransforms:
    """Test suite for the transform pipeline."""

    def test_regex_then_parse_int_keeps_declared_order(self) -> None:
        transforms = _transforms(
            {"type": "regex", "params": {"pattern": r"(\d+),(\d+)", "group": 1}},
            {"type": "parseInt"},
        )
        assert apply_transforms("$1,234.56", transforms) == 1

    def test_slice(self) -> None:
        assert apply_transforms("hello", _transforms({"type": "slice", "params": {"start": 0, "end": 3}})) == "hel"

    def test_slice_defaults_to_end_of_string(self) -> None:
        assert apply_transforms("hello", _transforms({"type": "slice", "params": {"start": 2}})) == "llo"

    def test_parse_float_strips_currency(self) -> None:
        assert apply_transforms("$12.50 USD", _transforms({"type": "parseFloat"})) == 12.5

    def test_parse_int_unparsable_is_zero(self) -> None:
        assert apply_transforms("n/a", _transforms({"type": "parseInt"})) == 0

    def test_case_and_whitespace(self) -> None:
        transforms = _transforms({"type": "trim"}, {"type": "uppercase"})
        assert apply_transforms("  mixed Case ", transforms) == "MIXED CASE"
        assert apply_transforms("ABC", _transforms({"type": "lowercase"})) == "abc"

    def test_replace_all_by_default(self) -> None:
        transforms = _transforms({"type": "replace", "params": {"pattern": r"\s+", "replacement": " "}})
        assert apply_transforms("a   b \n c", transforms) == "a b c"

    def test_replace_first_without_global_flag(self) -> None:
        transforms = _transforms({"type": "replace", "params": {"pattern": "o", "flags": "", "replacement": "0"}})
        assert apply_transforms("foo", transforms) == "f0o"

    def test_replace_case_insensitive_and_group_references(self) -> None:
        insensitive = _transforms({"type": "replace", "params": {"pattern": "usd", "flags": "gi"}})
        swap = _transforms(
            {"type": "replace", "params": {"pattern": r"(\d+)-(\d+)", "replacement": "$2-$1"}}
        )
        assert apply_transforms("12 USD", insensitive) == "12 "
        assert apply_transforms("10-20", swap) == "20-10"

    def test_regex_without_match_leaves_value(self) -> None:
        transforms = _transforms({"type": "regex", "params": {"pattern": r"\d+"}})
        assert apply_transforms("no digits", transforms) == "no digits"

    def test_regex_invalid_pattern_leaves_value(self) -> None:
        transforms = _transforms({"type": "regex", "params": {"pattern": "(unclosed"}})
        assert apply_transforms("value", transforms) == "value"

    def test_regex_group_out_of_range_leaves_value(self) -> None:
        transforms = _transforms({"type": "regex", "params": {"pattern": r"\d+", "group": 2}})
        assert apply_transforms("abc 123", transforms) == "abc 123"

    def test_split(self) -> None:
        assert apply_transforms("a,b,c", _transforms({"type": "split"})) == ["a", "b", "c"]
        assert apply_transforms("a | b", _transforms({"type": "split", "params": {"separator": " | "}})) == ["a", "b"]

    def test_transform_after_split_stringifies_list(self) -> None:
        transforms = _transforms({"type": "split"}, {"type": "uppercase"})
        assert apply_transforms("a,b", transforms) == "A,B"


class TestTypeCoercion:
    """Test suite for the final coercion step."""

    @pytest.mark.parametrize(
        "raw,expected",
        [("$1,234.56", 1234.56), ("-5 C", -5.0), ("free", 0.0), ("", 0.0)],
    )
    def test_number_and_currency(self, raw: str, expected: float) -> None:
        assert coerce_type(raw, "number") == expected
        assert coerce_type(raw, "currency") == expected

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("2024-01-15T10:30:00Z", "2024-01-15T10:30:00.000Z"),
            ("2024-01-15", "2024-01-15T00:00:00.000Z"),
            ("2024-01-15T12:00:00+02:00", "2024-01-15T10:00:00.000Z"),
            ("not a date", None),
            ("", None),
            ("now", None),
            ("today", None),
            ("Today", None),
            (" NOW ", None),
            ("yesterday", None),
        ],
    )
    def test_date(self, raw: str, expected: str | None) -> None:
        assert coerce_type(raw, "date") == expected

    def test_epoch_milliseconds(self) -> None:
        assert to_iso_date(0) == "1970-01-01T00:00:00.000Z"

    def test_boolean_truthiness(self) -> None:
        assert coerce_type("", "boolean") is False
        assert coerce_type("yes", "boolean") is True
        assert coerce_type(0, "boolean") is False

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("/w/1", "https://shop.test/w/1"),
            ("detail?id=3", "https://shop.test/detail?id=3"),
            ("https://other.test/g/2", "https://other.test/g/2"),
            ("mailto:team@shop.test", "mailto:team@shop.test"),
            ("", ""),
        ],
    )
    def test_url_resolution(self, raw: str, expected: str) -> None:
        assert coerce_type(raw, "url", PAGE_URL) == expected

    @pytest.mark.parametrize("field_type", ["text", "list", "html", "nested"])
    def test_passthrough_types(self, field_type: str) -> None:
        assert coerce_type(["a"], field_type) == ["a"]


class TestStructuredFields:
    """Test suite for nested and sibling-scoped fields."""

    def test_nested_fields_build_sub_records(self, first_card) -> None:
        field = _field(
            name="variants",
            selector=".variants li",
            nested=[
                {"name": "color", "selector": ".color"},
                {"name": "size", "selector": ".size", "fallback": "N/A"},
            ],
        )
        assert evaluate_field(first_card, field, PAGE_URL).value == [
            {"color": "red", "size": "S"},
            {"color": "blue", "size": "N/A"},
        ]

    def test_nested_without_matches_is_empty_list(self, catalog) -> None:
        second_card = catalog.query_selector_all(".card")[1]
        field = _field(name="variants", selector=".variants li", nested=[{"name": "c", "selector": ".color"}])
        assert evaluate_field(second_card, field, PAGE_URL).value == []

    def test_sibling_selector_searches_container_parent(self) -> None:
        root = parse_document(STORY_HTML)
        fields = [
            _field(name="title", selector=".titleline > a"),
            _field(
                name="points",
                selector="~ tr .score",
                type="number",
                transforms=[
                    {"type": "regex", "params": {"pattern": r"(\d+)", "group": 1}},
                    {"type": "parseInt"},
                ],
            ),
            _field(name="author", selector="~ tr .hnuser"),
            _field(name="inside_only", selector=".score"),
        ]

        records = extract_records(root, ".athing", fields, "https://news.test/")

        assert records == [{"title": "Story A", "points": 42.0, "author": "alice", "inside_only": None}]

    def test_full_record(self, first_card) -> None:
        fields = [
            _field(name="title", selector=".title"),
            _field(name="url", selector=".link", type="url", attr="href"),
            _field(name="price", selector=".price", type="currency"),
            _field(name="added", selector=".added", type="date"),
        ]
        assert build_record(first_card, fields, PAGE_URL) == {
            "title": "Widget",
            "url": "https://shop.test/w/1",
            "price": 1234.56,
            "added": "2024-01-15T10:30:00.000Z",
        }

    def test_extraction_is_idempotent(self, catalog) -> None:
        fields = [
            _field(name="title", selector=".title"),
            _field(name="variants", selector=".variants li", nested=[{"name": "c", "selector": ".color"}]),
            _field(name="missing", selector=".absent", fallback={"k": []}),
        ]
        assert extract_records(catalog, ".card", fields, PAGE_URL) == extract_records(
            catalog, ".card", fields, PAGE_URL
        )

    def test_no_containers_yields_no_records(self, catalog) -> None:
        assert extract_records(catalog, ".nothing", [_field(name="t", selector="h2")], PAGE_URL) == []


class TestNumberHelpers:
    """Test suite for numeric parsing helpers."""

    @pytest.mark.parametrize(
        "raw,expected",
        [("42 points", 42), ("-5 items", -5), ("1,234", 1234), ("", 0), ("abc", 0)],
    )
    def test_parse_int(self, raw: str, expected: int) -> None:
        assert parse_int(raw) == expected

    def test_parse_float_passes_numbers_through(self) -> None:
        assert parse_float(3) == 3.0

    @pytest.mark.parametrize(
        "value,expected",
        [(None, ""), (True, "true"), (3.0, "3"), (2.5, "2.5"), ([1, "a"], "1,a")],
    )
    def test_stringify(self, value: Any, expected: str) -> None:
        assert stringify(value) == expected

    @given(text=st.text(max_size=40))
    def test_number_parsers_never_raise(self, text: str) -> None:
        """Property: parsers map any text to a number, never raising."""
        assert isinstance(parse_int(text), int)
        assert isinstance(parse_float(text), float)
