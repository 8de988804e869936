"""Pydantic models for templates, run options and extraction results.

Template documents keep their original camelCase keys (``nextSelector``,
``maxPages``, ``waitForSelector`` ...); the models expose snake_case
attributes through aliases and accept either spelling.

Transforms are a tagged union on ``type``: each variant carries only the
parameters it uses, so a ``split`` can never be handed a ``group``.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from config.constants import (
    DEFAULT_MAX_PAGES,
    DEFAULT_PAGINATION_WAIT_MS,
    DEFAULT_SPLIT_SEPARATOR,
    SIBLING_SELECTOR_PREFIX,
)

Record = dict[str, Any]

FieldType = Literal[
    "text", "number", "currency", "date", "boolean", "list", "nested", "html", "url"
]

PageCallback = Callable[[list[Record], int], Any]


class _TemplateModel(BaseModel):
    """Base for immutable template parts."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Transforms
# ---------------------------------------------------------------------------


class SimpleTransform(_TemplateModel):
    """Parameterless transforms: case/whitespace normalization and number parsing."""

    type: Literal["trim", "lowercase", "uppercase", "parseInt", "parseFloat"]


class ReplaceParams(_TemplateModel):
    pattern: str
    flags: str = "g"
    replacement: str = ""


class ReplaceTransform(_TemplateModel):
    type: Literal["replace"]
    params: ReplaceParams


class RegexParams(_TemplateModel):
    pattern: str
    group: int = Field(default=0, ge=0)
    flags: str = ""


class RegexTransform(_TemplateModel):
    type: Literal["regex"]
    params: RegexParams


class SplitParams(_TemplateModel):
    separator: str = DEFAULT_SPLIT_SEPARATOR


class SplitTransform(_TemplateModel):
    type: Literal["split"]
    params: SplitParams = Field(default_factory=SplitParams)


class SliceParams(_TemplateModel):
    start: int = 0
    end: int | None = None


class SliceTransform(_TemplateModel):
    type: Literal["slice"]
    params: SliceParams = Field(default_factory=SliceParams)


Transform = Annotated[
    Union[SimpleTransform, ReplaceTransform, RegexTransform, SplitTransform, SliceTransform],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Template
# ---------------------------------------------------------------------------


class FieldDefinition(_TemplateModel):
    """A named, typed value (or list of sub-records) read from a container.

    Attributes:
        name: Key of the value in each record.
        selector: CSS selector; a ``"~ "`` prefix resolves it against the
            container's parent instead of the container.
        type: Final type coercion.
        attr: Read this attribute instead of text/HTML content.
        transforms: Pipeline applied in declared order before coercion.
        fallback: Value used when nothing matches or extraction fails.
        nested: When set, the field becomes a list of sub-records, one per
            element matched by ``selector``.
    """

    name: str = Field(min_length=1)
    selector: str = Field(min_length=1)
    type: FieldType = "text"
    attr: str | None = None
    transforms: tuple[Transform, ...] = ()
    fallback: Any = None
    nested: tuple["FieldDefinition", ...] | None = None

    @property
    def is_nested(self) -> bool:
        return self.nested is not None

    @property
    def is_sibling(self) -> bool:
        return self.selector.startswith(SIBLING_SELECTOR_PREFIX)


class PaginationConfig(_TemplateModel):
    next_selector: str = Field(alias="nextSelector", min_length=1)
    max_pages: int = Field(default=DEFAULT_MAX_PAGES, alias="maxPages", ge=1)
    wait_ms: int = Field(default=DEFAULT_PAGINATION_WAIT_MS, alias="waitMs", ge=0)


class TemplateOptions(_TemplateModel):
    """Per-template page handling.

    ``timeout`` falls back to ``GlobalConfig.page_timeout_ms`` when unset.
    """

    wait_for_selector: str | None = Field(default=None, alias="waitForSelector")
    wait_ms: int | None = Field(default=None, alias="waitMs", ge=0)
    enable_js: bool = Field(default=True, alias="enableJs")
    timeout: int | None = Field(default=None, ge=0)


class Template(_TemplateModel):
    """Declarative description of what to extract from a page."""

    name: str = Field(min_length=1)
    description: str | None = None
    container: str = Field(min_length=1)
    fields: tuple[FieldDefinition, ...] = Field(min_length=1)
    pagination: PaginationConfig | None = None
    options: TemplateOptions = Field(default_factory=TemplateOptions)

    @property
    def field_names(self) -> list[str]:
        return [field.name for field in self.fields]

    def to_document(self) -> dict[str, Any]:
        """Render the template back to its wire (camelCase) form."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Run options and results
# ---------------------------------------------------------------------------


class ExtractorOptions(BaseModel):
    """Per-call options that are not part of the template.

    Attributes:
        debug: Collect debug info and log every field failure.
        max_retries: Navigation attempts; ``GlobalConfig.max_retries`` if unset.
        cancel_event: Cooperative cancellation signal.
        on_page_extracted: Called with ``(records, page_number)`` after each
            page; may return an awaitable.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    debug: bool = False
    max_retries: int | None = Field(default=None, ge=1)
    cancel_event: asyncio.Event | None = None
    on_page_extracted: PageCallback | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


class ExtractionTiming(BaseModel):
    start_time: datetime
    end_time: datetime
    duration_ms: int


class DebugInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items_found: int = Field(default=0, alias="itemsFound")
    fields_extracted: int = Field(default=0, alias="fieldsExtracted")
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    samples: list[Record] = Field(default_factory=list)
    timing: ExtractionTiming | None = None


class ExtractionResult(BaseModel):
    """Outcome of one extraction run.

    Attributes:
        data: Records in page order, then container order.
        partial: True when the run stopped early but still returned data.
        pages_extracted: Number of paginated views processed.
        debug: Present only when the run was started with ``debug``.
    """

    model_config = ConfigDict(populate_by_name=True)

    data: list[Record] = Field(default_factory=list)
    partial: bool = False
    pages_extracted: int = Field(default=0, alias="pagesExtracted")
    debug: DebugInfo | None = None
