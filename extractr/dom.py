"""Document-query capability used by the field extraction engine.

The engine never talks to a browser directly; it walks any object that
satisfies ``DocumentNode``. The standard implementation wraps an lxml
element and resolves CSS selectors through cssselect, matching descendants
only, the way ``Element.querySelector`` does in a rendered page.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Protocol, runtime_checkable

from cssselect import HTMLTranslator
from lxml import html
from lxml.etree import XPath

_translator = HTMLTranslator()


@runtime_checkable
class DocumentNode(Protocol):
    """Minimal element API the engine relies on."""

    def query_selector(self, selector: str) -> DocumentNode | None: ...

    def query_selector_all(self, selector: str) -> list[DocumentNode]: ...

    @property
    def parent(self) -> DocumentNode | None: ...

    def get_attribute(self, name: str) -> str | None: ...

    def text_content(self) -> str: ...

    def inner_html(self) -> str: ...


@lru_cache(maxsize=512)
def _compile_selector(selector: str) -> XPath:
    """Translate a CSS selector to a descendant-only XPath expression.

    Raises:
        cssselect.SelectorError: If the selector cannot be parsed.
    """
    return XPath(_translator.css_to_xpath(selector, prefix="descendant::"))


class LxmlNode:
    """``DocumentNode`` backed by an lxml HTML element.

    Attributes:
        _element: The wrapped lxml element.
    """

    __slots__ = ("_element",)

    def __init__(self, element: html.HtmlElement) -> None:
        self._element = element

    def query_selector(self, selector: str) -> LxmlNode | None:
        matches = _compile_selector(selector)(self._element)
        return LxmlNode(matches[0]) if matches else None

    def query_selector_all(self, selector: str) -> list[LxmlNode]:
        return [LxmlNode(match) for match in _compile_selector(selector)(self._element)]

    @property
    def parent(self) -> LxmlNode | None:
        parent = self._element.getparent()
        return LxmlNode(parent) if parent is not None else None

    def get_attribute(self, name: str) -> str | None:
        return self._element.get(name)

    def text_content(self) -> str:
        return self._element.text_content()

    def inner_html(self) -> str:
        # Leading text plus every child serialized with its tail
        parts = [self._element.text or ""]
        parts.extend(
            html.tostring(child, encoding="unicode", with_tail=True)
            for child in self._element
        )
        return "".join(parts)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, LxmlNode) and other._element is self._element

    def __hash__(self) -> int:
        return id(self._element)

    def __repr__(self) -> str:
        return f"LxmlNode(<{self._element.tag}>)"


def parse_document(markup: str) -> LxmlNode:
    """Parse an HTML document and return its root element.

    Args:
        markup: Serialized HTML, typically ``page.content()``.

    Returns:
        Root ``<html>`` node.
    """
    if not markup.strip():
        markup = "<html><body></body></html>"
    return LxmlNode(html.document_fromstring(markup))
