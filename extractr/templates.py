"""Built-in template registry and template file loading.

Built-in templates are plain documents parsed once at import into an
immutable mapping; user templates are YAML (or JSON) files validated
through the same path as any other template.
"""

from pathlib import Path
from types import MappingProxyType
from typing import Any, NamedTuple

import yaml

from extractr.exceptions import InvalidTemplateError, TemplateNotFoundError
from extractr.logger import get_logger
from extractr.models import Template
from extractr.validator import parse_template

log = get_logger(__name__)

BUILTIN_PREFIX = "@"

_BUILTIN_DOCUMENTS: dict[str, dict[str, Any]] = {
    "hn-frontpage": {
        "name": "Hacker News Frontpage",
        "description": "Extract stories from Hacker News frontpage",
        "container": ".athing",
        "fields": [
            {"name": "title", "selector": ".titleline > a", "type": "text"},
            {"name": "url", "selector": ".titleline > a", "type": "url", "attr": "href"},
            {
                "name": "points",
                "selector": "~ tr .score",
                "type": "number",
                "transforms": [
                    {"type": "regex", "params": {"pattern": r"(\d+)", "group": 1}},
                    {"type": "parseInt"},
                ],
            },
            {"name": "author", "selector": "~ tr .hnuser", "type": "text"},
        ],
    },
    "amazon-product": {
        "name": "Amazon Product",
        "description": "Extract product details from Amazon",
        "container": '[data-component-type="s-search-result"]',
        "fields": [
            {"name": "title", "selector": "h2 a span", "type": "text"},
            {
                "name": "price",
                "selector": ".a-price-whole",
                "type": "currency",
                "transforms": [{"type": "trim"}],
            },
            {
                "name": "rating",
                "selector": ".a-icon-star-small .a-icon-alt",
                "type": "number",
                "transforms": [
                    {"type": "regex", "params": {"pattern": r"([\d.]+)", "group": 1}},
                    {"type": "parseFloat"},
                ],
            },
            {"name": "url", "selector": "h2 a", "type": "url", "attr": "href"},
        ],
    },
    "reddit-subreddit": {
        "name": "Reddit Subreddit",
        "description": "Extract posts from a subreddit",
        "container": "shreddit-post",
        "fields": [
            {"name": "title", "selector": '[slot="title"]', "type": "text"},
            {"name": "author", "selector": '[slot="authorName"]', "type": "text"},
            {"name": "score", "selector": "shreddit-post", "type": "number", "attr": "score"},
            {"name": "url", "selector": '[slot="title"]', "type": "url", "attr": "href"},
        ],
    },
}

_EXAMPLE_URLS: dict[str, str] = {
    "hn-frontpage": "https://news.ycombinator.com",
    "amazon-product": "https://amazon.com/s?k=laptop",
    "reddit-subreddit": "https://reddit.com/r/programming",
}

BUILTIN_TEMPLATES: MappingProxyType[str, Template] = MappingProxyType(
    {template_id: parse_template(doc) for template_id, doc in _BUILTIN_DOCUMENTS.items()}
)


class TemplateInfo(NamedTuple):
    id: str
    name: str
    description: str
    example: str


def load_template(identifier: str, local: bool = False) -> Template:
    """Resolve a template identifier to a validated Template.

    Args:
        identifier: ``@<id>`` for a built-in template, otherwise a file path.
        local: Treat the identifier as a file path even if it starts with ``@``.

    Returns:
        Parsed and validated Template.

    Raises:
        TemplateNotFoundError: Unknown built-in id or missing file.
        InvalidTemplateError: Unparseable file or failed validation.
    """
    if identifier.startswith(BUILTIN_PREFIX) and not local:
        template_id = identifier[len(BUILTIN_PREFIX):]
        template = BUILTIN_TEMPLATES.get(template_id)
        if template is None:
            raise TemplateNotFoundError(
                identifier, f"Built-in template not found: {template_id}"
            )
        log.debug("Loaded built-in template", template_id=template_id)
        return template

    path = Path(identifier).expanduser()
    if not path.is_file():
        raise TemplateNotFoundError(identifier, f"Template file not found: {identifier}")

    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise InvalidTemplateError([f"Template file is not valid YAML: {exc}"]) from exc

    template = parse_template(document)
    log.debug("Loaded template file", path=str(path), template=template.name)
    return template


def list_templates() -> list[TemplateInfo]:
    """Describe the built-in templates for display."""
    return [
        TemplateInfo(
            id=template_id,
            name=template.name,
            description=template.description or "",
            example=_EXAMPLE_URLS.get(template_id, ""),
        )
        for template_id, template in BUILTIN_TEMPLATES.items()
    ]
