"""Pytest configuration and shared fixtures for the Extractr test suite.

This module provides hermetic test infrastructure with the following guarantees:
- No external network requests (pages are served from in-memory HTML)
- Isolated state (no cross-test contamination of the config singleton)
- Real DOM semantics (fake sessions run the engine over lxml documents)

Design Rationale:
    The orchestrator only depends on the Session/SessionProvider protocols,
    so ``FakeSession`` replays a scripted list of HTML pages instead of
    mocking Playwright call by call. Browser-level behaviour is covered
    separately in test_browser.py with mocked Playwright objects.
"""

import asyncio
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

from config.settings import GlobalConfig
from extractr.dom import parse_document
from extractr.engine import extract_records
from extractr.exceptions import SelectorTimeoutError


class FakeSession:
    """In-memory page session replaying a list of HTML documents.

    ``activate`` advances to the next document, mimicking a click on the
    pagination control.
    """

    def __init__(
        self,
        pages: list[str],
        *,
        navigate_error: Exception | None = None,
        navigate_delay: float = 0.0,
        activate_error: Exception | None = None,
        extraction_errors: dict[int, Exception] | None = None,
        page_title: str = "Test Catalog",
        close_error: Exception | None = None,
    ) -> None:
        self.pages = pages
        self.index = 0
        self.navigate_error = navigate_error
        self.navigate_delay = navigate_delay
        self.activate_error = activate_error
        self.extraction_errors = extraction_errors or {}
        self.page_title = page_title
        self.close_error = close_error
        self.close_count = 0
        self.calls: list[tuple[Any, ...]] = []
        self._url = "about:blank"

    @property
    def closed(self) -> bool:
        return self.close_count > 0

    @property
    def url(self) -> str:
        return self._url

    def _root(self):
        return parse_document(self.pages[self.index])

    async def navigate(self, url: str, wait_mode: str, timeout_ms: int) -> None:
        self.calls.append(("navigate", url, wait_mode, timeout_ms))
        if self.navigate_delay:
            await asyncio.sleep(self.navigate_delay)
        if self.navigate_error is not None:
            raise self.navigate_error
        self._url = url

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        self.calls.append(("wait_for_selector", selector, timeout_ms))
        if self._root().query_selector(selector) is None:
            raise SelectorTimeoutError(selector=selector, timeout_ms=timeout_ms, url=self._url)

    async def wait_for_delay(self, ms: int) -> None:
        self.calls.append(("wait_for_delay", ms))

    async def wait_for_idle(self, timeout_ms: int) -> None:
        self.calls.append(("wait_for_idle", timeout_ms))

    async def query_selector_exists(self, selector: str) -> bool:
        return self._root().query_selector(selector) is not None

    async def activate(self, selector: str) -> None:
        self.calls.append(("activate", selector))
        if self.activate_error is not None:
            raise self.activate_error
        self.index += 1

    async def title(self) -> str:
        return self.page_title

    async def evaluate_extraction(self, container, fields, debug=False):
        page_number = self.index + 1
        if page_number in self.extraction_errors:
            raise self.extraction_errors[page_number]
        return extract_records(self._root(), container, fields, self._url, debug)

    async def close(self) -> None:
        self.close_count += 1
        if self.close_error is not None:
            raise self.close_error


class FakeProvider:
    """Hands out pre-built sessions in order."""

    def __init__(self, *sessions: FakeSession) -> None:
        self._queue = list(sessions)
        self.launched: list[FakeSession] = []

    async def launch_session(self) -> FakeSession:
        session = self._queue.pop(0)
        self.launched.append(session)
        return session


@pytest.fixture
def mock_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[GlobalConfig]:
    """Provide isolated GlobalConfig with safe test defaults.

    Overrides the lru_cache singleton to prevent state leakage between tests.
    Uses tmp_path for all file operations to avoid polluting the filesystem.

    Example:
        def test_something(mock_config: GlobalConfig) -> None:
            assert mock_config.max_retries == 3
    """
    # Clear the lru_cache to force fresh instantiation
    from config.settings import get_config

    get_config.cache_clear()

    log_dir = tmp_path / "logs"
    log_dir.mkdir()

    # Override environment variables for test isolation
    test_env = {
        "APP_NAME": "Extractr-Test",
        "ENVIRONMENT": "test",
        "DEBUG": "false",
        "HEADLESS": "true",
        "LOG_LEVEL": "DEBUG",
        "LOG_DIR": str(log_dir),
        "LOG_ROTATION": "1 day",
        "LOG_RETENTION": "1 day",
        "LOG_TO_FILE": "false",
        "PAGE_TIMEOUT_MS": "5000",
        "SELECTOR_TIMEOUT_MS": "1000",
        "MAX_RETRIES": "3",
        "RETRY_BASE_DELAY_MS": "10",
        "PAGINATION_IDLE_TIMEOUT_MS": "500",
        "DETECT_BLOCKING": "true",
    }

    for key, value in test_env.items():
        monkeypatch.setenv(key, value)

    config = get_config()

    yield config

    # Cleanup: clear cache again after test
    get_config.cache_clear()


@pytest.fixture
def listing_html_factory() -> Callable[..., str]:
    """Factory fixture for generating product listing pages.

    Supports per-item overrides; an override value of None removes the
    element to simulate missing markup.

    Example:
        def test_extraction(listing_html_factory):
            html = listing_html_factory(count=3, overrides={0: {"price": None}})
    """

    def _generate_html(
        count: int = 3,
        overrides: dict[int, dict[str, Any]] | None = None,
        start: int = 1,
        next_link: bool = False,
        title: str = "Test Catalog",
        extra_body: str = "",
    ) -> str:
        overrides = overrides or {}

        items_html = []
        for offset in range(count):
            number = start + offset
            item = overrides.get(offset, {})

            name = item.get("name", f"Item {number}")
            price = item.get("price", f"${number * 10}.50")
            href = item.get("href", f"/items/{number}")
            tags = item.get("tags", "new, sale")
            posted = item.get("posted", "2024-01-15")

            parts = []
            if name is not None:
                parts.append(f'<a class="name" href="{href}">{name}</a>')
            if price is not None:
                parts.append(f'<span class="price">{price}</span>')
            if tags is not None:
                parts.append(f'<span class="tags">{tags}</span>')
            if posted is not None:
                parts.append(f'<time class="posted" datetime="{posted}">{posted}</time>')

            items_html.append(f'<li class="item" data-id="{number}">{"".join(parts)}</li>')

        next_html = '<a class="next" href="?page=2">Next</a>' if next_link else ""

        return f"""
        <!DOCTYPE html>
        <html>
        <head><title>{title}</title></head>
        <body>
            <ul class="items">{"".join(items_html)}</ul>
            {next_html}
            {extra_body}
        </body>
        </html>
        """

    return _generate_html


@pytest.fixture
def listing_template() -> dict[str, Any]:
    """Raw template document matching ``listing_html_factory`` markup."""
    return {
        "name": "Test Listing",
        "description": "Items from the test catalog",
        "container": "li.item",
        "fields": [
            {"name": "name", "selector": "a.name"},
            {"name": "url", "selector": "a.name", "type": "url", "attr": "href"},
            {"name": "price", "selector": ".price", "type": "currency"},
        ],
    }


@pytest.fixture
def paginated_template(listing_template: dict[str, Any]) -> dict[str, Any]:
    return {
        **listing_template,
        "pagination": {"nextSelector": "a.next", "maxPages": 3, "waitMs": 0},
    }


# Pytest configuration
def pytest_configure(config: Any) -> None:
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests requiring full stack",
    )
