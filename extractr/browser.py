"""Page automation provider built on Playwright.

``BrowserManager`` owns the Playwright driver and one Chromium instance.
Every ``launch_session()`` call opens a fresh, isolated browser context
(rotated user agent, randomized viewport, stealth init script) with one
page, wrapped in a ``PageSession``. The orchestrator only talks to the
narrow ``Session``/``SessionProvider`` protocols, so tests can substitute
an in-memory fake.

Anti-Bot Measures:
    - Disables navigator.webdriver flag
    - Randomizes viewport dimensions within realistic bounds
    - Rotates user-agents from a configurable pool
"""

import asyncio
import random
from collections.abc import Sequence
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Literal, Protocol, Self

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from config.settings import GlobalConfig, get_config
from extractr.dom import parse_document
from extractr.engine import extract_records
from extractr.exceptions import (
    BrowserInitializationError,
    PageLoadError,
    SelectorTimeoutError,
)
from extractr.logger import get_logger
from extractr.models import FieldDefinition, Record

log = get_logger(__name__)

WaitMode = Literal["networkidle", "domcontentloaded", "load"]

_STEALTH_JS = """
Object.defineProperty(navigator, 'webdriver', {
    get: () => undefined,
});

Object.defineProperty(navigator, 'plugins', {
    get: () => [1, 2, 3, 4, 5],
});

Object.defineProperty(navigator, 'languages', {
    get: () => ['en-US', 'en'],
});

window.chrome = {
    runtime: {},
};
"""


class Session(Protocol):
    """Capabilities the orchestrator needs from one open page."""

    @property
    def url(self) -> str: ...

    async def navigate(self, url: str, wait_mode: WaitMode, timeout_ms: int) -> None: ...

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> None: ...

    async def wait_for_delay(self, ms: int) -> None: ...

    async def wait_for_idle(self, timeout_ms: int) -> None: ...

    async def query_selector_exists(self, selector: str) -> bool: ...

    async def activate(self, selector: str) -> None: ...

    async def title(self) -> str: ...

    async def evaluate_extraction(
        self, container: str, fields: Sequence[FieldDefinition], debug: bool = False
    ) -> list[Record]: ...

    async def close(self) -> None: ...


class SessionProvider(Protocol):
    async def launch_session(self) -> Session: ...


class PageSession:
    """One Playwright page in its own browser context.

    Attributes:
        _page: Playwright Page.
        _context: The context owning the page; closed with the session.
        _closed: Whether ``close()`` already ran.
    """

    def __init__(self, page: Page, context: BrowserContext | None = None) -> None:
        self._page = page
        self._context = context
        self._closed = False

    @property
    def url(self) -> str:
        return self._page.url

    async def navigate(
        self,
        url: str,
        wait_mode: WaitMode = "networkidle",
        timeout_ms: int = 30000,
    ) -> None:
        """Navigate and wait for the requested readiness state.

        HTTP error statuses are logged, not raised: challenge and
        login-wall pages often answer 403/503 yet still render content.

        Raises:
            PageLoadError: If the navigation itself fails or times out.
        """
        log.debug("Navigating to URL", url=url, wait_until=wait_mode, timeout_ms=timeout_ms)

        try:
            response = await self._page.goto(url, wait_until=wait_mode, timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise PageLoadError(
                url=url,
                reason=f"Navigation timeout after {timeout_ms}ms ({exc.message})",
                recoverable=True,
            ) from exc
        except PlaywrightError as exc:
            raise PageLoadError(url=url, reason=exc.message) from exc

        status_code = response.status if response is not None else None
        if status_code is not None and status_code >= 400:
            log.warning("Page answered with error status", url=url, status_code=status_code)
        else:
            log.info("Navigation successful", url=url, status_code=status_code)

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        try:
            await self._page.wait_for_selector(selector, timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise SelectorTimeoutError(
                selector=selector, timeout_ms=timeout_ms, url=self._page.url
            ) from exc

    async def wait_for_delay(self, ms: int) -> None:
        await asyncio.sleep(ms / 1000)

    async def wait_for_idle(self, timeout_ms: int) -> None:
        await self._page.wait_for_load_state("networkidle", timeout=timeout_ms)

    async def query_selector_exists(self, selector: str) -> bool:
        return await self._page.query_selector(selector) is not None

    async def activate(self, selector: str) -> None:
        await self._page.click(selector)

    async def title(self) -> str:
        return await self._page.title()

    async def evaluate_extraction(
        self,
        container: str,
        fields: Sequence[FieldDefinition],
        debug: bool = False,
    ) -> list[Record]:
        """Run the field extraction engine over the rendered document.

        The current DOM is serialized once and evaluated in-process, so
        every container of the view is processed against one snapshot.
        """
        markup = await self._page.content()
        root = parse_document(markup)
        return extract_records(root, container, fields, self._page.url, debug)

    async def close(self) -> None:
        """Close the page and its context; safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        try:
            await self._page.close()
        except Exception as exc:
            log.warning("Error closing page", error=str(exc))

        if self._context is not None:
            try:
                await self._context.close()
            except Exception as exc:
                log.warning("Error closing context", error=str(exc))

        log.debug("Page session closed")


class BrowserManager:
    """Manages the Playwright browser lifecycle and hands out page sessions.

    Attributes:
        config: GlobalConfig instance for runtime configuration.
        _playwright: Playwright instance (initialized on context entry).
        _browser: Chromium instance.

    Example:
        async with BrowserManager.create() as browser:
            session = await browser.launch_session()
            await session.navigate("https://example.com")
    """

    def __init__(self, config: GlobalConfig) -> None:
        """Initialize BrowserManager with configuration.

        Note:
            Use the ``create()`` class method for lifecycle management.
        """
        self.config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._current_user_agent: str = self._select_user_agent()

    @classmethod
    @asynccontextmanager
    async def create(
        cls, config: GlobalConfig | None = None
    ) -> AsyncGenerator[Self, None]:
        """Launch the browser for the duration of the ``async with`` block.

        Raises:
            BrowserInitializationError: If browser launch fails.
        """
        if config is None:
            config = get_config()

        instance = cls(config)
        try:
            await instance._initialize()
            yield instance
        finally:
            await instance._cleanup()

    def _select_user_agent(self) -> str:
        return random.choice(self.config.user_agents)

    def rotate_user_agent(self) -> str:
        """Pick a new user-agent for the next session.

        Returns:
            The newly selected user-agent string.
        """
        previous = self._current_user_agent
        self._current_user_agent = self._select_user_agent()
        log.debug(
            "User-agent rotated",
            previous=previous[:50] + "...",
            current=self._current_user_agent[:50] + "...",
        )
        return self._current_user_agent

    async def _initialize(self) -> None:
        """Start Playwright and launch Chromium with anti-detection flags.

        Raises:
            BrowserInitializationError: If any initialization step fails.
        """
        log.info("Initializing browser", headless=self.config.headless)

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.config.headless,
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--disable-dev-shm-usage",
                    "--no-sandbox",
                    "--disable-setuid-sandbox",
                    "--disable-infobars",
                ],
            )
            log.info("Browser initialized successfully")

        except Exception as exc:
            await self._cleanup()
            raise BrowserInitializationError(
                reason=str(exc), browser_type="chromium"
            ) from exc

    async def _create_stealth_context(self) -> BrowserContext:
        """Create an isolated context with stealth settings applied."""
        if self._browser is None:
            raise BrowserInitializationError(
                reason="Browser not initialized", browser_type="chromium"
            )

        context = await self._browser.new_context(
            viewport={
                "width": random.randint(1280, 1920),
                "height": random.randint(720, 1080),
            },
            user_agent=self._current_user_agent,
            locale="en-US",
            java_script_enabled=True,
        )
        await context.add_init_script(_STEALTH_JS)
        return context

    async def launch_session(self) -> PageSession:
        """Open a fresh page session in a new context.

        Returns:
            PageSession owning its page and context.

        Raises:
            BrowserInitializationError: If the browser is not running.
        """
        context = await self._create_stealth_context()
        try:
            page = await context.new_page()
        except Exception:
            await context.close()
            raise

        page.set_default_timeout(self.config.page_timeout_ms)
        self.rotate_user_agent()

        log.debug("Page session opened")
        return PageSession(page, context)

    async def _cleanup(self) -> None:
        """Clean up browser resources in reverse initialization order."""
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as exc:
                log.warning("Error closing browser", error=str(exc))
            self._browser = None

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                log.warning("Error stopping playwright", error=str(exc))
            self._playwright = None

        log.info("Browser resources cleaned up")

    @property
    def is_initialized(self) -> bool:
        return self._playwright is not None and self._browser is not None
