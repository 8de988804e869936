"""Template-driven extraction orchestrator.

``TemplateExtractor`` drives one page session through navigation,
readiness waits and pagination, running the field extraction engine once
per view. Failure handling follows a single rule: before the first page
has been extracted every failure raises a classified ``ExtractrError``;
afterwards cancellation, timeout and pagination failures degrade to a
partial result carrying what was already collected.

Design Rationale:
    Retries cover navigation only. A fresh session is opened per attempt
    so a half-loaded page never leaks into the next try, and back-off is
    linear (attempt x base delay) and interruptible by cancellation.
"""

import asyncio
import inspect
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from config.constants import BLOCKING_SELECTORS, BLOCKING_TITLE_KEYWORDS
from config.settings import GlobalConfig, get_config
from extractr.browser import BrowserManager, Session, SessionProvider
from extractr.exceptions import (
    ExtractionCancelledError,
    ExtractionFailedError,
    ExtractrError,
    InvalidTemplateError,
    OverallTimeoutError,
    PageLoadError,
    RetriesExhaustedError,
    SelectorTimeoutError,
    is_retryable,
)
from extractr.logger import get_logger
from extractr.models import (
    DebugInfo,
    ExtractionResult,
    ExtractionTiming,
    ExtractorOptions,
    Record,
    Template,
)
from extractr.validator import normalize_url, parse_template, validate_template

log = get_logger(__name__)


@dataclass
class _RunState:
    """Mutable bookkeeping for a single extraction run."""

    url: str
    started: float = field(default_factory=time.monotonic)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    records: list[Record] = field(default_factory=list)
    pages: int = 0
    partial: bool = False
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class TemplateExtractor:
    """Runs templates against live pages obtained from a session provider.

    Attributes:
        provider: Source of page sessions (``BrowserManager`` in production).
        config: GlobalConfig supplying timeouts, retry and detection policy.

    Example:
        async with BrowserManager.create() as browser:
            extractor = TemplateExtractor(browser)
            result = await extractor.extract("news.ycombinator.com", template)
    """

    def __init__(
        self,
        provider: SessionProvider,
        config: GlobalConfig | None = None,
    ) -> None:
        self.provider = provider
        self.config = config or get_config()

    async def extract(
        self,
        url: str,
        template: Template | Mapping[str, Any],
        options: ExtractorOptions | None = None,
    ) -> ExtractionResult:
        """Extract records from ``url`` following ``template``.

        Args:
            url: Target address; a missing scheme defaults to https.
            template: Parsed template or its raw document form.
            options: Per-call debug, retry, cancellation and callback settings.

        Returns:
            ExtractionResult with records in page order. ``partial`` is set
            when the run stopped early after collecting data.

        Raises:
            InvalidUrlError: If the URL is empty, malformed or has no host.
            InvalidTemplateError: If the template fails validation.
            ExtractionCancelledError: If cancelled before any data existed.
            PageLoadError: On a non-retryable navigation failure.
            RetriesExhaustedError: If every navigation attempt failed.
            SelectorTimeoutError: If the readiness selector never appeared.
            OverallTimeoutError: If the budget ran out before the first page.
            ExtractionFailedError: If the first page could not be evaluated.
        """
        options = options or ExtractorOptions()
        target = normalize_url(url)
        template = self._ensure_template(template)

        if options.cancelled:
            raise ExtractionCancelledError(target, "startup")

        state = _RunState(url=target)
        log.info(
            "Starting extraction",
            url=target,
            template=template.name,
            max_pages=template.pagination.max_pages if template.pagination else 1,
        )

        session: Session | None = None
        try:
            session = await self._open_page(template, options, state)
            await self._prepare_page(session, template, state)
            await self._paginate(session, template, options, state)
        finally:
            if session is not None:
                await self._close_session(session)

        result = self._build_result(state, options)
        log.info(
            "Extraction complete",
            url=target,
            items=len(result.data),
            pages=result.pages_extracted,
            partial=result.partial,
        )
        return result

    @staticmethod
    def _ensure_template(template: Template | Mapping[str, Any]) -> Template:
        if isinstance(template, Template):
            errors = validate_template(template)
            if errors:
                raise InvalidTemplateError(errors, template_name=template.name)
            return template
        return parse_template(template)

    def _budget_exceeded(self, state: _RunState) -> bool:
        elapsed_ms = (time.monotonic() - state.started) * 1000
        return elapsed_ms >= self.config.overall_timeout_ms

    async def _open_page(
        self,
        template: Template,
        options: ExtractorOptions,
        state: _RunState,
    ) -> Session:
        """Acquire a session and navigate, retrying transient failures.

        Returns:
            A session positioned on the target page.
        """
        max_attempts = options.max_retries or self.config.max_retries
        wait_mode = "networkidle" if template.options.enable_js else "domcontentloaded"
        timeout_ms = (
            template.options.timeout
            if template.options.timeout is not None
            else self.config.page_timeout_ms
        )
        last_error = ""

        for attempt in range(1, max_attempts + 1):
            if options.cancelled:
                raise ExtractionCancelledError(state.url, "navigation")
            if self._budget_exceeded(state):
                raise OverallTimeoutError(self.config.overall_timeout_ms, state.url)

            session = await self._launch_session(state, attempt)
            try:
                await session.navigate(state.url, wait_mode, timeout_ms)
            except asyncio.CancelledError:
                await self._close_session(session)
                raise
            except Exception as exc:
                await self._close_session(session)
                if isinstance(exc, PageLoadError):
                    reason, recoverable = exc.reason, exc.recoverable
                else:
                    reason = str(exc)
                    recoverable = is_retryable(reason)

                if not recoverable:
                    raise PageLoadError(
                        url=state.url, reason=reason, recoverable=False, attempt=attempt
                    ) from exc

                last_error = reason
                state.errors.append(f"Attempt {attempt}/{max_attempts} failed: {reason}")
                log.warning(
                    "Navigation attempt failed",
                    url=state.url,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=reason,
                )
                if attempt < max_attempts:
                    await self._backoff(attempt, options, state)
                continue

            log.debug("Navigation succeeded", url=state.url, attempt=attempt)
            return session

        raise RetriesExhaustedError(state.url, max_attempts, last_error)

    async def _launch_session(self, state: _RunState, attempt: int) -> Session:
        try:
            return await self.provider.launch_session()
        except ExtractrError:
            raise
        except Exception as exc:
            raise PageLoadError(
                url=state.url,
                reason=f"Could not open a page session: {exc}",
                recoverable=False,
                attempt=attempt,
            ) from exc

    async def _backoff(
        self, attempt: int, options: ExtractorOptions, state: _RunState
    ) -> None:
        delay = attempt * self.config.retry_base_delay_ms / 1000
        log.debug("Backing off before retry", attempt=attempt, delay_s=delay)

        if options.cancel_event is None:
            await asyncio.sleep(delay)
            return

        try:
            await asyncio.wait_for(options.cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise ExtractionCancelledError(state.url, "retry back-off")

    async def _prepare_page(
        self, session: Session, template: Template, state: _RunState
    ) -> None:
        """Run blocking detection and readiness waits on the loaded page."""
        if self.config.detect_blocking:
            signal = await self._detect_blocking(session)
            if signal is not None:
                message = f"Possible blocking page detected ({signal})"
                state.warnings.append(message)
                log.warning(message, url=state.url)

        opts = template.options
        if opts.wait_for_selector:
            timeout_ms = self.config.selector_timeout_ms
            try:
                await session.wait_for_selector(opts.wait_for_selector, timeout_ms)
            except SelectorTimeoutError:
                raise
            except TimeoutError as exc:
                raise SelectorTimeoutError(
                    selector=opts.wait_for_selector, timeout_ms=timeout_ms, url=state.url
                ) from exc

        if opts.wait_ms:
            await session.wait_for_delay(opts.wait_ms)

        if self._budget_exceeded(state):
            raise OverallTimeoutError(self.config.overall_timeout_ms, state.url)

    async def _detect_blocking(self, session: Session) -> str | None:
        """Return a description of the first blocking marker found, if any."""
        try:
            for selector in BLOCKING_SELECTORS:
                if await session.query_selector_exists(selector):
                    return f"selector {selector}"

            title = (await session.title() or "").lower()
            for keyword in BLOCKING_TITLE_KEYWORDS:
                if keyword in title:
                    return f"title contains '{keyword}'"
        except Exception as exc:
            log.debug("Blocking detection skipped", error=str(exc))
        return None

    async def _paginate(
        self,
        session: Session,
        template: Template,
        options: ExtractorOptions,
        state: _RunState,
    ) -> None:
        """Extract the current view and follow "next" until a stop condition."""
        pagination = template.pagination
        max_pages = pagination.max_pages if pagination else 1

        for page_number in range(1, max_pages + 1):
            if options.cancelled:
                if not state.records:
                    raise ExtractionCancelledError(state.url, f"page {page_number}")
                log.info("Extraction cancelled, returning partial result", pages=state.pages)
                state.partial = True
                return

            try:
                page_records = await session.evaluate_extraction(
                    template.container, template.fields, options.debug
                )
            except Exception as exc:
                if page_number == 1:
                    raise ExtractionFailedError(state.url, str(exc)) from exc
                state.errors.append(f"Page {page_number} extraction failed: {exc}")
                log.warning("Page extraction failed", page=page_number, error=str(exc))
                state.partial = True
                return

            state.records.extend(page_records)
            state.pages = page_number
            log.info(
                "Page extraction complete",
                page_number=page_number,
                items_extracted=len(page_records),
                total_items=len(state.records),
            )
            await self._notify(options, page_records, page_number, state)

            if self._budget_exceeded(state):
                state.warnings.append(
                    f"Overall timeout of {self.config.overall_timeout_ms}ms reached"
                )
                log.warning("Overall timeout reached, returning partial result", pages=state.pages)
                state.partial = True
                return

            if pagination is None or page_number >= max_pages:
                return

            try:
                if not await session.query_selector_exists(pagination.next_selector):
                    log.debug("No next page control found - reached last page")
                    return
                await session.activate(pagination.next_selector)
            except Exception as exc:
                state.errors.append(f"Pagination failed after page {page_number}: {exc}")
                log.warning("Pagination failed", page=page_number, error=str(exc))
                state.partial = True
                return

            try:
                await session.wait_for_idle(self.config.pagination_idle_timeout_ms)
            except Exception as exc:
                log.debug("Page did not reach network idle after pagination", error=str(exc))
            await session.wait_for_delay(pagination.wait_ms)

    async def _notify(
        self,
        options: ExtractorOptions,
        page_records: list[Record],
        page_number: int,
        state: _RunState,
    ) -> None:
        if options.on_page_extracted is None:
            return
        try:
            outcome = options.on_page_extracted(list(page_records), page_number)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            state.errors.append(f"Page callback failed on page {page_number}: {exc}")
            log.warning("Page callback failed", page=page_number, error=str(exc))

    async def _close_session(self, session: Session) -> None:
        try:
            await session.close()
        except Exception as exc:
            log.warning("Error closing page session", error=str(exc))

    def _build_result(self, state: _RunState, options: ExtractorOptions) -> ExtractionResult:
        debug = None
        if options.debug:
            end_time = datetime.now(timezone.utc)
            debug = DebugInfo(
                items_found=len(state.records),
                fields_extracted=sum(
                    1 for record in state.records for value in record.values() if value is not None
                ),
                errors=state.errors,
                warnings=state.warnings,
                samples=state.records[: self.config.debug_sample_size],
                timing=ExtractionTiming(
                    start_time=state.start_time,
                    end_time=end_time,
                    duration_ms=int((end_time - state.start_time).total_seconds() * 1000),
                ),
            )

        return ExtractionResult(
            data=state.records,
            partial=state.partial,
            pages_extracted=state.pages,
            debug=debug,
        )


async def extract_data(
    url: str,
    template: Template | Mapping[str, Any],
    options: ExtractorOptions | None = None,
    provider: SessionProvider | None = None,
    config: GlobalConfig | None = None,
) -> ExtractionResult:
    """Convenience entry point; launches a browser when no provider is given."""
    if provider is not None:
        return await TemplateExtractor(provider, config).extract(url, template, options)

    async with BrowserManager.create(config) as browser:
        return await TemplateExtractor(browser, config).extract(url, template, options)
