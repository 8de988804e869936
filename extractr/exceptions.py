"""Classified exception hierarchy for Extractr.

Every failure that can reach a caller carries an ``ErrorCode``, a
``recoverable`` flag (worth retrying) and a context dictionary with the
offending URL, selector, pattern or attempt count.

Propagation:
    - Per-field failures never surface here; the engine turns them into
      the field's fallback value.
    - Once a run has collected records, the orchestrator converts late
      failures into a partial result instead of raising.
    - Only failures before the first page was extracted propagate.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from config.constants import RETRYABLE_ERRORS


def is_retryable(error_text: str) -> bool:
    """Return True if a navigation error matches the transient catalogue."""
    return any(marker in error_text for marker in RETRYABLE_ERRORS)


class ErrorCode(StrEnum):
    """Kinds of extraction failure."""

    INVALID_URL = "INVALID_URL"
    INVALID_TEMPLATE = "INVALID_TEMPLATE"
    UNSAFE_REGEX = "UNSAFE_REGEX"
    PAGE_LOAD_FAILED = "PAGE_LOAD_FAILED"
    SELECTOR_TIMEOUT = "SELECTOR_TIMEOUT"
    OVERALL_TIMEOUT = "OVERALL_TIMEOUT"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    CANCELLED = "CANCELLED"


class ExtractrError(Exception):
    """Base exception for all Extractr errors.

    Attributes:
        message: Human-readable error description.
        code: Classified error kind.
        context: Additional debugging information.
        recoverable: Whether retrying the operation may succeed.
        timestamp: UTC timestamp when the exception was raised.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.EXTRACTION_FAILED,
        context: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        self.message = message
        self.code = code
        self.context = context or {}
        self.recoverable = recoverable
        self.timestamp = datetime.now(UTC)
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format exception message with context for logging."""
        base = f"[{self.code}] {self.message}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base} | Context: {context_str}"
        return base


class InvalidUrlError(ExtractrError):
    """Raised when the target URL is empty, malformed or has no host."""

    def __init__(self, url: Any, reason: str) -> None:
        super().__init__(
            message=reason,
            code=ErrorCode.INVALID_URL,
            context={"url": url},
        )


class InvalidTemplateError(ExtractrError):
    """Raised when a template fails validation.

    Attributes:
        errors: Every violation found, not just the first.
    """

    def __init__(self, errors: list[str], template_name: str | None = None) -> None:
        summary = "; ".join(errors) if errors else "unknown error"
        super().__init__(
            message=f"Invalid template: {summary}",
            code=ErrorCode.INVALID_TEMPLATE,
            context={"template": template_name, "error_count": len(errors)},
        )
        self.errors = list(errors)


class TemplateNotFoundError(ExtractrError):
    """Raised when a built-in template id or template file does not exist."""

    def __init__(self, identifier: str, reason: str) -> None:
        super().__init__(
            message=reason,
            code=ErrorCode.INVALID_TEMPLATE,
            context={"template": identifier},
        )
        self.identifier = identifier


class UnsafeRegexError(ExtractrError):
    """Raised when a transform pattern is too long or prone to backtracking."""

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(
            message=f"Unsafe regex pattern rejected: {reason}",
            code=ErrorCode.UNSAFE_REGEX,
            context={"pattern": pattern[:100]},
        )


class PageLoadError(ExtractrError):
    """Raised when navigation to the target page fails.

    Only failures matching the transient network catalogue are recoverable;
    unless given explicitly, the flag is derived from ``reason``.
    """

    def __init__(
        self,
        url: str,
        reason: str,
        recoverable: bool | None = None,
        attempt: int | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(
            message=f"Failed to load '{url}': {reason}",
            code=ErrorCode.PAGE_LOAD_FAILED,
            context={"url": url, "attempt": attempt, "status_code": status_code},
            recoverable=is_retryable(reason) if recoverable is None else recoverable,
        )
        self.reason = reason


class SelectorTimeoutError(ExtractrError):
    """Raised when the readiness selector never appears."""

    def __init__(self, selector: str, timeout_ms: int, url: str) -> None:
        super().__init__(
            message=f"Timed out after {timeout_ms}ms waiting for selector '{selector}'",
            code=ErrorCode.SELECTOR_TIMEOUT,
            context={"selector": selector, "timeout_ms": timeout_ms, "url": url},
        )


class OverallTimeoutError(ExtractrError):
    """Raised when the run budget expires before any page was extracted."""

    def __init__(self, timeout_ms: int, url: str) -> None:
        super().__init__(
            message=f"Extraction exceeded overall timeout of {timeout_ms}ms",
            code=ErrorCode.OVERALL_TIMEOUT,
            context={"timeout_ms": timeout_ms, "url": url},
        )


class ExtractionFailedError(ExtractrError):
    """Raised when extraction fails before any data was collected.

    Covers an exhausted retry budget as well as a failing first page.
    """

    def __init__(self, url: str, reason: str, attempts: int | None = None) -> None:
        super().__init__(
            message=f"Extraction from '{url}' failed: {reason}",
            code=ErrorCode.EXTRACTION_FAILED,
            context={"url": url, "attempts": attempts},
        )


class RetriesExhaustedError(ExtractionFailedError):
    """Raised when every navigation attempt failed with a transient error."""

    def __init__(self, url: str, attempts: int, last_error: str) -> None:
        super().__init__(
            url=url,
            reason=f"giving up after {attempts} attempts ({last_error})",
            attempts=attempts,
        )
        self.last_error = last_error


class ExtractionCancelledError(ExtractrError):
    """Raised when cancellation arrives before any record was collected."""

    def __init__(self, url: str, stage: str) -> None:
        super().__init__(
            message=f"Extraction cancelled during {stage}",
            code=ErrorCode.CANCELLED,
            context={"url": url, "stage": stage},
        )


class BrowserInitializationError(ExtractrError):
    """Raised when the browser instance fails to initialize.

    Common causes include missing Playwright browsers or resource limits.
    """

    def __init__(self, reason: str, browser_type: str = "chromium") -> None:
        super().__init__(
            message=f"Failed to initialize {browser_type} browser: {reason}",
            code=ErrorCode.PAGE_LOAD_FAILED,
            context={"browser_type": browser_type, "reason": reason},
        )


class LoggingInitializationError(ExtractrError):
    """Raised when the logging system fails to initialize.

    This is a startup-blocking error.
    """

    def __init__(self, log_dir: str, reason: str) -> None:
        super().__init__(
            message=f"Failed to initialize logging at '{log_dir}': {reason}",
            context={"log_dir": log_dir, "reason": reason},
        )
