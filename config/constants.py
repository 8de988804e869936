"""Fixed catalogues shared by the validator, engine and orchestrator.

Unlike ``GlobalConfig`` these values are part of the template contract and
are not meant to be tuned per deployment.
"""

FIELD_TYPES: tuple[str, ...] = (
    "text",
    "number",
    "currency",
    "date",
    "boolean",
    "list",
    "nested",
    "html",
    "url",
)

TRANSFORM_TYPES: tuple[str, ...] = (
    "trim",
    "lowercase",
    "uppercase",
    "replace",
    "regex",
    "split",
    "slice",
    "parseInt",
    "parseFloat",
)

TRANSFORMS_REQUIRING_PATTERN: tuple[str, ...] = ("replace", "regex")

# Regex flags accepted in transform params (script-style letters)
REGEX_FLAGS = frozenset("gimsuy")

REGEX_MAX_LENGTH = 500

SIBLING_SELECTOR_PREFIX = "~ "

DEFAULT_MAX_PAGES = 1
DEFAULT_PAGINATION_WAIT_MS = 2000
DEFAULT_SPLIT_SEPARATOR = ","

# Navigation errors worth another attempt (substring match on the error text)
RETRYABLE_ERRORS: tuple[str, ...] = (
    "net::ERR_CONNECTION_RESET",
    "net::ERR_CONNECTION_REFUSED",
    "net::ERR_NAME_NOT_RESOLVED",
    "net::ERR_TIMED_OUT",
    "net::ERR_CONNECTION_TIMED_OUT",
    "net::ERR_NETWORK_CHANGED",
    "Navigation timeout",
    "Timeout",
    "ECONNRESET",
    "ETIMEDOUT",
)

# Markers of CAPTCHA / challenge / login-wall pages
BLOCKING_SELECTORS: tuple[str, ...] = (
    "#challenge-form",
    "#challenge-running",
    ".cf-browser-verification",
    "iframe[src*='captcha']",
    "iframe[src*='recaptcha']",
    "iframe[src*='hcaptcha']",
    ".g-recaptcha",
    ".h-captcha",
    "#px-captcha",
    "form[action*='login'] input[type='password']",
)

BLOCKING_TITLE_KEYWORDS: tuple[str, ...] = (
    "captcha",
    "just a moment",
    "attention required",
    "access denied",
    "verify you are human",
    "are you a robot",
    "security check",
    "sign in",
    "log in",
)
