"""Global configuration management using pydantic-settings.

Runtime knobs for the extraction engine are loaded from environment
variables (or a local ``.env`` file) with strict type validation. Template
options always win over these values; the settings only provide defaults
and the resilience budget that wraps a single extraction run.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GlobalConfig(BaseSettings):
    """Centralized configuration with environment variable binding.

    Attributes:
        app_name: Application identifier for logging.
        environment: Deployment environment (development/staging/production).
        debug: Enable verbose debugging output (backtraces, diagnostics).
        headless: Run the browser without a visible window.
        log_level: Minimum log level for output filtering.
        log_dir: Directory path for structured JSON log files.
        log_rotation: Log file rotation interval.
        log_retention: Log file retention period.
        log_to_file: Write the JSON log file in addition to stderr.
        page_timeout_ms: Navigation timeout when a template sets none.
        selector_timeout_ms: Upper bound for the readiness selector wait.
        max_retries: Navigation attempts when the caller sets none.
        retry_base_delay_ms: Linear back-off step between attempts.
        overall_timeout_ms: Budget for an entire extraction run.
        pagination_idle_timeout_ms: Network-idle wait after a "next" click.
        detect_blocking: Scan loaded pages for CAPTCHA/login-wall markers.
        debug_sample_size: Records kept as samples in debug output.
        user_agents: Rotating user-agent strings for the browser context.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Metadata
    app_name: str = Field(default="Extractr", description="Application identifier")
    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development", description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Browser Configuration
    headless: bool = Field(default=True, description="Run browser in headless mode")

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Minimum log level"
    )
    log_dir: Path = Field(default=Path("logs"), description="Log output directory")
    log_rotation: str = Field(default="1 week", description="Log rotation interval")
    log_retention: str = Field(default="1 month", description="Log retention period")
    log_to_file: bool = Field(default=True, description="Enable JSON file logging")

    # Timeouts
    page_timeout_ms: int = Field(
        default=30000, ge=0, le=600000, description="Default navigation timeout"
    )
    selector_timeout_ms: int = Field(
        default=10000, ge=0, le=600000, description="Readiness selector timeout"
    )
    overall_timeout_ms: int = Field(
        default=300000, ge=1000, description="Overall extraction budget"
    )
    pagination_idle_timeout_ms: int = Field(
        default=5000, ge=0, le=120000, description="Idle wait after pagination click"
    )

    # Resilience Parameters
    max_retries: int = Field(default=3, ge=1, le=10, description="Navigation attempts")
    retry_base_delay_ms: int = Field(
        default=1000, ge=0, le=60000, description="Linear back-off step"
    )

    # Extraction behaviour
    detect_blocking: bool = Field(
        default=True, description="Warn when a page looks like a CAPTCHA/login wall"
    )
    debug_sample_size: int = Field(
        default=3, ge=0, le=50, description="Sample records kept in debug info"
    )

    # Stealth Configuration - User Agent Rotation Pool
    user_agents: list[str] = Field(
        default=[
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
            "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        ],
        min_length=1,
        description="User-agent rotation pool",
    )

    @field_validator("log_dir", mode="before")
    @classmethod
    def ensure_path(cls, value: str | Path) -> Path:
        """Convert string paths to Path objects."""
        return Path(value) if isinstance(value, str) else value


@lru_cache(maxsize=1)
def get_config() -> GlobalConfig:
    """Retrieve the singleton GlobalConfig instance.

    Returns:
        GlobalConfig: The validated configuration instance.
    """
    return GlobalConfig()
