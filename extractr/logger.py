"""Logging setup for the extractr CLI and library.

stdout carries the extracted records (JSON, JSONL or CSV), so every log
line goes elsewhere:

- stderr: colorized progress (navigation attempts, pagination, blocking
  warnings). ``extractr extract --debug`` lowers it to DEBUG so per-field
  fallbacks become visible.
- ``<log_dir>/extractr_<date>.json``: one JSON object per line, carrying
  the values bound through ``log.info(..., url=..., attempt=...)`` under
  ``context``. Rotation and retention come from ``GlobalConfig``;
  ``LOG_TO_FILE=false`` disables it (the test suite does).

Library modules only call ``get_logger(__name__)``; sinks are installed
once by ``configure_logging`` from ``main._bootstrap``.
"""

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from config.settings import GlobalConfig, get_config
from extractr.exceptions import LoggingInitializationError


def _json_serializer(record: dict[str, Any]) -> str:
    """Format a loguru record as one JSON line.

    Args:
        record: Loguru record dictionary containing log metadata.

    Returns:
        JSON-formatted string representation of the log record.
    """
    subset = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "module": record["name"],
        "function": record["function"],
        "line": record["line"],
    }

    if record["exception"] is not None:
        subset["exception"] = {
            "type": record["exception"].type.__name__ if record["exception"].type else None,
            "value": str(record["exception"].value) if record["exception"].value else None,
            "traceback": record["exception"].traceback is not None,
        }

    if record["extra"]:
        subset["context"] = {k: v for k, v in record["extra"].items() if k != "serialized"}

    return json.dumps(subset, default=str) + "\n"


def _validate_log_directory(log_dir: Path) -> None:
    """Validate log directory exists and is writable.

    Args:
        log_dir: Path to the log directory.

    Raises:
        LoggingInitializationError: If directory creation or write test fails.
    """
    try:
        log_dir.mkdir(parents=True, exist_ok=True)

        test_file = log_dir / ".write_test"
        test_file.write_text("write_test")
        test_file.unlink()

    except PermissionError as exc:
        raise LoggingInitializationError(
            log_dir=str(log_dir),
            reason=f"Permission denied: {exc}",
        ) from exc
    except OSError as exc:
        raise LoggingInitializationError(
            log_dir=str(log_dir),
            reason=f"OS error during directory validation: {exc}",
        ) from exc


_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def _add_run_log_sink(config: GlobalConfig) -> Path:
    """Attach the rotated JSON-lines file sink and return its path pattern."""
    _validate_log_directory(config.log_dir)
    log_file_path = config.log_dir / "extractr_{time:YYYY-MM-DD}.json"

    logger.add(
        str(log_file_path),
        format="{extra[serialized]}",
        level=config.log_level,
        rotation=config.log_rotation,
        retention=config.log_retention,
        compression="gz",
        serialize=False,
        filter=lambda record: record["extra"].update(serialized=_json_serializer(record)) or True,
    )
    return log_file_path


def configure_logging(config: GlobalConfig | None = None, verbose: bool = False) -> None:
    """Replace loguru's default handler with the extractr sinks.

    The console sink always goes to stderr at ``config.log_level`` (DEBUG
    when ``verbose``); loguru backtraces and variable diagnostics follow
    ``config.debug``. The JSON file sink is added only when
    ``config.log_to_file`` is set, after the directory passes a write test.

    Args:
        config: Settings to read levels and paths from; the cached
            ``get_config()`` instance when omitted.
        verbose: Set by the CLI ``--debug`` flag.

    Raises:
        LoggingInitializationError: If the log directory cannot be created
            or written.
    """
    if config is None:
        config = get_config()

    logger.remove()

    console_level = "DEBUG" if verbose else config.log_level
    logger.add(
        sys.stderr,
        format=_CONSOLE_FORMAT,
        level=console_level,
        colorize=True,
        backtrace=config.debug,
        diagnose=config.debug,
    )

    log_file = _add_run_log_sink(config) if config.log_to_file else None

    logger.debug(
        "Logging configured",
        console_level=console_level,
        log_file=str(log_file) if log_file else None,
    )


def get_logger(name: str) -> "logger":
    """Get a logger bound with the module name.

    Args:
        name: Module or component name for log attribution.

    Returns:
        Loguru logger instance bound with the provided name context.
    """
    return logger.bind(module=name)
