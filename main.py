"""Extractr command-line entry point.

This module is the bootstrap and presentation layer only. It contains
NO extraction logic - all functional code resides in /extractr.

Responsibilities:
    1. Load configuration and initialize logging (fail-fast on error)
    2. Resolve the template and run the extraction
    3. Render output to stdout or a file
    4. Map failures to exit codes (1 on error, 130 on Ctrl+C)

Usage:
    extractr extract news.ycombinator.com @hn-frontpage --format csv
    extractr extract https://example.com ./template.yaml --local --debug
    extractr list
"""

import asyncio
import sys
from pathlib import Path
from typing import NoReturn

import click
from loguru import logger

from config.settings import GlobalConfig, get_config
from extractr import __version__
from extractr.exceptions import ExtractrError, InvalidTemplateError, LoggingInitializationError
from extractr.formatters import OUTPUT_FORMATS, format_output
from extractr.logger import configure_logging
from extractr.models import ExtractionResult, ExtractorOptions, Template
from extractr.templates import list_templates, load_template


def _bootstrap(verbose: bool = False) -> GlobalConfig:
    """Load configuration and initialize logging, exiting on failure."""
    try:
        config = get_config()
    except Exception as exc:
        # Cannot log yet - print to stderr
        click.echo(f"FATAL: Configuration loading failed: {exc}", err=True)
        sys.exit(1)

    try:
        configure_logging(config, verbose=verbose)
    except LoggingInitializationError as exc:
        click.echo(f"FATAL: {exc}", err=True)
        sys.exit(1)

    return config


async def _run_extraction(
    url: str,
    template: Template,
    debug: bool,
    config: GlobalConfig,
) -> ExtractionResult:
    from extractr.browser import BrowserManager
    from extractr.extractor import TemplateExtractor

    logger.info(
        "Extraction started",
        app_name=config.app_name,
        environment=config.environment,
        url=url,
        template=template.name,
    )

    async with BrowserManager.create(config) as browser:
        extractor = TemplateExtractor(browser, config)
        return await extractor.extract(url, template, ExtractorOptions(debug=debug))


def _handle_fatal_error(exc: Exception) -> NoReturn:
    """Report a fatal error and exit with status 1."""
    if isinstance(exc, ExtractrError):
        logger.error(
            "Extraction failed",
            error_type=type(exc).__name__,
            code=str(exc.code),
            context=exc.context,
        )
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)

    # Unexpected error - log full traceback
    logger.exception("Unexpected fatal error", error=str(exc))
    click.echo(f"Error: {exc}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="extractr")
def cli() -> None:
    """Template-based data extraction from web pages."""


@cli.command()
@click.argument("url")
@click.argument("template")
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Output file path (default: stdout).",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(OUTPUT_FORMATS),
    default="json",
    show_default=True,
    help="Output format.",
)
@click.option("--validate", is_flag=True, help="Validate the template without extracting.")
@click.option("--local", is_flag=True, help="Load the template from a local file.")
@click.option("--debug", is_flag=True, help="Show detailed extraction info.")
@click.option("-i", "--interactive", is_flag=True, help="Print a debug summary of the run.")
def extract(
    url: str,
    template: str,
    output: Path | None,
    output_format: str,
    validate: bool,
    local: bool,
    debug: bool,
    interactive: bool,
) -> None:
    """Extract data from URL using TEMPLATE (a file or @builtin-id)."""
    config = _bootstrap(verbose=debug)

    if validate:
        try:
            load_template(template, local)
        except InvalidTemplateError as exc:
            click.echo("Template validation failed:", err=True)
            for error in exc.errors:
                click.echo(f"  - {error}", err=True)
            sys.exit(1)
        except ExtractrError as exc:
            _handle_fatal_error(exc)
        click.echo("Template is valid", err=True)
        return

    try:
        tmpl = load_template(template, local)
        click.echo(f"Extracting data from: {url}", err=True)
        result = asyncio.run(_run_extraction(url, tmpl, debug or interactive, config))
    except KeyboardInterrupt:
        logger.warning("Extraction interrupted by user (Ctrl+C)")
        sys.exit(130)  # Standard Unix SIGINT exit code
    except Exception as exc:
        _handle_fatal_error(exc)

    if interactive:
        from extractr.reporter import render_summary

        click.echo(render_summary(result, tmpl, config), err=True)

    rendered = format_output(result.data, output_format)
    if output is not None:
        output.write_text(rendered, encoding="utf-8")
        click.echo(f"Data written to: {output}", err=True)
    else:
        click.echo(rendered)


@cli.command("list")
def list_command() -> None:
    """List available built-in templates."""
    click.echo("Available templates:\n")
    for info in list_templates():
        click.echo(f"  @{info.id}")
        click.echo(f"    {info.description}")
        click.echo(f"    Example: extractr extract {info.example} @{info.id}\n")


def run() -> None:
    """Console-script entry point."""
    cli()


if __name__ == "__main__":
    run()
