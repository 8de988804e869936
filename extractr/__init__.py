"""Extractr core package.

Template-driven extraction of structured records from rendered web pages:
- models: Pydantic template, option and result types
- validator: Template validation, regex safety checks and URL normalization
- dom: lxml-backed document queries used by the engine
- engine: Field extraction, transforms and type coercion
- browser: Playwright page automation provider
- extractor: Orchestration with retries, timeouts, cancellation and pagination
- templates: Built-in template registry and template file loading
- formatters: JSON, JSON Lines and CSV output
- reporter: Debug summary of an extraction run
- logger: Structured JSON logging configuration
- exceptions: Custom exception hierarchy
"""

__version__ = "0.1.0"
