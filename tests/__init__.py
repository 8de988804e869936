"""Test suite for Extractr.

This package contains hermetic tests following the pytest framework.
Tests are structured to mirror the extractr/ package hierarchy for discoverability.

Testing Philosophy:
    - Browser sessions are replaced by in-memory fakes or mocked Playwright objects
    - Focus coverage on template validation, field extraction and orchestration
    - Avoid external dependencies - all I/O should be mocked
"""
