"""
Pytest configuration for the `watts-home-client` test suite.

Tests import `watts_home...` normally. To make that work in a fresh checkout
without requiring an editable install, we add the local `backend/src`
directory to `sys.path`.
"""

from __future__ import annotations

import sys
from pathlib import Path


def pytest_configure() -> None:
    """
    Ensure local `watts_home` package is importable for tests.

    This is intentionally minimal and only affects the test runtime.
    """

    repo_root = Path(__file__).resolve().parent.parent
    backend_src = repo_root / "backend" / "src"

    if backend_src.is_dir():
        # Prepend so local sources win over any globally installed package.
        sys.path.insert(0, str(backend_src))


import logging

import pytest


@pytest.fixture(autouse=True)
def _restore_logging_state():
    """Undo process-global logging changes (record factory, handler filters) between tests."""
    factory = logging.getLogRecordFactory()
    root = logging.getLogger()
    filters = {h: list(h.filters) for h in root.handlers}
    yield
    logging.setLogRecordFactory(factory)
    for handler in root.handlers:
        if handler in filters:
            handler.filters[:] = filters[handler]
