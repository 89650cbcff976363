"""
Pytest configuration and shared fixtures.

Skips LangChain retriever tests when langchain-core is not installed and
Redis store tests when redis is not installed, so the default CI matrix can
still run core tests.
"""

from __future__ import annotations

import importlib.util
import logging
from collections.abc import Iterator

import pytest

_OPTIONAL = {
    "test_retrievers": ("langchain_core", "langchain", "vespakit[langchain,dev]"),
    "test_redis_store": ("redis", "redis", "vespakit[redis,dev]"),
}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "langchain: tests that require vespakit[langchain] (langchain-core).",
    )
    config.addinivalue_line(
        "markers",
        "redis: tests that require vespakit[redis] (redis-py).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    for item in items:
        path = str(getattr(item, "path", None) or getattr(item, "fspath", None) or "")
        for module, (package, marker, extra) in _OPTIONAL.items():
            if module not in path:
                continue
            if importlib.util.find_spec(package) is None:
                item.add_marker(
                    pytest.mark.skip(reason=f"{package} not installed; pip install {extra}")
                )
            else:
                item.add_marker(getattr(pytest.mark, marker))


def pytest_ignore_collect(collection_path, config):  # type: ignore[no-untyped-def]
    # Modules importing an optional package at top level cannot even be collected without it.
    for module, (package, _, _) in _OPTIONAL.items():
        if collection_path.name == f"{module}.py" and importlib.util.find_spec(package) is None:
            return True
    return None


@pytest.fixture(autouse=True)
def _restore_vespakit_logger() -> Iterator[None]:
    """configure_logging() detaches the package logger; undo that between tests."""
    logger = logging.getLogger("vespakit")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
