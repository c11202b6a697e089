"""Shared pytest fixtures."""

import os
from collections.abc import Iterator
from unittest.mock import patch

import pytest

from texpreview.config import Settings, get_settings
from texpreview.utils.metrics import get_metrics

TEST_ENV = {
    "ENVIRONMENT": "development",
    "LOG_LEVEL": "DEBUG",
}


@pytest.fixture(autouse=True)
def _clean_state() -> Iterator[None]:
    """Reset cached settings and metrics around every test."""
    get_settings.cache_clear()
    get_metrics().reset()
    yield
    get_settings.cache_clear()
    get_metrics().reset()


@pytest.fixture
def test_settings() -> Iterator[Settings]:
    """Settings built from a known environment, ignoring any local .env."""
    with patch.dict(os.environ, TEST_ENV, clear=True):
        yield Settings(_env_file=None)


@pytest.fixture
def blocks():
    """Fresh block table."""
    from texpreview.preview.blocks import BlockTable

    return BlockTable()


@pytest.fixture
def formatter():
    """Inline formatter with the default math renderer."""
    from texpreview.preview.formatting import InlineFormatter

    return InlineFormatter()
