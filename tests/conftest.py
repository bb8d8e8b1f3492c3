"""Shared test fixtures for extraauth."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from extraauth.config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings() -> Iterator[None]:
    """Drop cached settings so each test sees its own environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
