"""Unit-specific fixtures (no I/O beyond in-memory SQLite)."""

from __future__ import annotations

import aiosqlite
import pytest

from construo.cache import Cache


@pytest.fixture()
async def db():
    async with aiosqlite.connect(":memory:") as conn:
        yield conn


@pytest.fixture()
async def cache(db: aiosqlite.Connection):
    """In-memory SQLite cache for unit tests."""
    c = Cache(db, version="1.4")
    await c.init_db()
    yield c
