"""Application wiring: one explicitly constructed set of services per run."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path

import aiosqlite
import httpx
import structlog

from construo.cache import Cache
from construo.certificates import BatchRenderer
from construo.config import Settings
from construo.gateway import Gateway, build_http_client, wait_for_client
from construo.sync import SyncController

log = structlog.get_logger()


@dataclass
class AppState:
    settings: Settings
    cache: Cache
    gateway: Gateway
    sync: SyncController
    renderer: BatchRenderer


async def _open_db(db_path: str) -> aiosqlite.Connection | None:
    """Open the cache database, or None when persistent storage is unusable."""
    path = Path(db_path).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return await aiosqlite.connect(path)
    except (OSError, aiosqlite.Error):
        log.warning("cache_storage_unavailable", db_path=str(path), exc_info=True)
        return None


async def _ready_client(settings: Settings) -> httpx.AsyncClient:
    return build_http_client(settings.gateway)


@contextlib.asynccontextmanager
async def open_app_state(settings: Settings) -> AsyncIterator[AppState]:
    db = await _open_db(settings.cache.db_path)
    client = await wait_for_client(
        _ready_client(settings), settings.gateway.ready_timeout_seconds
    )
    cache = Cache(db, settings.cache.version, settings.cache.max_page_count)
    sync: SyncController | None = None
    try:
        await cache.init_db()
        gateway = Gateway(client, settings.gateway.site_config_key)
        sync = SyncController(cache, gateway, settings.sync)
        await sync.init()
        yield AppState(
            settings=settings,
            cache=cache,
            gateway=gateway,
            sync=sync,
            renderer=BatchRenderer(settings.certificates),
        )
    finally:
        if sync is not None:
            await sync.dispose()
        if client is not None:
            await client.aclose()
        if db is not None:
            await db.close()
