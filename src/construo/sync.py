"""Stale-while-revalidate synchronisation of the public-site aggregate.

``load_all`` answers from the local cache whenever a site configuration is
cached, without touching the network, and at most once per cooldown window
schedules a background revalidation. That revalidation waits briefly so the
cached render lands first, refetches everything, and only writes and notifies
subscribers when the change-detection hash moved.

Each collection is fetched in isolation: a failure falls back to that
collection's cached value, then to an empty default, and never aborts the
others. Background failures are logged and swallowed so they can never
disturb what consumers already show.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from construo.errors import ConstruoError, ErrorCode
from construo.models.cache import (
    DATA_HASH_KEY,
    LAST_FETCH_KEY,
    LIST_COLLECTIONS,
    AggregatePayload,
    CachedEntitySet,
    Collection,
    LoadProgress,
    RevalidationDecision,
    decide_revalidation,
)

if TYPE_CHECKING:
    from construo.cache import Cache
    from construo.config import SyncSettings
    from construo.gateway import Gateway

log = structlog.get_logger()

ChangeCallback = Callable[[AggregatePayload], None]
ProgressCallback = Callable[[LoadProgress], None]

_FORCE_REFRESH_PARAMS = ("clearCache", "refresh")


class SyncState(StrEnum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    REVALIDATING = "revalidating"
    DISPOSED = "disposed"


def should_force_refresh(params: Mapping[str, str]) -> bool:
    """True when the request carries the reserved cache-bust query parameter."""
    return any(params.get(name) == "true" for name in _FORCE_REFRESH_PARAMS)


def rolling_hash(text: str) -> str:
    """31-multiplier string hash wrapped to a signed 32-bit integer."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return str(h)


def compute_data_hash(payload: AggregatePayload) -> str:
    """Change-detection hash over site configuration, events and speakers.

    Timeline, sponsor and organizer edits do not move this hash.
    """
    canonical = json.dumps(
        [payload.site_config, payload.events, payload.speakers],
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return rolling_hash(canonical)


def _now_ms() -> int:
    return int(time.time() * 1000)


class SyncController:
    """Owns the cache and gateway references for one page/process lifetime."""

    def __init__(
        self,
        cache: Cache,
        gateway: Gateway,
        settings: SyncSettings,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._cache = cache
        self._gateway = gateway
        self._settings = settings
        self._clock = clock
        self.state = SyncState.EMPTY
        self._subscribers: list[ChangeCallback] = []
        self._progress_subscribers: list[ProgressCallback] = []
        self._revalidation: asyncio.Task[None] | None = None
        self._last_revalidation_ms: int | None = None
        self._loaded_collections = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        await self._cache.clear_stale_versions()

    async def dispose(self) -> None:
        task = self._revalidation
        self._revalidation = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._subscribers.clear()
        self._progress_subscribers.clear()
        self.state = SyncState.DISPOSED

    @property
    def revalidation_task(self) -> asyncio.Task[None] | None:
        return self._revalidation

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register for fresh payloads; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def subscribe_progress(self, callback: ProgressCallback) -> Callable[[], None]:
        self._progress_subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._progress_subscribers:
                self._progress_subscribers.remove(callback)

        return unsubscribe

    def _notify(self, payload: AggregatePayload) -> None:
        for callback in list(self._subscribers):
            try:
                callback(payload)
            except Exception:
                log.warning("sync_subscriber_error", exc_info=True)

    def _report_progress(self) -> None:
        self._loaded_collections += 1
        total = len(Collection)
        progress = LoadProgress(
            loaded=self._loaded_collections,
            total=total,
            percent=round(self._loaded_collections / total * 100),
        )
        for callback in list(self._progress_subscribers):
            try:
                callback(progress)
            except Exception:
                log.warning("sync_progress_subscriber_error", exc_info=True)

    # ------------------------------------------------------------------
    # Cache access
    # ------------------------------------------------------------------

    async def read_cached(self) -> AggregatePayload | None:
        """The cached aggregate, or None when no site configuration is cached."""
        site_config = await self._cache.read(Collection.SITE_CONFIG)
        if not isinstance(site_config, dict):
            return None
        lists: dict[str, list[Any]] = {}
        for collection in LIST_COLLECTIONS:
            value = await self._cache.read(collection)
            lists[collection.value] = value if isinstance(value, list) else []
        return AggregatePayload(site_config=site_config, **lists)

    async def cached_entity(self, collection: Collection) -> CachedEntitySet | None:
        """One cached collection with the aggregate freshness metadata, if complete."""
        data = await self._cache.read(collection)
        last_fetch = await self._cache.read(LAST_FETCH_KEY)
        content_hash = await self._cache.read(DATA_HASH_KEY)
        if data is None or not isinstance(last_fetch, int) or not isinstance(content_hash, str):
            return None
        return CachedEntitySet(data=data, last_fetch=last_fetch, content_hash=content_hash)

    async def _persist(self, payload: AggregatePayload, data_hash: str | None = None) -> None:
        """Overwrite every collection key plus the aggregate metadata."""
        await self._cache.save(Collection.SITE_CONFIG, payload.site_config)
        for collection in LIST_COLLECTIONS:
            await self._cache.save(collection, payload.get(collection))
        await self._cache.save(LAST_FETCH_KEY, self._clock())
        await self._cache.save(DATA_HASH_KEY, data_hash or compute_data_hash(payload))

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch_collection(
        self,
        collection: Collection,
        fallback: AggregatePayload | None = None,
    ) -> Any:
        """Fetch one collection; on failure serve ``fallback``, the cache, or an empty default."""
        fetchers = {
            Collection.SITE_CONFIG: self._gateway.fetch_site_config,
            Collection.EVENTS: self._gateway.fetch_events,
            Collection.TIMELINE: self._gateway.fetch_timeline,
            Collection.SPEAKERS: self._gateway.fetch_speakers,
            Collection.SPONSORS: self._gateway.fetch_sponsors,
            Collection.ORGANIZERS: self._gateway.fetch_organizers,
        }
        try:
            value = await fetchers[collection]()
        except ConstruoError as exc:
            log.warning(
                "sync_collection_fetch_failed",
                collection=collection.value,
                code=exc.code.value,
                error=exc.message,
            )
            return await self._fallback_for(collection, fallback)
        self._report_progress()
        return value

    async def _fallback_for(
        self,
        collection: Collection,
        fallback: AggregatePayload | None,
    ) -> Any:
        if fallback is not None:
            value = fallback.get(collection)
        else:
            value = await self._cache.read(collection)
        if collection is Collection.SITE_CONFIG:
            return value if isinstance(value, dict) else None
        return value if isinstance(value, list) else []

    async def fetch_all_fresh(self, fallback: AggregatePayload | None = None) -> AggregatePayload:
        """Fetch the five list collections in parallel, then the site configuration last."""
        self._loaded_collections = 0
        events, timeline, speakers, sponsors, organizers = await asyncio.gather(
            *(self.fetch_collection(c, fallback) for c in LIST_COLLECTIONS)
        )
        site_config = await self.fetch_collection(Collection.SITE_CONFIG, fallback)
        return AggregatePayload(
            site_config=site_config,
            events=events,
            timeline=timeline,
            speakers=speakers,
            sponsors=sponsors,
            organizers=organizers,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def load_all(self) -> AggregatePayload:
        """Serve the cache when possible; fetch and persist everything otherwise.

        Raises ``ConstruoError(SERVICE_UNAVAILABLE)`` only when there is
        neither a client handle nor a cached aggregate.
        """
        if self.state is SyncState.DISPOSED:
            raise RuntimeError("SyncController has been disposed")

        cached = await self.read_cached()
        now = self._clock()
        last_fetch = await self._cache.read(LAST_FETCH_KEY) if cached is not None else None
        gate_ms = self._revalidation_reference(last_fetch)
        decision = decide_revalidation(
            cached_present=cached is not None,
            last_fetch_ms=gate_ms,
            now_ms=now,
            cooldown_ms=int(self._settings.cooldown_seconds * 1000),
        )

        if decision is RevalidationDecision.FETCH_FRESH_BLOCKING:
            return await self._load_blocking()

        assert cached is not None
        log.info("sync_cache_hit", decision=decision.value)
        if self.state is not SyncState.REVALIDATING:
            self.state = SyncState.READY

        if cached.caching_disabled():
            # Takes effect on the next call, which will miss.
            log.info("sync_cache_disabled_by_config")
            await self._cache.clear_all()
            return cached

        if decision is RevalidationDecision.SERVE_CACHE_AND_REVALIDATE and not self._in_flight():
            self._last_revalidation_ms = now
            self._revalidation = asyncio.create_task(self.background_revalidate(cached))
        return cached

    def _revalidation_reference(self, last_fetch: Any) -> int | None:
        candidates = [v for v in (last_fetch, self._last_revalidation_ms) if isinstance(v, int)]
        return max(candidates) if candidates else None

    def _in_flight(self) -> bool:
        return self._revalidation is not None and not self._revalidation.done()

    async def _load_blocking(self) -> AggregatePayload:
        if not self._gateway.available:
            raise ConstruoError(
                ErrorCode.SERVICE_UNAVAILABLE,
                "Data service is unavailable and nothing is cached",
                recoverable=True,
            )
        log.info("sync_cache_miss")
        self.state = SyncState.LOADING
        payload = await self.fetch_all_fresh()
        if payload.caching_disabled():
            log.info("sync_cache_disabled_by_config")
        else:
            await self._persist(payload)
        self.state = SyncState.READY
        return payload

    async def background_revalidate(self, cached: AggregatePayload) -> None:
        """Refetch after a short delay; write and notify only if the hash changed."""
        try:
            await asyncio.sleep(self._settings.revalidate_delay_seconds)
            self.state = SyncState.REVALIDATING
            fresh = await self.fetch_all_fresh(fallback=cached)
            fresh_hash = compute_data_hash(fresh)
            stored_hash = await self._cache.read(DATA_HASH_KEY)
            if not isinstance(stored_hash, str):
                stored_hash = compute_data_hash(cached)

            if fresh_hash == stored_hash:
                log.info("sync_revalidate_unchanged", hash=fresh_hash)
                return

            log.info("sync_revalidate_changed", old_hash=stored_hash, new_hash=fresh_hash)
            if fresh.caching_disabled():
                await self._cache.clear_all()
            else:
                await self._persist(fresh, fresh_hash)
            self._notify(fresh)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.warning("background_revalidate_failed", exc_info=True)
        finally:
            if self.state is SyncState.REVALIDATING:
                self.state = SyncState.READY

    async def refresh_all_data(self) -> AggregatePayload:
        """Bypass the cache: clear it, fetch everything, persist, and notify."""
        await self._cache.clear_all()
        payload = await self._load_blocking()
        self._notify(payload)
        return payload
