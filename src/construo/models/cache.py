from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel


class Collection(StrEnum):
    """The six public collections, valued by their cache key."""

    SITE_CONFIG = "siteConfig"
    EVENTS = "events"
    TIMELINE = "timeline"
    SPEAKERS = "speakers"
    SPONSORS = "sponsors"
    ORGANIZERS = "organizers"


# Shared across the whole aggregate, not per collection.
LAST_FETCH_KEY = "lastFetch"
DATA_HASH_KEY = "dataHash"

LIST_COLLECTIONS: tuple[Collection, ...] = (
    Collection.EVENTS,
    Collection.TIMELINE,
    Collection.SPEAKERS,
    Collection.SPONSORS,
    Collection.ORGANIZERS,
)


class AggregatePayload(BaseModel):
    """Everything the public site renders, cached and replaced as one unit."""

    site_config: dict[str, Any] | None = None
    events: list[dict[str, Any]] = []
    timeline: list[dict[str, Any]] = []
    speakers: list[dict[str, Any]] = []
    sponsors: list[dict[str, Any]] = []
    organizers: list[dict[str, Any]] = []

    def get(self, collection: Collection) -> Any:
        if collection is Collection.SITE_CONFIG:
            return self.site_config
        return getattr(self, collection.value)

    def caching_disabled(self) -> bool:
        """True when the site configuration opts out of local caching."""
        settings = (self.site_config or {}).get("settings") or {}
        return settings.get("cache_enabled") is False


class CachedEntitySet(BaseModel):
    """One cached collection plus the aggregate freshness metadata."""

    data: Any
    last_fetch: int  # ms since epoch
    content_hash: str


class RevalidationDecision(StrEnum):
    SERVE_CACHE_ONLY = "serve_cache_only"
    SERVE_CACHE_AND_REVALIDATE = "serve_cache_and_revalidate"
    FETCH_FRESH_BLOCKING = "fetch_fresh_blocking"


def decide_revalidation(
    cached_present: bool,
    last_fetch_ms: int | None,
    now_ms: int,
    cooldown_ms: int,
) -> RevalidationDecision:
    if not cached_present:
        return RevalidationDecision.FETCH_FRESH_BLOCKING
    if last_fetch_ms is None or now_ms - last_fetch_ms > cooldown_ms:
        return RevalidationDecision.SERVE_CACHE_AND_REVALIDATE
    return RevalidationDecision.SERVE_CACHE_ONLY


class LoadProgress(BaseModel):
    loaded: int
    total: int
    percent: int
