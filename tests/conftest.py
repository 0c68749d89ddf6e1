"""Shared fixtures: sample rows and an in-process fake of the data gateway."""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from construo.errors import ErrorCode, GatewayError


def make_site_config(**overrides: Any) -> dict[str, Any]:
    config: dict[str, Any] = {
        "config_key": "main",
        "hero": {"title": "CONSTRUO 2026", "subtitle": "Build the future"},
        "about": {"text": "Annual technical symposium"},
        "settings": {},
        "updated_at": "2026-01-10T09:00:00+00:00",
    }
    config.update(overrides)
    return config


@pytest.fixture()
def site_config() -> dict[str, Any]:
    return make_site_config()


@pytest.fixture()
def sample_rows(site_config: dict[str, Any]) -> dict[str, Any]:
    return {
        "siteConfig": site_config,
        "events": [
            {"id": "evt_1", "event_id": "evt_1", "name": "Robotics", "status": "active"},
            {"id": "evt_2", "event_id": "evt_2", "name": "Paper Presentation", "status": "active"},
        ],
        "timeline": [{"id": 1, "day": "Day 1", "order": 1}],
        "speakers": [{"id": 1, "name": "Dr. Meera Iyer", "order": 1}],
        "sponsors": [{"id": 1, "name": "Acme Steel", "order": 1}],
        "organizers": [{"id": 1, "name": "Civil Engineering Society", "order": 1}],
    }


class FakeGateway:
    """Stands in for ``construo.gateway.Gateway`` on the public-site read paths."""

    def __init__(self, rows: dict[str, Any], available: bool = True) -> None:
        self.rows = copy.deepcopy(rows)
        self.available = available
        self.failing: set[str] = set()
        self.calls: list[str] = []
        # Awaited before every read, so tests can observe state mid-load.
        self.before_get: Callable[[str], Awaitable[None]] | None = None

    async def _get(self, key: str) -> Any:
        self.calls.append(key)
        if self.before_get is not None:
            await self.before_get(key)
        if not self.available:
            raise GatewayError(ErrorCode.SERVICE_UNAVAILABLE, "no client", recoverable=True)
        if key in self.failing:
            raise GatewayError(ErrorCode.FETCH_FAILED, f"{key} failed", recoverable=True)
        return copy.deepcopy(self.rows[key])

    async def fetch_site_config(self) -> dict[str, Any]:
        return await self._get("siteConfig")

    async def fetch_events(self) -> list[dict[str, Any]]:
        return await self._get("events")

    async def fetch_timeline(self) -> list[dict[str, Any]]:
        return await self._get("timeline")

    async def fetch_speakers(self) -> list[dict[str, Any]]:
        return await self._get("speakers")

    async def fetch_sponsors(self) -> list[dict[str, Any]]:
        return await self._get("sponsors")

    async def fetch_organizers(self) -> list[dict[str, Any]]:
        return await self._get("organizers")


@pytest.fixture()
def fake_gateway(sample_rows: dict[str, Any]) -> FakeGateway:
    return FakeGateway(sample_rows)


@pytest.fixture()
def gateway_factory():
    """Build extra FakeGateway instances inside a test."""
    return FakeGateway
