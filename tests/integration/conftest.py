"""Integration test fixtures.

Provides settings pointing at a temporary SQLite file and a respx router that
serves the hosted store's REST surface from the shared ``sample_rows``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import pytest
import respx

from construo.config import Settings

if TYPE_CHECKING:
    from pathlib import Path

SUPABASE_URL = "https://test-project.supabase.co"
REST = f"{SUPABASE_URL}/rest/v1"

_TABLE_ROWS = {
    "site_config": "siteConfig",
    "events": "events",
    "timeline_days": "timeline",
    "speakers": "speakers",
    "sponsors": "sponsors",
    "organizers": "organizers",
}


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        gateway={"url": SUPABASE_URL, "anon_key": "test-anon-key", "ready_timeout_seconds": 1},
        cache={"db_path": str(tmp_path / "data" / "cache.db")},
        sync={"revalidate_delay_seconds": 0},
        certificates={"output_dir": str(tmp_path / "certificates")},
    )


@pytest.fixture()
def registrations() -> list[dict[str, Any]]:
    return [
        {
            "id": "101",
            "registration_id": "reg_1760000000000_a1b2c3",
            "status": "confirmed",
            "participant": {"name": "Asha Rao", "email": "asha@x.org", "college": "IIT Madras"},
            "events": ["Robotics"],
        },
        {
            "id": "102",
            "registration_id": "reg_1760000000001_d4e5f6",
            "status": "pending",
            "participant": {"name": "Pending Person"},
            "events": [],
        },
        {
            "id": "103",
            "registration_id": "reg_1760000000002_0a0b0c",
            "status": "confirmed",
            "participant": {"name": "Vikram S.", "college": "NIT Trichy"},
            "events": [{"name": "Bridge Design"}],
        },
    ]


@pytest.fixture()
def supabase(sample_rows: dict[str, Any], registrations: list[dict[str, Any]]):
    """Mocked REST surface. Routes are named after their tables."""
    with respx.mock(base_url=REST, assert_all_called=False) as router:
        for table, key in _TABLE_ROWS.items():
            router.get(f"/{table}", name=table).mock(
                return_value=httpx.Response(200, json=sample_rows[key])
            )
        router.get("/registrations", name="registrations").mock(
            return_value=httpx.Response(200, json=registrations)
        )
        yield router


@pytest.fixture()
def network_calls(supabase: respx.MockRouter):
    """Callable returning how many public-site table requests have been made so far."""

    def count() -> int:
        return sum(supabase.routes[name].call_count for name in _TABLE_ROWS)

    return count
