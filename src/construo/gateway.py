"""Remote data gateway over the hosted store's PostgREST surface.

Every public method either returns data or raises ``GatewayError``. Raw
``httpx`` exceptions never escape this module. A gateway built without a
client handle (the handle never became ready at startup) raises
``SERVICE_UNAVAILABLE`` from every call, which callers treat as a cue to
serve cached data.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from collections.abc import Awaitable, Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from construo.errors import ErrorCode, GatewayError
from construo.models.registration import registration_payload

if TYPE_CHECKING:
    from construo.config import GatewaySettings

log = structlog.get_logger()

_SINGLE_OBJECT = "application/vnd.pgrst.object+json"
_NO_ROWS_CODE = "PGRST116"
# Postgres SQLSTATE classes that mean the row itself was rejected.
_VALIDATION_SQLSTATE_PREFIXES = ("22", "23")


class Table(StrEnum):
    SITE_CONFIG = "site_config"
    EVENTS = "events"
    TIMELINE = "timeline_days"
    SPEAKERS = "speakers"
    SPONSORS = "sponsors"
    ORGANIZERS = "organizers"
    REGISTRATIONS = "registrations"
    REGISTRATION_FORMS = "registration_forms"


def build_http_client(settings: GatewaySettings) -> httpx.AsyncClient:
    """Create the shared client with the anon key on every request."""
    headers = {"apikey": settings.anon_key}
    if settings.anon_key:
        headers["Authorization"] = f"Bearer {settings.anon_key}"
    return httpx.AsyncClient(
        base_url=f"{settings.url.rstrip('/')}/rest/v1",
        headers=headers,
        timeout=httpx.Timeout(settings.request_timeout_seconds),
    )


async def wait_for_client(
    ready: Awaitable[httpx.AsyncClient | None],
    timeout: float,
) -> httpx.AsyncClient | None:
    """Wait up to ``timeout`` seconds for the client handle; None on expiry or failure."""
    try:
        return await asyncio.wait_for(ready, timeout=timeout)
    except TimeoutError:
        log.error("gateway_client_timeout", timeout=timeout)
        return None
    except (httpx.HTTPError, OSError):
        log.error("gateway_client_init_failed", exc_info=True)
        return None


def _filter_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# camelCase names the public site reads, keyed by their column.
_EVENT_ALIASES = {
    "team_size": "teamSize",
    "prize_money": "prizeMoney",
    "entry_fee": "entryFee",
    "registration_link": "registrationLink",
    "description": "shortDescription",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}


def _with_event_aliases(row: Mapping[str, Any]) -> dict[str, Any]:
    event = {**row, "id": row.get("event_id", row.get("id"))}
    for column, alias in _EVENT_ALIASES.items():
        event[alias] = row.get(column)
    event["registrationFee"] = row.get("entry_fee")
    return event


class Gateway:
    def __init__(self, client: httpx.AsyncClient | None, site_config_key: str = "main") -> None:
        self._client = client
        self.site_config_key = site_config_key

    @property
    def available(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Core request plumbing
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        table: Table | str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        single: bool = False,
        returning: bool = False,
    ) -> Any:
        if self._client is None:
            raise GatewayError(
                ErrorCode.SERVICE_UNAVAILABLE,
                "Data service client is not available",
                recoverable=True,
            )

        headers: dict[str, str] = {}
        if single:
            headers["Accept"] = _SINGLE_OBJECT
        if returning:
            headers["Prefer"] = "return=representation"

        try:
            response = await self._client.request(
                method, f"/{table}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as exc:
            log.warning("gateway_transport_error", table=str(table), method=method, error=str(exc))
            raise GatewayError(
                ErrorCode.FETCH_FAILED,
                f"Network error talking to {table}: {exc}",
                recoverable=True,
            ) from exc

        if response.is_error:
            raise self._error_from_response(table, response)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(
                ErrorCode.FETCH_FAILED,
                f"Malformed response from {table}",
                recoverable=True,
                status_code=response.status_code,
            ) from exc

    @staticmethod
    def _error_from_response(table: Table | str, response: httpx.Response) -> GatewayError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, Mapping):
            body = {}
        pg_code = str(body.get("code") or "")
        message = body.get("message") or f"HTTP {response.status_code} from {table}"
        details = body.get("details")

        if pg_code == _NO_ROWS_CODE or response.status_code == 404:
            code, recoverable = ErrorCode.NOT_FOUND, False
        elif pg_code.startswith(_VALIDATION_SQLSTATE_PREFIXES) or response.status_code in (
            400,
            409,
            422,
        ):
            code, recoverable = ErrorCode.VALIDATION_FAILED, False
        elif response.status_code >= 500:
            code, recoverable = ErrorCode.FETCH_FAILED, True
        else:
            code, recoverable = ErrorCode.FETCH_FAILED, False

        log.warning(
            "gateway_http_error",
            table=str(table),
            status=response.status_code,
            pg_code=pg_code or None,
            message=message,
        )
        return GatewayError(
            code,
            message,
            recoverable=recoverable,
            status_code=response.status_code,
            details=details,
        )

    # ------------------------------------------------------------------
    # Generic operations
    # ------------------------------------------------------------------

    async def fetch(
        self,
        table: Table | str,
        *,
        filters: Mapping[str, Any] | None = None,
        order: str | None = None,
        ascending: bool = True,
        single: bool = False,
        limit: int | None = None,
    ) -> Any:
        """Select rows with equality filters; ``single`` returns one row or raises NOT_FOUND."""
        params = {"select": "*"}
        for field, value in (filters or {}).items():
            params[field] = f"eq.{_filter_value(value)}"
        if order:
            params["order"] = f"{order}.{'asc' if ascending else 'desc'}"
        if limit is not None:
            params["limit"] = str(limit)
        body = await self._request("GET", table, params=params, single=single)
        if single:
            well_formed = isinstance(body, Mapping)
        else:
            well_formed = isinstance(body, list) and all(isinstance(r, Mapping) for r in body)
        if not well_formed:
            expected = "one row" if single else "a list of rows"
            log.warning("gateway_malformed_body", table=str(table), expected=expected)
            raise GatewayError(
                ErrorCode.FETCH_FAILED,
                f"Malformed response from {table}: expected {expected}",
                recoverable=True,
            )
        return body

    async def insert(self, table: Table | str, record: Mapping[str, Any]) -> dict[str, Any]:
        """Insert and return the persisted row including server-assigned fields."""
        return await self._request(
            "POST", table, json=dict(record), single=True, returning=True
        )

    async def update(
        self,
        table: Table | str,
        key_field: str,
        key: Any,
        partial: Mapping[str, Any],
    ) -> dict[str, Any]:
        return await self._request(
            "PATCH",
            table,
            params={key_field: f"eq.{_filter_value(key)}", "select": "*"},
            json=dict(partial),
            single=True,
            returning=True,
        )

    async def delete(self, table: Table | str, key_field: str, key: Any) -> bool:
        await self._request("DELETE", table, params={key_field: f"eq.{_filter_value(key)}"})
        return True

    # ------------------------------------------------------------------
    # Public-site collections
    # ------------------------------------------------------------------

    async def fetch_site_config(self) -> dict[str, Any]:
        return await self.fetch(
            Table.SITE_CONFIG, filters={"config_key": self.site_config_key}, single=True
        )

    async def fetch_events(self) -> list[dict[str, Any]]:
        rows = await self.fetch(
            Table.EVENTS, filters={"status": "active"}, order="created_at", ascending=False
        )
        return [_with_event_aliases(row) for row in rows]

    async def fetch_timeline(self) -> list[dict[str, Any]]:
        return await self.fetch(Table.TIMELINE, order="order")

    async def fetch_speakers(self) -> list[dict[str, Any]]:
        return await self.fetch(Table.SPEAKERS, filters={"status": "active"}, order="order")

    async def fetch_sponsors(self) -> list[dict[str, Any]]:
        return await self.fetch(Table.SPONSORS, filters={"status": "active"}, order="order")

    async def fetch_organizers(self) -> list[dict[str, Any]]:
        return await self.fetch(Table.ORGANIZERS, filters={"status": "active"}, order="order")

    # ------------------------------------------------------------------
    # Site configuration writes
    # ------------------------------------------------------------------

    async def update_site_config_section(
        self,
        section: str,
        data: Mapping[str, Any],
        updated_by: str | None = None,
    ) -> dict[str, Any]:
        """Replace one named section wholesale; other sections are untouched."""
        timestamp = datetime.now(UTC).isoformat()
        body = {
            section: {**data, "updatedAt": timestamp, "updatedBy": updated_by or "unknown"},
            "updated_at": timestamp,
        }
        row = await self.update(Table.SITE_CONFIG, "config_key", self.site_config_key, body)
        log.info("site_config_section_updated", section=section, updated_by=updated_by)
        return row

    # ------------------------------------------------------------------
    # Registrations
    # ------------------------------------------------------------------

    async def get_active_form(self) -> dict[str, Any] | None:
        """Most recently updated active registration form, or None if there is none."""
        try:
            return await self.fetch(
                Table.REGISTRATION_FORMS,
                filters={"is_active": True},
                order="updated_at",
                ascending=False,
                limit=1,
                single=True,
            )
        except GatewayError as exc:
            if exc.code == ErrorCode.NOT_FOUND:
                return None
            raise

    async def get_registrations(self) -> list[dict[str, Any]]:
        return await self.fetch(Table.REGISTRATIONS, order="created_at", ascending=False)

    async def create_registration(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        registration_id = f"reg_{int(time.time() * 1000)}_{secrets.token_hex(3)}"
        record = {
            "registration_id": registration_id,
            # Assigned by a database trigger.
            "registration_number": "",
            "form_id": payload.get("form_id"),
            "participant": payload.get("participant") or {},
            "data": payload.get("data") or {},
            "events": payload.get("events") or [],
            "team_members": payload.get("team_members") or [],
            "payment": payload.get("payment") or {"amount": 0, "status": "pending"},
            "status": "pending",
        }
        row = await self.insert(Table.REGISTRATIONS, record)
        log.info("registration_created", registration_id=registration_id)
        return row

    async def submit_registration(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Register answers against the active form."""
        form = await self.get_active_form()
        if form is None:
            raise GatewayError(
                ErrorCode.NOT_FOUND,
                "No active registration form",
                recoverable=False,
            )
        return await self.create_registration(registration_payload(form, data))
