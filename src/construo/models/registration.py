from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from pydantic import BaseModel


class ParticipantRecord(BaseModel):
    """Render input for one certificate. Lives only for one generation run."""

    id: str
    full_name: str = ""
    email: str = ""
    college: str = ""
    events: list[str] = []
    event_title: str | None = None
    registration_number: str | None = None
    status: str | None = None


class FormField(BaseModel):
    id: str
    label: str = ""
    type: str = "text"
    required: bool = False


# Identity field -> label substrings, checked case-insensitively in this order.
# The first form field whose label contains any substring wins.
FIELD_LABEL_HINTS: dict[str, tuple[str, ...]] = {
    "name": ("name",),
    "email": ("email",),
    "phone": ("phone", "mobile", "contact"),
    "college": ("college", "institution", "university"),
    "year": ("year",),
    "department": ("dept", "department"),
}


def map_form_fields(fields: Sequence[FormField], data: Mapping[str, Any]) -> dict[str, Any]:
    """Map dynamic registration form answers onto participant identity fields.

    Matching is a plain substring test on each field's label, so it is easy to
    fool: a "Team Name" field declared before "Full Name" is taken as the
    participant name, and "Contact Email" is claimed by both ``email`` and
    ``phone``. Identity fields with no matching label are left out entirely
    rather than set to None.
    """
    participant: dict[str, Any] = {}
    for target, hints in FIELD_LABEL_HINTS.items():
        match = next(
            (f for f in fields if any(h in f.label.lower() for h in hints)),
            None,
        )
        if match is not None and match.id in data:
            participant[target] = data[match.id]
    return participant


def _event_names(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    names: list[str] = []
    for item in raw:
        if isinstance(item, str):
            names.append(item)
        elif isinstance(item, Mapping) and item.get("name"):
            names.append(str(item["name"]))
    return names


def participant_from_registration(row: Mapping[str, Any]) -> ParticipantRecord:
    """Flatten a registration row; participant details live in a nested JSON blob."""
    details = row.get("participant") or {}
    return ParticipantRecord(
        id=str(row.get("id") or row.get("registration_id") or ""),
        full_name=details.get("name") or "Unknown",
        email=details.get("email") or "N/A",
        college=details.get("college") or "N/A",
        events=_event_names(row.get("events")),
        event_title=row.get("event_title") or details.get("event_title") or None,
        registration_number=row.get("registration_number") or None,
        status=row.get("status"),
    )


def confirmed_participants(rows: Iterable[Mapping[str, Any]]) -> list[ParticipantRecord]:
    return [participant_from_registration(r) for r in rows if r.get("status") == "confirmed"]


def registration_payload(form: Mapping[str, Any], data: Mapping[str, Any]) -> dict[str, Any]:
    """Build the ``create_registration`` payload from a submitted form."""
    fields = [FormField.model_validate(f) for f in form.get("fields") or []]
    return {
        "form_id": form.get("id"),
        "participant": map_form_fields(fields, data),
        "data": dict(data),
        "events": list(data.get("events") or []),
        "team_members": list(data.get("teamMembers") or []),
        "payment": {"amount": 0, "status": "pending"},
    }
