from __future__ import annotations

from construo.models.cache import (
    AggregatePayload,
    CachedEntitySet,
    Collection,
    LoadProgress,
    RevalidationDecision,
    decide_revalidation,
)
from construo.models.registration import (
    FormField,
    ParticipantRecord,
    confirmed_participants,
    map_form_fields,
    participant_from_registration,
    registration_payload,
)
from construo.models.template import (
    CircleElement,
    ImageElement,
    LineElement,
    PlaceholderKind,
    RectElement,
    TemplateDocument,
    TextElement,
    TriangleElement,
    VisualElement,
)

__all__ = [
    # cache
    "AggregatePayload",
    "CachedEntitySet",
    "Collection",
    "LoadProgress",
    "RevalidationDecision",
    "decide_revalidation",
    # registration
    "FormField",
    "ParticipantRecord",
    "confirmed_participants",
    "map_form_fields",
    "participant_from_registration",
    "registration_payload",
    # template
    "CircleElement",
    "ImageElement",
    "LineElement",
    "PlaceholderKind",
    "RectElement",
    "TemplateDocument",
    "TextElement",
    "TriangleElement",
    "VisualElement",
]
