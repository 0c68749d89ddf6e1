"""Unit tests for the template model and its storage helpers."""

from __future__ import annotations

import json
from typing import Any

import pytest

from construo.errors import ConstruoError, ErrorCode
from construo.models.template import (
    PAGE_BACKGROUND_ID,
    PAGE_SHADOW_ID,
    CircleElement,
    ImageElement,
    PlaceholderKind,
    RectElement,
    TemplateDocument,
    TextElement,
)
from construo.template import (
    PAGE_HEIGHT,
    PAGE_WIDTH,
    load_template,
    new_image,
    new_placeholder,
    new_text,
    page_scaffolding,
    prepare_document,
    save_template,
)


def _editor_json(**extra: Any) -> dict[str, Any]:
    """A canvas dump as the editor saves it, scaffolding included."""
    return {
        "version": "5.3.0",
        "objects": [
            {"type": "rect", "id": PAGE_SHADOW_ID, "left": 12, "top": 12, "width": 1123},
            {"type": "rect", "id": PAGE_BACKGROUND_ID, "left": 0, "top": 0, "width": 1123},
            {
                "type": "textbox",
                "text": "Certificate of Participation",
                "left": 200,
                "top": 120,
                "width": 700,
                "fontSize": 48,
                "fontFamily": "Georgia",
                "textAlign": "center",
                "charSpacing": 40,
            },
            {
                "type": "textbox",
                "text": "{Participant Name}",
                "left": 200,
                "top": 300,
                "width": 700,
                "data_type": "name",
            },
            {"type": "circle", "left": 50, "top": 50, "radius": 30, "fill": "#c0392b"},
        ],
        **extra,
    }


# ---------------------------------------------------------------------------
# TemplateDocument
# ---------------------------------------------------------------------------


class TestTemplateDocument:
    def test_scaffolding_is_dropped_on_load(self) -> None:
        doc = TemplateDocument.from_json(_editor_json())
        assert len(doc.objects) == 3
        assert not any(o.is_scaffolding for o in doc.objects)

    def test_scaffolding_never_serialised(self) -> None:
        doc = TemplateDocument.from_json(_editor_json())
        doc.objects.extend(page_scaffolding())

        ids = [o.get("id") for o in doc.to_dict()["objects"]]
        assert PAGE_BACKGROUND_ID not in ids
        assert PAGE_SHADOW_ID not in ids

    def test_round_trip_keeps_camel_case_and_unknown_attributes(self) -> None:
        doc = TemplateDocument.from_json(json.dumps(_editor_json(background="#fdf6e3")))
        data = json.loads(doc.to_json())

        title = data["objects"][0]
        assert title["fontSize"] == 48
        assert title["textAlign"] == "center"
        assert title["charSpacing"] == 40
        assert data["background"] == "#fdf6e3"
        assert data["version"] == "5.3.0"

    def test_element_types(self) -> None:
        doc = TemplateDocument.from_json(_editor_json())
        assert isinstance(doc.objects[0], TextElement)
        assert isinstance(doc.objects[2], CircleElement)
        assert doc.objects[1].placeholder_kind is PlaceholderKind.PARTICIPANT_NAME

    def test_text_elements(self) -> None:
        doc = TemplateDocument.from_json(_editor_json())
        assert [t.text for t in doc.text_elements()] == [
            "Certificate of Participation",
            "{Participant Name}",
        ]

    def test_unknown_element_type_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            TemplateDocument.from_json({"objects": [{"type": "polygon"}]})


# ---------------------------------------------------------------------------
# load_template
# ---------------------------------------------------------------------------


class TestLoadTemplate:
    def test_reads_nested_settings_location(self, site_config) -> None:
        site_config["settings"] = {"certificate_template": json.dumps(_editor_json())}
        doc = load_template(site_config)
        assert doc is not None
        assert len(doc.objects) == 3

    def test_accepts_already_parsed_json(self, site_config) -> None:
        site_config["settings"] = {"certificate_template": _editor_json()}
        assert load_template(site_config) is not None

    def test_falls_back_to_legacy_top_level_field(self, site_config) -> None:
        site_config["certificate_template"] = json.dumps(_editor_json())
        assert load_template(site_config) is not None

    def test_nested_location_wins_over_legacy(self, site_config) -> None:
        site_config["certificate_template"] = json.dumps({"objects": []})
        site_config["settings"] = {"certificate_template": json.dumps(_editor_json())}
        doc = load_template(site_config)
        assert doc is not None and len(doc.objects) == 3

    def test_absent_template_is_none(self, site_config) -> None:
        assert load_template(site_config) is None
        assert load_template(None) is None

    def test_malformed_template_raises(self, site_config) -> None:
        site_config["settings"] = {"certificate_template": "{not json"}
        with pytest.raises(ConstruoError) as exc_info:
            load_template(site_config)
        assert exc_info.value.code is ErrorCode.TEMPLATE_INVALID


# ---------------------------------------------------------------------------
# save_template
# ---------------------------------------------------------------------------


class _RecordingGateway:
    def __init__(self, site_config: dict[str, Any]) -> None:
        self.site_config = site_config
        self.updates: list[tuple[str, dict[str, Any], str | None]] = []

    async def fetch_site_config(self) -> dict[str, Any]:
        return self.site_config

    async def update_site_config_section(self, section, data, updated_by=None):
        self.updates.append((section, dict(data), updated_by))
        return {"config_key": "main"}


class TestSaveTemplate:
    async def test_merges_into_existing_settings(self, site_config) -> None:
        site_config["settings"] = {"cache_enabled": True}
        gateway = _RecordingGateway(site_config)
        doc = TemplateDocument.from_json(_editor_json())
        doc.objects.extend(page_scaffolding())

        await save_template(gateway, doc, "admin@construo.org")

        section, data, updated_by = gateway.updates[0]
        assert section == "settings"
        assert data["cache_enabled"] is True
        assert updated_by == "admin@construo.org"
        stored = data["certificate_template"]
        assert len(stored["objects"]) == 3

    async def test_saved_template_loads_back(self, site_config) -> None:
        gateway = _RecordingGateway(site_config)
        doc = TemplateDocument.from_json(_editor_json())

        await save_template(gateway, doc)

        site_config["settings"] = gateway.updates[0][1]
        loaded = load_template(site_config)
        assert loaded is not None
        assert loaded.to_dict() == doc.to_dict()


# ---------------------------------------------------------------------------
# prepare_document and factories
# ---------------------------------------------------------------------------


class TestPrepareDocument:
    def test_copy_is_independent(self) -> None:
        doc = TemplateDocument.from_json(_editor_json())
        prepared = prepare_document(doc)
        prepared.text_elements()[1].text = "Asha"
        assert doc.text_elements()[1].text == "{Participant Name}"

    def test_default_background(self) -> None:
        doc = TemplateDocument.from_json(_editor_json())
        assert prepare_document(doc).background == "#ffffff"
        assert prepare_document(doc, "#000000").background == "#000000"

    def test_existing_background_is_kept(self) -> None:
        doc = TemplateDocument.from_json(_editor_json(background="#fdf6e3"))
        assert prepare_document(doc).background == "#fdf6e3"

    def test_strips_scaffolding_added_after_load(self) -> None:
        doc = TemplateDocument.from_json(_editor_json())
        doc.objects.extend(page_scaffolding())
        assert len(prepare_document(doc).objects) == 3


class TestFactories:
    def test_placeholder_carries_token_and_kind(self) -> None:
        el = new_placeholder(PlaceholderKind.COLLEGE_NAME)
        assert el.text == "{College Name}"
        assert el.placeholder_kind is PlaceholderKind.COLLEGE_NAME
        assert el.model_dump(by_alias=True)["data_type"] == "college"

    def test_new_text_defaults(self) -> None:
        el = new_text()
        assert (el.left, el.top, el.font_size) == (100, 100, 40)

    def test_large_image_is_scaled_to_max_width(self) -> None:
        el = new_image("data:image/png;base64,AAAA", width=1200, height=600)
        assert isinstance(el, ImageElement)
        assert el.scale_x == pytest.approx(0.5)
        assert el.scaled_width == pytest.approx(600)

    def test_small_image_is_not_scaled(self) -> None:
        assert new_image("data:,", width=300, height=200).scale_x == 1

    def test_page_scaffolding(self) -> None:
        shadow, page = page_scaffolding()
        assert isinstance(page, RectElement)
        assert (page.id, page.width, page.height) == (PAGE_BACKGROUND_ID, PAGE_WIDTH, PAGE_HEIGHT)
        assert shadow.id == PAGE_SHADOW_ID
        assert shadow.is_scaffolding and page.is_scaffolding
