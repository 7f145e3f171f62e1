"""Unit tests for lendcore Pydantic models.

Tests raw value coercion, validation and derived properties.
"""

from __future__ import annotations

from uuid import uuid4

import pytest
from pydantic import ValidationError

from lendcore.models import (
    BooleanValue,
    ChecklistItem,
    ChecklistStatus,
    ClassifierSuggestion,
    CodifiedItem,
    DocumentLink,
    ExtractedItem,
    ExtractionStats,
    FieldProgress,
    FieldProgressStatus,
    KnowledgeOwner,
    ListValue,
    MappingStatus,
    NumberValue,
    OwnerType,
    TextValue,
    as_raw_value,
    raw_payload,
)


class TestRawValue:
    """Plain Python values are wrapped into the tagged RawValue union."""

    @pytest.mark.parametrize(
        "value,expected_type,payload",
        [
            (125000, NumberValue, 125000.0),
            (0.05, NumberValue, 0.05),
            ("£15,000", TextValue, "£15,000"),
            (True, BooleanValue, True),
            ([1, 2], ListValue, [1, 2]),
            ((1, 2), ListValue, [1, 2]),
            (None, TextValue, ""),
        ],
    )
    def test_as_raw_value(self, value, expected_type, payload):
        raw = as_raw_value(value)

        assert isinstance(raw, expected_type)
        assert raw.payload == payload

    def test_serialized_form_round_trips(self):
        """Test a stored ``{kind, payload}`` dict is parsed back."""
        raw = as_raw_value({"kind": "number", "payload": 12.5})

        assert isinstance(raw, NumberValue)
        assert raw.payload == 12.5

    def test_raw_payload(self):
        assert raw_payload(TextValue(payload="x")) == "x"
        assert raw_payload(7) == 7


class TestExtractedItem:
    def test_value_coerced(self):
        item = ExtractedItem(original_name="Stamp Duty", value=125000)

        assert item.value == NumberValue(payload=125000.0)
        assert item.category == "Other"

    def test_name_is_trimmed(self):
        assert ExtractedItem(original_name="  GDV ", value=1).original_name == "GDV"

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            ExtractedItem(original_name="   ", value=1)


class TestCodifiedItem:
    def test_resolved_code_prefers_item_code(self):
        item = CodifiedItem(
            original_name="SDLT", value=1, item_code="<stamp.duty>", suggested_code="<sdlt>"
        )

        assert item.resolved_code == "<stamp.duty>"

    def test_resolved_code_falls_back_to_suggestion(self):
        item = CodifiedItem(original_name="SDLT", value=1, suggested_code="<stamp.duty>")

        assert item.resolved_code == "<stamp.duty>"

    def test_ids_are_unique(self):
        assert CodifiedItem(original_name="a", value=1).id != CodifiedItem(original_name="a", value=1).id


class TestExtractionStats:
    def test_from_items(self):
        items = [
            CodifiedItem(original_name="a", value=1, mapping_status=MappingStatus.MATCHED),
            CodifiedItem(original_name="b", value=1, mapping_status=MappingStatus.SUGGESTED),
            CodifiedItem(original_name="c", value=1, mapping_status=MappingStatus.UNMATCHED),
        ]

        stats = ExtractionStats.from_items(items)

        assert stats.total == 3
        assert stats.matched == 1
        assert stats.suggested == 1
        assert stats.unmatched == 1
        assert not stats.is_fully_confirmed

    def test_fully_confirmed_without_review_items(self):
        items = [
            CodifiedItem(original_name="a", value=1, mapping_status=MappingStatus.CONFIRMED),
            CodifiedItem(original_name="b", value=1, mapping_status=MappingStatus.UNMATCHED),
        ]

        assert ExtractionStats.from_items(items).is_fully_confirmed


class TestClassifierSuggestion:
    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            ClassifierSuggestion(code="<gdv>", confidence=1.5)


class TestKnowledgeOwner:
    def test_constructors(self):
        assert KnowledgeOwner.client("c1").owner_type == OwnerType.CLIENT
        assert KnowledgeOwner.project("p1").owner_id == "p1"


class TestChecklistModels:
    def test_primary_link(self):
        item_id = uuid4()
        links = [
            DocumentLink(id=uuid4(), checklist_item_id=item_id, document_id="d1"),
            DocumentLink(id=uuid4(), checklist_item_id=item_id, document_id="d2", is_primary=True),
        ]
        item = ChecklistItem(
            id=item_id,
            owner_type=OwnerType.PROJECT,
            owner_id="p1",
            name="Valuation Report",
            category="Valuation",
            links=links,
        )

        assert item.primary_link.document_id == "d2"

    def test_field_progress_percentage(self):
        progress = FieldProgress(
            checklist_item_id=uuid4(),
            name="Appraisal",
            category="Financials",
            status=ChecklistStatus.FULFILLED,
            effective_status=FieldProgressStatus.PARTIALLY_FILLED,
            expected_fields=["a", "b", "c"],
            filled_fields=["a"],
        )

        assert progress.percentage == 33

    def test_field_progress_without_expected_fields(self):
        progress = FieldProgress(
            checklist_item_id=uuid4(),
            name="Other",
            category="Other",
            status=ChecklistStatus.MISSING,
            effective_status=FieldProgressStatus.MISSING,
        )

        assert progress.percentage == 0
