"""lendcore Pydantic models for type-safe data validation.

Closed vocabularies are ``str, Enum`` classes. Raw extracted values are a
tagged union (``RawValue``) so numeric normalization can branch on ``kind``
instead of probing Python types at every call site.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class DataType(str, Enum):
    """Data type of an item code / ledger value."""

    CURRENCY = "currency"
    NUMBER = "number"
    PERCENTAGE = "percentage"
    STRING = "string"


class AliasSource(str, Enum):
    """Where an alias came from. User and manual aliases outrank the rest."""

    SYSTEM_SEED = "system_seed"
    LLM_SUGGESTED = "llm_suggested"
    USER_CONFIRMED = "user_confirmed"
    MANUAL = "manual"


class MappingStatus(str, Enum):
    """Codification outcome for a single extracted item."""

    MATCHED = "matched"  # Fast Pass hit
    SUGGESTED = "suggested"  # Smart Pass, high confidence
    PENDING_REVIEW = "pending_review"  # Smart Pass, low confidence
    CONFIRMED = "confirmed"  # User confirmed
    UNMATCHED = "unmatched"  # No code (or deliberately skipped)


class LedgerAddedBy(str, Enum):
    """Origin of a ledger history entry."""

    EXTRACTION = "extraction"
    MANUAL = "manual"


class OwnerType(str, Enum):
    """Knowledge owner scope."""

    CLIENT = "client"
    PROJECT = "project"


class KnowledgeValueType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    CURRENCY = "currency"
    DATE = "date"
    PERCENTAGE = "percentage"
    ARRAY = "array"
    TEXT = "text"
    BOOLEAN = "boolean"


class KnowledgeSourceType(str, Enum):
    DOCUMENT = "document"
    MANUAL = "manual"
    AI_EXTRACTION = "ai_extraction"
    MIGRATION = "migration"
    DATA_LIBRARY = "data_library"


class KnowledgeStatus(str, Enum):
    """Lifecycle of a knowledge item. At most one ACTIVE per field-path key."""

    ACTIVE = "active"
    FLAGGED = "flagged"
    ARCHIVED = "archived"
    SUPERSEDED = "superseded"


class ConflictStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class ChecklistStatus(str, Enum):
    MISSING = "missing"
    PENDING_REVIEW = "pending_review"
    FULFILLED = "fulfilled"


class FieldProgressStatus(str, Enum):
    FULFILLED = "fulfilled"
    PARTIALLY_FILLED = "partially_filled"
    PENDING_REVIEW = "pending_review"
    MISSING = "missing"


# ---------------------------------------------------------------------------
# Raw values
# ---------------------------------------------------------------------------


class TextValue(BaseModel):
    kind: Literal["text"] = "text"
    payload: str


class NumberValue(BaseModel):
    kind: Literal["number"] = "number"
    payload: float


class BooleanValue(BaseModel):
    kind: Literal["boolean"] = "boolean"
    payload: bool


class ListValue(BaseModel):
    kind: Literal["list"] = "list"
    payload: list[Any]


RawValue = Annotated[
    Union[TextValue, NumberValue, BooleanValue, ListValue],
    Field(discriminator="kind"),
]

_raw_value_adapter: TypeAdapter = TypeAdapter(RawValue)


def as_raw_value(value: Any) -> TextValue | NumberValue | BooleanValue | ListValue:
    """Wrap a plain Python value (or a serialized ``{kind, payload}``) as RawValue.

    ``None`` becomes empty text so it normalizes to 0 downstream.
    """
    if isinstance(value, (TextValue, NumberValue, BooleanValue, ListValue)):
        return value
    if isinstance(value, dict) and "kind" in value and "payload" in value:
        return _raw_value_adapter.validate_python(value)
    if value is None:
        return TextValue(payload="")
    # bool is an int subclass; check it first
    if isinstance(value, bool):
        return BooleanValue(payload=value)
    if isinstance(value, (int, float, Decimal)):
        return NumberValue(payload=float(value))
    if isinstance(value, (list, tuple)):
        return ListValue(payload=list(value))
    return TextValue(payload=str(value))


def raw_payload(value: Any) -> Any:
    """Unwrap a RawValue to its plain payload (pass-through for plain values)."""
    if isinstance(value, (TextValue, NumberValue, BooleanValue, ListValue)):
        return value.payload
    return value


class _RawValueModel(BaseModel):
    """Mixin coercing ``value`` fields from plain Python values."""

    @field_validator("value", mode="before", check_fields=False)
    @classmethod
    def coerce_value(cls, v: Any) -> Any:
        return as_raw_value(v)


# ---------------------------------------------------------------------------
# Canonical registry
# ---------------------------------------------------------------------------


class ItemCode(BaseModel):
    """Canonical financial line-item identifier (``<category.item>``)."""

    id: UUID = Field(default_factory=uuid4)
    code: str
    display_name: str
    category: str
    data_type: DataType = DataType.CURRENCY
    description: str | None = None
    is_active: bool = True
    is_system_default: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "code": "<stamp.duty>",
                "display_name": "Stamp Duty",
                "category": "Purchase Costs",
                "data_type": "currency",
            }
        }


class ItemCodeAlias(BaseModel):
    """Alternative label mapped onto a canonical code."""

    id: UUID = Field(default_factory=uuid4)
    alias: str
    alias_normalized: str
    canonical_code_id: UUID
    canonical_code: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    source: AliasSource = AliasSource.MANUAL
    usage_count: int = 0


class ItemCategory(BaseModel):
    """Grouping used for UI and as classifier context."""

    id: UUID = Field(default_factory=uuid4)
    name: str
    normalized_name: str
    description: str = ""
    examples: list[str] = Field(default_factory=list)
    display_order: int = 999
    is_system: bool = False


class AliasBulkResult(BaseModel):
    created: int = 0
    updated: int = 0
    skipped: int = 0


# ---------------------------------------------------------------------------
# Codification
# ---------------------------------------------------------------------------


class ExtractedItem(_RawValueModel):
    """A line item as produced by document extraction (pre-codification)."""

    original_name: str
    value: RawValue
    data_type: DataType = DataType.CURRENCY
    category: str = "Other"
    is_subtotal: bool = False
    subtotal_reason: str | None = None

    @field_validator("original_name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("original_name must not be empty")
        return v.strip()


class CodifiedItem(_RawValueModel):
    """An extracted item after Fast/Smart Pass."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    original_name: str
    value: RawValue
    data_type: DataType = DataType.CURRENCY
    category: str = "Other"
    mapping_status: MappingStatus = MappingStatus.UNMATCHED
    item_code: str | None = None
    suggested_code: str | None = None
    suggested_code_name: str | None = None
    confidence: float = 0.0
    matched_alias: str | None = None
    normalization_confidence: float | None = None
    reasoning: str | None = None
    is_new_code: bool = False
    is_subtotal: bool = False
    subtotal_reason: str | None = None

    @property
    def resolved_code(self) -> str | None:
        """Code that would be merged: confirmed code first, then suggestion."""
        return self.item_code or self.suggested_code


class ExtractionStats(BaseModel):
    total: int = 0
    matched: int = 0
    suggested: int = 0
    pending_review: int = 0
    confirmed: int = 0
    unmatched: int = 0

    @classmethod
    def from_items(cls, items: list[CodifiedItem]) -> ExtractionStats:
        counts = {status: 0 for status in MappingStatus}
        for item in items:
            counts[item.mapping_status] += 1
        return cls(
            total=len(items),
            matched=counts[MappingStatus.MATCHED],
            suggested=counts[MappingStatus.SUGGESTED],
            pending_review=counts[MappingStatus.PENDING_REVIEW],
            confirmed=counts[MappingStatus.CONFIRMED],
            unmatched=counts[MappingStatus.UNMATCHED],
        )

    @property
    def is_fully_confirmed(self) -> bool:
        return self.pending_review == 0 and self.suggested == 0


class CodifiedExtraction(BaseModel):
    """One codified extraction per source document."""

    id: UUID = Field(default_factory=uuid4)
    document_id: str
    document_name: str | None = None
    project_id: str | None = None
    items: list[CodifiedItem] = Field(default_factory=list)
    stats: ExtractionStats = Field(default_factory=ExtractionStats)
    is_fully_confirmed: bool = False
    confirmed_at: datetime | None = None
    fast_pass_completed: bool = False
    smart_pass_completed: bool = False
    merged_to_project_library: bool = False
    merged_at: datetime | None = None
    created_at: datetime | None = None


class FastPassResult(BaseModel):
    matched: bool
    code: str | None = None
    alias_id: UUID | None = None
    matched_alias: str | None = None
    confidence: float = 0.0


class CodeVocabularyEntry(BaseModel):
    """An active code plus a handful of aliases, shown to the classifier."""

    code: str
    display_name: str
    category: str
    data_type: DataType = DataType.CURRENCY
    aliases: list[str] = Field(default_factory=list)


class CategoryVocabularyEntry(BaseModel):
    name: str
    description: str = ""
    examples: list[str] = Field(default_factory=list)


class ClassificationRequest(BaseModel):
    label: str
    category: str
    value: Any = None
    categories: list[CategoryVocabularyEntry] = Field(default_factory=list)
    codes: list[CodeVocabularyEntry] = Field(default_factory=list)


class ClassifierSuggestion(BaseModel):
    """Single best candidate returned by an external classifier."""

    code: str
    confidence: float = Field(ge=0.0, le=1.0)
    display_name: str | None = None
    category: str | None = None
    data_type: DataType | None = None
    is_new_code: bool = False
    reasoning: str | None = None


class SmartPassResult(BaseModel):
    status: MappingStatus
    suggestion: ClassifierSuggestion | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Data Library
# ---------------------------------------------------------------------------


class ValueHistoryEntry(_RawValueModel):
    value: RawValue
    value_normalized: float
    source_document_id: str | None = None
    source_document_name: str | None = None
    source_extraction_id: UUID | None = None
    original_name: str | None = None
    added_at: datetime
    added_by: LedgerAddedBy = LedgerAddedBy.EXTRACTION
    is_current_value: bool = False
    was_reverted: bool = False
    note: str | None = None


class ProjectDataItem(_RawValueModel):
    """Data Library row, or a synthetic category total when ``is_computed``."""

    id: UUID | None = None
    project_id: str
    item_code: str
    category: str
    original_name: str
    current_value: RawValue
    current_value_normalized: float
    current_data_type: DataType = DataType.CURRENCY
    current_source_document_id: str | None = None
    current_source_document_name: str | None = None
    last_updated_at: datetime | None = None
    last_updated_by: LedgerAddedBy = LedgerAddedBy.EXTRACTION
    has_multiple_sources: bool = False
    value_variance: float | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    deleted_reason: str | None = None
    manual_override_note: str | None = None
    is_subtotal: bool = False
    subtotal_reason: str | None = None
    value_history: list[ValueHistoryEntry] = Field(default_factory=list)

    # Virtual total markers (never persisted as computed)
    is_computed: bool = False
    computed_from_category: str | None = None
    computed_total: float | None = None
    computed_item_count: int | None = None

    @field_validator("current_value", mode="before")
    @classmethod
    def coerce_current_value(cls, v: Any) -> Any:
        return as_raw_value(v)


class MergeResult(BaseModel):
    merged: int = 0
    updated: int = 0
    created: int = 0


class RevertResult(BaseModel):
    reverted: int = 0
    deleted: int = 0


class LibraryStats(BaseModel):
    total_items: int = 0
    deleted_items: int = 0
    multi_source_items: int = 0
    manual_overrides: int = 0
    total_documents: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)


class PendingExtractions(BaseModel):
    """Codification backlog for a project."""

    total_extractions: int = 0
    unconfirmed_count: int = 0
    unconfirmed_item_count: int = 0
    pending_merge_count: int = 0
    pending_merge_item_count: int = 0
    fully_merged_count: int = 0

    @property
    def has_unconfirmed(self) -> bool:
        return self.unconfirmed_count > 0

    @property
    def has_pending_merge(self) -> bool:
        return self.pending_merge_count > 0


class ProjectLibrary(BaseModel):
    project_id: str
    items: list[ProjectDataItem] = Field(default_factory=list)
    totals: list[ProjectDataItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Knowledge
# ---------------------------------------------------------------------------


class KnowledgeOwner(BaseModel):
    owner_type: OwnerType
    owner_id: str

    @classmethod
    def client(cls, client_id: str) -> KnowledgeOwner:
        return cls(owner_type=OwnerType.CLIENT, owner_id=client_id)

    @classmethod
    def project(cls, project_id: str) -> KnowledgeOwner:
        return cls(owner_type=OwnerType.PROJECT, owner_id=project_id)


class KnowledgeItemInput(BaseModel):
    """Write payload for ``add_item`` / ``bulk_add_items``."""

    field_path: str
    value: Any
    value_type: KnowledgeValueType = KnowledgeValueType.STRING
    label: str | None = None
    category: str | None = None
    is_canonical: bool = True
    source_type: KnowledgeSourceType = KnowledgeSourceType.MANUAL
    source_document_id: str | None = None
    source_document_name: str | None = None
    source_text: str | None = None
    original_label: str | None = None
    match_confidence: float | None = None
    normalization_confidence: float | None = None
    added_by: str | None = None
    tags: list[str] = Field(default_factory=list)


class KnowledgeItem(BaseModel):
    id: UUID
    owner_type: OwnerType
    owner_id: str
    field_path: str
    is_canonical: bool = True
    category: str
    label: str
    value: Any = None
    value_type: KnowledgeValueType = KnowledgeValueType.STRING
    source_type: KnowledgeSourceType = KnowledgeSourceType.MANUAL
    source_document_id: str | None = None
    source_document_name: str | None = None
    source_text: str | None = None
    original_label: str | None = None
    match_confidence: float | None = None
    normalization_confidence: float | None = None
    added_by: str | None = None
    status: KnowledgeStatus = KnowledgeStatus.ACTIVE
    superseded_by: UUID | None = None
    chain_root_id: UUID | None = None
    flag_reason: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BulkAddResult(BaseModel):
    added: int = 0
    superseded: int = 0
    skipped: int = 0


class ConflictResolution(BaseModel):
    winner_id: UUID
    resolved_by: str
    resolved_at: datetime
    reason: str | None = None


class IntelligenceConflict(BaseModel):
    id: UUID
    owner_type: OwnerType
    owner_id: str
    field_path: str
    category: str | None = None
    description: str
    related_item_ids: list[UUID]
    status: ConflictStatus = ConflictStatus.PENDING
    resolution: ConflictResolution | None = None
    created_at: datetime | None = None


class ConsolidationResult(BaseModel):
    duplicates_resolved: int = 0
    items_archived: int = 0
    items_reclassified: int = 0
    conflicts_created: int = 0


class DocumentLink(BaseModel):
    id: UUID
    checklist_item_id: UUID
    document_id: str
    document_name: str | None = None
    is_primary: bool = False
    linked_by: str | None = None
    linked_at: datetime | None = None


class ChecklistItem(BaseModel):
    id: UUID
    owner_type: OwnerType
    owner_id: str
    template_name: str | None = None
    name: str
    category: str
    description: str | None = None
    phase_required: str | None = None
    priority: str = "required"
    order: int = 0
    is_custom: bool = False
    status: ChecklistStatus = ChecklistStatus.MISSING
    matching_document_types: list[str] = Field(default_factory=list)
    suggested_document_id: str | None = None
    suggested_document_name: str | None = None
    suggestion_confidence: float | None = None
    links: list[DocumentLink] = Field(default_factory=list)

    @property
    def primary_link(self) -> DocumentLink | None:
        return next((link for link in self.links if link.is_primary), None)


class ChecklistSummary(BaseModel):
    total: int = 0
    fulfilled: int = 0
    pending_review: int = 0
    missing: int = 0
    completion_percent: float = 0.0


class FieldProgress(BaseModel):
    checklist_item_id: UUID
    name: str
    category: str
    priority: str = "required"
    status: ChecklistStatus
    effective_status: FieldProgressStatus
    expected_fields: list[str] = Field(default_factory=list)
    filled_fields: list[str] = Field(default_factory=list)
    missing_fields: list[str] = Field(default_factory=list)

    @property
    def percentage(self) -> int:
        if not self.expected_fields:
            return 0
        return round(len(self.filled_fields) / len(self.expected_fields) * 100)


class FieldProgressSummary(BaseModel):
    total: int = 0
    fulfilled: int = 0
    partially_filled: int = 0
    missing: int = 0
    total_expected_fields: int = 0
    total_filled_fields: int = 0


class FieldProgressReport(BaseModel):
    items: list[FieldProgress] = Field(default_factory=list)
    summary: FieldProgressSummary = Field(default_factory=FieldProgressSummary)


class MigrationResult(BaseModel):
    """Outcome of migrating one owner's legacy intelligence payload."""

    owner_type: OwnerType
    owner_id: str
    added: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)
    dry_run: bool = False


class MigrationSummary(BaseModel):
    clients_migrated: int = 0
    projects_migrated: int = 0
    items_added: int = 0
    items_skipped: int = 0
    already_migrated: int = 0
    errors: list[str] = Field(default_factory=list)
    dry_run: bool = False


# ---------------------------------------------------------------------------
# Template population
# ---------------------------------------------------------------------------


class PopulationItem(BaseModel):
    """One value offered to the template populator."""

    item_code: str
    original_name: str
    value: Any = None
    data_type: DataType = DataType.CURRENCY
    category: str = "Other"
    is_computed: bool = False


class OverflowReport(BaseModel):
    """Items of a category that did not fit its fallback slots."""

    sheet: str
    category: str
    set_number: int | None = None
    slots: int = 0
    items: int = 0
    overflow_items: list[PopulationItem] = Field(default_factory=list)


class PopulationStats(BaseModel):
    placeholders_found: int = 0
    placeholders_filled: int = 0
    fallback_slots_filled: int = 0
    placeholders_cleared: int = 0


class PopulationResult(BaseModel):
    sheets: dict[str, list[list[Any]]] = Field(default_factory=dict)
    matched: list[str] = Field(default_factory=list)
    unmatched: list[str] = Field(default_factory=list)
    overflow: list[OverflowReport] = Field(default_factory=list)
    stats: PopulationStats = Field(default_factory=PopulationStats)
