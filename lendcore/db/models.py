"""SQLAlchemy async database models for lendcore.

Invariants enforced in the schema:
- one alias per normalized alias string
- one Data Library row per (project_id, item_code)
- at most one current history entry per Data Library row
- at most one active knowledge item per (owner_type, owner_id, field_path)
- at most one primary document link per checklist item
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so keep everything naive)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# ---------------------------------------------------------------------------
# Canonical registry
# ---------------------------------------------------------------------------


class ItemCategoryModel(Base):
    """Item category (grouping + classifier context)."""

    __tablename__ = "item_categories"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    examples: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=999, nullable=False)
    is_system: Mapped[bool] = mapped_column(default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class ItemCodeModel(Base):
    """Canonical item code (``<category.item>``)."""

    __tablename__ = "item_codes"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    data_type: Mapped[str] = mapped_column(Text, nullable=False, default="currency")
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False, index=True)
    is_system_default: Mapped[bool] = mapped_column(default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class ItemCodeAliasModel(Base):
    """Alias dictionary row: normalized label -> canonical code."""

    __tablename__ = "item_code_aliases"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    alias: Mapped[str] = mapped_column(Text, nullable=False)
    alias_normalized: Mapped[str] = mapped_column(Text, nullable=False)
    canonical_code_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("item_codes.id"), nullable=False, index=True
    )
    canonical_code: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    source: Mapped[str] = mapped_column(Text, nullable=False, default="manual")
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_alias_normalized", "alias_normalized", unique=True),  # O(1) lookup
    )


# ---------------------------------------------------------------------------
# Codification
# ---------------------------------------------------------------------------


class CodifiedExtractionModel(Base):
    """Codified extraction for one source document.

    ``items`` and ``stats`` are JSON snapshots of the Pydantic models and are
    always reassigned whole (no in-place mutation tracking).
    """

    __tablename__ = "codified_extractions"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    document_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    document_name: Mapped[str | None] = mapped_column(Text)
    project_id: Mapped[str | None] = mapped_column(Text, index=True)

    items: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    stats: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    is_fully_confirmed: Mapped[bool] = mapped_column(default=False, nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    fast_pass_completed: Mapped[bool] = mapped_column(default=False, nullable=False)
    smart_pass_completed: Mapped[bool] = mapped_column(default=False, nullable=False)
    merged_to_project_library: Mapped[bool] = mapped_column(
        default=False, nullable=False, index=True
    )
    merged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Data Library
# ---------------------------------------------------------------------------


class ProjectDataItemModel(Base):
    """Per-project ledger row keyed by (project_id, item_code)."""

    __tablename__ = "project_data_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    item_code: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    original_name: Mapped[str] = mapped_column(Text, nullable=False)

    current_value: Mapped[dict] = mapped_column(JSON, nullable=False)
    current_value_normalized: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    current_data_type: Mapped[str] = mapped_column(Text, nullable=False, default="currency")
    current_source_document_id: Mapped[str | None] = mapped_column(Text)
    current_source_document_name: Mapped[str | None] = mapped_column(Text)
    last_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    last_updated_by: Mapped[str] = mapped_column(Text, nullable=False, default="extraction")

    has_multiple_sources: Mapped[bool] = mapped_column(default=False, nullable=False)
    value_variance: Mapped[float | None] = mapped_column(Float)

    is_deleted: Mapped[bool] = mapped_column(default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    deleted_reason: Mapped[str | None] = mapped_column(Text)
    manual_override_note: Mapped[str | None] = mapped_column(Text)

    is_subtotal: Mapped[bool] = mapped_column(default=False, nullable=False)
    subtotal_reason: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("project_id", "item_code", name="uq_project_item_code"),
        Index("idx_project_data_category", "project_id", "category"),
    )


class ProjectDataHistoryModel(Base):
    """Append-only value history for a ledger row, ordered by ``position``."""

    __tablename__ = "project_data_history"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    data_item_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("project_data_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    value: Mapped[dict] = mapped_column(JSON, nullable=False)
    value_normalized: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    source_document_id: Mapped[str | None] = mapped_column(Text, index=True)
    source_document_name: Mapped[str | None] = mapped_column(Text)
    source_extraction_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    original_name: Mapped[str | None] = mapped_column(Text)
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    added_by: Mapped[str] = mapped_column(Text, nullable=False, default="extraction")
    is_current_value: Mapped[bool] = mapped_column(default=False, nullable=False)
    was_reverted: Mapped[bool] = mapped_column(default=False, nullable=False)
    note: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("data_item_id", "position", name="uq_history_position"),
        # CRITICAL: at most one current entry per ledger row
        Index(
            "idx_history_one_current",
            "data_item_id",
            unique=True,
            postgresql_where=text("is_current_value = true"),
            sqlite_where=text("is_current_value = 1"),
        ),
    )


# ---------------------------------------------------------------------------
# Knowledge
# ---------------------------------------------------------------------------


class KnowledgeItemModel(Base):
    """Field-path keyed intelligence value with supersede chain."""

    __tablename__ = "knowledge_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    owner_type: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    field_path: Mapped[str] = mapped_column(Text, nullable=False)
    is_canonical: Mapped[bool] = mapped_column(default=True, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[str] = mapped_column(Text, nullable=False)

    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    value_type: Mapped[str] = mapped_column(Text, nullable=False, default="string")

    # Provenance
    source_type: Mapped[str] = mapped_column(Text, nullable=False, default="manual")
    source_document_id: Mapped[str | None] = mapped_column(Text, index=True)
    source_document_name: Mapped[str | None] = mapped_column(Text)
    source_text: Mapped[str | None] = mapped_column(Text)
    original_label: Mapped[str | None] = mapped_column(Text)
    match_confidence: Mapped[float | None] = mapped_column(Float)
    normalization_confidence: Mapped[float | None] = mapped_column(Float)
    added_by: Mapped[str | None] = mapped_column(Text)

    status: Mapped[str] = mapped_column(Text, nullable=False, default="active")
    superseded_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True))
    chain_root_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), index=True)
    flag_reason: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_knowledge_owner", "owner_type", "owner_id"),
        Index("idx_knowledge_owner_field", "owner_type", "owner_id", "field_path"),
        Index("idx_knowledge_owner_category", "owner_type", "owner_id", "category"),
        # CRITICAL: at most one active item per (owner, field_path)
        Index(
            "idx_knowledge_one_active",
            "owner_type",
            "owner_id",
            "field_path",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )


class IntelligenceConflictModel(Base):
    """Group of contested knowledge items under one field path."""

    __tablename__ = "intelligence_conflicts"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    owner_type: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    field_path: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    related_item_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending", index=True)
    resolution: Mapped[dict | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_conflict_owner_field", "owner_type", "owner_id", "field_path"),
    )


class KnowledgeChecklistItemModel(Base):
    """Requirement checklist entry for a client or project."""

    __tablename__ = "knowledge_checklist_items"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    owner_type: Mapped[str] = mapped_column(Text, nullable=False)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    template_name: Mapped[str | None] = mapped_column(Text)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    phase_required: Mapped[str | None] = mapped_column(Text)
    priority: Mapped[str] = mapped_column(Text, nullable=False, default="required")
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_custom: Mapped[bool] = mapped_column(default=False, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="missing")
    matching_document_types: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    suggested_document_id: Mapped[str | None] = mapped_column(Text)
    suggested_document_name: Mapped[str | None] = mapped_column(Text)
    suggestion_confidence: Mapped[float | None] = mapped_column(Float)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_checklist_owner", "owner_type", "owner_id"),
        Index("idx_checklist_owner_category", "owner_type", "owner_id", "category"),
    )


class KnowledgeChecklistLinkModel(Base):
    """Many-to-many link between checklist items and documents."""

    __tablename__ = "knowledge_checklist_links"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    checklist_item_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("knowledge_checklist_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    document_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    document_name: Mapped[str | None] = mapped_column(Text)
    is_primary: Mapped[bool] = mapped_column(default=False, nullable=False)
    linked_by: Mapped[str | None] = mapped_column(Text)
    linked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("checklist_item_id", "document_id", name="uq_checklist_link"),
        Index(
            "idx_checklist_one_primary",
            "checklist_item_id",
            unique=True,
            postgresql_where=text("is_primary = true"),
            sqlite_where=text("is_primary = 1"),
        ),
    )
