"""Knowledge items: field-path keyed intelligence with supersede chains.

At most one ``active`` item exists per ``(owner, field_path)``. Writing a
different value supersedes the current item and links it to its replacement
through ``superseded_by``; writing an identical value is skipped. Every item
in a chain shares ``chain_root_id`` so history is one indexed lookup.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.db.models import KnowledgeItemModel
from lendcore.errors import NotFoundError
from lendcore.knowledge.paths import get_category_from_path, get_label_from_path
from lendcore.models import (
    BulkAddResult,
    KnowledgeItem,
    KnowledgeItemInput,
    KnowledgeOwner,
    KnowledgeStatus,
)

logger = logging.getLogger(__name__)


def canonical_json(value: Any) -> str:
    """Stable serialization used for structural value comparison."""
    return json.dumps(value, sort_keys=True, default=str)


def values_equal(left: Any, right: Any) -> bool:
    return canonical_json(left) == canonical_json(right)


def to_knowledge_item(row: KnowledgeItemModel) -> KnowledgeItem:
    return KnowledgeItem.model_validate(row, from_attributes=True)


class KnowledgeStore:
    """Reads and writes knowledge items for clients and projects."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_item(self, owner: KnowledgeOwner, data: KnowledgeItemInput) -> KnowledgeItem:
        """Write a value at ``data.field_path``.

        Returns the existing item unchanged when its value is identical.
        """
        item, _ = await self._write(owner, data)
        return item

    async def bulk_add_items(
        self,
        owner: KnowledgeOwner,
        items: list[KnowledgeItemInput],
        limit: int | None = None,
    ) -> BulkAddResult:
        """Write many values, processing at most ``limit`` of them."""
        result = BulkAddResult()
        batch = items if limit is None else items[:limit]

        for data in batch:
            _, outcome = await self._write(owner, data)
            if outcome == "skipped":
                result.skipped += 1
                continue
            if outcome == "superseded":
                result.superseded += 1
            result.added += 1

        logger.info(
            "Bulk add for %s %s: %d added, %d superseded, %d skipped",
            owner.owner_type.value,
            owner.owner_id,
            result.added,
            result.superseded,
            result.skipped,
        )
        return result

    async def update_item(
        self, item_id: UUID, value: Any, updated_by: str | None = None
    ) -> KnowledgeItem:
        """Edit a value in place (no new version)."""
        row = await self.get_row(item_id)
        row.value = value
        if updated_by is not None:
            row.added_by = updated_by
        await self.session.flush()
        return to_knowledge_item(row)

    async def archive_item(self, item_id: UUID) -> KnowledgeItem:
        row = await self.get_row(item_id)
        row.status = KnowledgeStatus.ARCHIVED.value
        await self.session.flush()
        return to_knowledge_item(row)

    async def flag_item(self, item_id: UUID, reason: str) -> KnowledgeItem:
        row = await self.get_row(item_id)
        row.status = KnowledgeStatus.FLAGGED.value
        row.flag_reason = reason
        await self.session.flush()
        return to_knowledge_item(row)

    async def unflag_item(self, item_id: UUID) -> KnowledgeItem:
        """Return a flagged item to ``active``.

        Any other active item at the same key is superseded by this one.
        """
        row = await self.get_row(item_id)
        occupant = await self.find_active_row(
            KnowledgeOwner(owner_type=row.owner_type, owner_id=row.owner_id),
            row.field_path,
            exclude_id=row.id,
        )
        if occupant is not None:
            self.supersede_row(occupant, row)
            await self.session.flush()
        self.activate_row(row)
        await self.session.flush()
        return to_knowledge_item(row)

    async def reclassify_to_canonical(
        self, item_id: UUID, field_path: str, category: str, label: str
    ) -> KnowledgeItem:
        """Move an item to a canonical field path.

        An active item already at the destination is superseded by the moved
        item first.
        """
        row = await self.get_row(item_id)
        previous_path = row.field_path
        occupant = await self.find_active_row(
            KnowledgeOwner(owner_type=row.owner_type, owner_id=row.owner_id),
            field_path,
            exclude_id=row.id,
        )
        if occupant is not None:
            self.supersede_row(occupant, row)
            await self.session.flush()

        row.field_path = field_path
        row.category = category
        row.label = label
        row.is_canonical = True
        await self.session.flush()

        logger.info(
            "Reclassified knowledge item %s: %s -> %s%s",
            item_id,
            previous_path,
            field_path,
            " (superseded existing)" if occupant is not None else "",
        )
        return to_knowledge_item(row)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_item(self, item_id: UUID) -> KnowledgeItem:
        return to_knowledge_item(await self.get_row(item_id))

    async def get_items(
        self,
        owner: KnowledgeOwner,
        category: str | None = None,
        include_inactive: bool = False,
    ) -> list[KnowledgeItem]:
        """Items of an owner sorted by category, then field path.

        Without ``include_inactive`` only ``active`` and ``flagged`` items are
        returned.
        """
        stmt = select(KnowledgeItemModel).where(*self._owner_clause(owner))
        if category is not None:
            stmt = stmt.where(KnowledgeItemModel.category == category)
        if not include_inactive:
            stmt = stmt.where(
                KnowledgeItemModel.status.in_(
                    [KnowledgeStatus.ACTIVE.value, KnowledgeStatus.FLAGGED.value]
                )
            )
        stmt = stmt.order_by(KnowledgeItemModel.category, KnowledgeItemModel.field_path)
        result = await self.session.execute(stmt)
        return [to_knowledge_item(row) for row in result.scalars().all()]

    async def get_item_at_path(
        self, owner: KnowledgeOwner, field_path: str
    ) -> KnowledgeItem | None:
        """The active item at a key, if any."""
        row = await self.find_active_row(owner, field_path)
        return to_knowledge_item(row) if row is not None else None

    async def get_field_history(
        self, owner: KnowledgeOwner, field_path: str
    ) -> list[KnowledgeItem]:
        """Every version of a field, active first, then newest first.

        Includes chain members that were recorded under another path before a
        reclassification.
        """
        roots_stmt = select(KnowledgeItemModel.chain_root_id).where(
            *self._owner_clause(owner), KnowledgeItemModel.field_path == field_path
        )
        roots = {root for root in (await self.session.execute(roots_stmt)).scalars() if root}

        conditions = [KnowledgeItemModel.field_path == field_path]
        if roots:
            conditions.append(KnowledgeItemModel.chain_root_id.in_(roots))
        stmt = select(KnowledgeItemModel).where(*self._owner_clause(owner), or_(*conditions))
        rows = (await self.session.execute(stmt)).scalars().all()

        rows = sorted(rows, key=lambda r: r.created_at, reverse=True)
        rows.sort(key=lambda r: r.status != KnowledgeStatus.ACTIVE.value)
        return [to_knowledge_item(row) for row in rows]

    async def has_field_history(self, owner: KnowledgeOwner, field_path: str) -> bool:
        stmt = (
            select(KnowledgeItemModel.id)
            .where(
                *self._owner_clause(owner),
                KnowledgeItemModel.field_path == field_path,
                KnowledgeItemModel.status == KnowledgeStatus.SUPERSEDED.value,
            )
            .limit(1)
        )
        return (await self.session.execute(stmt)).first() is not None

    async def has_items(self, owner: KnowledgeOwner) -> bool:
        stmt = select(KnowledgeItemModel.id).where(*self._owner_clause(owner)).limit(1)
        return (await self.session.execute(stmt)).first() is not None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _write(
        self, owner: KnowledgeOwner, data: KnowledgeItemInput
    ) -> tuple[KnowledgeItem, str]:
        existing = await self.find_active_row(owner, data.field_path)
        if existing is not None and values_equal(existing.value, data.value):
            logger.debug("Skipping identical value at %s", data.field_path)
            return to_knowledge_item(existing), "skipped"

        row = KnowledgeItemModel(
            id=uuid4(),
            owner_type=owner.owner_type.value,
            owner_id=owner.owner_id,
            field_path=data.field_path,
            is_canonical=data.is_canonical,
            category=data.category or get_category_from_path(data.field_path),
            label=data.label or get_label_from_path(data.field_path),
            value=data.value,
            value_type=data.value_type.value,
            source_type=data.source_type.value,
            source_document_id=data.source_document_id,
            source_document_name=data.source_document_name,
            source_text=data.source_text,
            original_label=data.original_label,
            match_confidence=data.match_confidence,
            normalization_confidence=data.normalization_confidence,
            added_by=data.added_by,
            tags=list(data.tags),
            status=KnowledgeStatus.ACTIVE.value,
        )

        outcome = "added"
        if existing is not None:
            self.supersede_row(existing, row)
            # Old row must leave 'active' before the new one is inserted
            await self.session.flush()
            outcome = "superseded"
        else:
            row.chain_root_id = row.id

        self.session.add(row)
        await self.session.flush()
        return to_knowledge_item(row), outcome

    @staticmethod
    def supersede_row(old: KnowledgeItemModel, new: KnowledgeItemModel) -> None:
        old.status = KnowledgeStatus.SUPERSEDED.value
        old.superseded_by = new.id
        old.flag_reason = None
        if new.chain_root_id is None:
            new.chain_root_id = old.chain_root_id or old.id
        else:
            old.chain_root_id = new.chain_root_id

    @staticmethod
    def activate_row(row: KnowledgeItemModel) -> None:
        """Make ``row`` the head of its chain (it no longer points anywhere)."""
        row.status = KnowledgeStatus.ACTIVE.value
        row.superseded_by = None
        row.flag_reason = None
        if row.chain_root_id is None:
            row.chain_root_id = row.id

    async def find_active_row(
        self, owner: KnowledgeOwner, field_path: str, exclude_id: UUID | None = None
    ) -> KnowledgeItemModel | None:
        stmt = select(KnowledgeItemModel).where(
            *self._owner_clause(owner),
            KnowledgeItemModel.field_path == field_path,
            KnowledgeItemModel.status == KnowledgeStatus.ACTIVE.value,
        )
        if exclude_id is not None:
            stmt = stmt.where(KnowledgeItemModel.id != exclude_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_row(self, item_id: UUID) -> KnowledgeItemModel:
        row = await self.session.get(KnowledgeItemModel, item_id)
        if row is None:
            raise NotFoundError("Knowledge item", item_id)
        return row

    @staticmethod
    def _owner_clause(owner: KnowledgeOwner) -> tuple:
        return (
            KnowledgeItemModel.owner_type == owner.owner_type.value,
            KnowledgeItemModel.owner_id == owner.owner_id,
        )


async def add_knowledge_item(
    session: AsyncSession, owner: KnowledgeOwner, data: KnowledgeItemInput
) -> KnowledgeItem:
    """Convenience function to write one knowledge item."""
    return await KnowledgeStore(session).add_item(owner, data)
