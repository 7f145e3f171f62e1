"""Intelligence conflicts: contested knowledge items awaiting a human decision."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.db.models import IntelligenceConflictModel, KnowledgeItemModel, utcnow
from lendcore.errors import InvalidStateError, NotFoundError
from lendcore.knowledge.items import KnowledgeStore
from lendcore.models import (
    ConflictResolution,
    ConflictStatus,
    IntelligenceConflict,
    KnowledgeItem,
    KnowledgeOwner,
    KnowledgeStatus,
)

logger = logging.getLogger(__name__)


def _to_conflict(row: IntelligenceConflictModel) -> IntelligenceConflict:
    return IntelligenceConflict.model_validate(row, from_attributes=True)


class ConflictService:
    """Creates and resolves conflicts over knowledge items."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = KnowledgeStore(session)

    async def create_conflict(
        self,
        owner: KnowledgeOwner,
        field_path: str,
        description: str,
        related_item_ids: list[UUID],
        category: str | None = None,
        flag_prefix: str = "Conflict",
    ) -> IntelligenceConflict:
        """Group two or more items as contested and flag each of them.

        Raises:
            InvalidStateError: Fewer than two distinct items
            NotFoundError: An item does not exist
        """
        item_ids = list(dict.fromkeys(related_item_ids))
        if len(item_ids) < 2:
            raise InvalidStateError("A conflict needs at least two knowledge items")

        rows = [await self.store.get_row(item_id) for item_id in item_ids]

        conflict = IntelligenceConflictModel(
            owner_type=owner.owner_type.value,
            owner_id=owner.owner_id,
            field_path=field_path,
            category=category,
            description=description,
            related_item_ids=[str(item_id) for item_id in item_ids],
            status=ConflictStatus.PENDING.value,
        )
        self.session.add(conflict)

        for row in rows:
            row.status = KnowledgeStatus.FLAGGED.value
            row.flag_reason = f"{flag_prefix}: {description}"

        await self.session.flush()
        logger.info(
            "Created conflict %s on %s with %d items", conflict.id, field_path, len(rows)
        )
        return _to_conflict(conflict)

    async def get_conflicts(
        self, owner: KnowledgeOwner, status: ConflictStatus | None = None
    ) -> list[IntelligenceConflict]:
        stmt = select(IntelligenceConflictModel).where(
            IntelligenceConflictModel.owner_type == owner.owner_type.value,
            IntelligenceConflictModel.owner_id == owner.owner_id,
        )
        if status is not None:
            stmt = stmt.where(IntelligenceConflictModel.status == ConflictStatus(status).value)
        stmt = stmt.order_by(IntelligenceConflictModel.created_at)
        result = await self.session.execute(stmt)
        return [_to_conflict(row) for row in result.scalars().all()]

    async def get_pending_conflict(
        self, owner: KnowledgeOwner, field_path: str
    ) -> IntelligenceConflict | None:
        stmt = select(IntelligenceConflictModel).where(
            IntelligenceConflictModel.owner_type == owner.owner_type.value,
            IntelligenceConflictModel.owner_id == owner.owner_id,
            IntelligenceConflictModel.field_path == field_path,
            IntelligenceConflictModel.status == ConflictStatus.PENDING.value,
        )
        row = (await self.session.execute(stmt)).scalars().first()
        return _to_conflict(row) if row is not None else None

    async def get_related_items(self, conflict_id: UUID) -> list[KnowledgeItem]:
        """Related items that still exist."""
        conflict = await self._get_row(conflict_id)
        items = []
        for raw_id in conflict.related_item_ids:
            row = await self.session.get(KnowledgeItemModel, UUID(str(raw_id)))
            if row is not None:
                items.append(KnowledgeItem.model_validate(row, from_attributes=True))
        return items

    async def resolve_conflict(
        self,
        conflict_id: UUID,
        winner_id: UUID,
        resolved_by: str,
        reason: str | None = None,
    ) -> IntelligenceConflict:
        """Make ``winner_id`` the active item and supersede the rest toward it.

        Raises:
            NotFoundError: Unknown conflict
            InvalidStateError: Already resolved, or winner not part of it
        """
        conflict = await self._get_row(conflict_id)
        if conflict.status == ConflictStatus.RESOLVED.value:
            raise InvalidStateError(f"Conflict {conflict_id} is already resolved")

        related = [UUID(str(raw_id)) for raw_id in conflict.related_item_ids]
        if winner_id not in related:
            raise InvalidStateError(f"Item {winner_id} is not part of conflict {conflict_id}")

        winner = await self.store.get_row(winner_id)
        losers = []
        for item_id in related:
            if item_id == winner_id:
                continue
            row = await self.session.get(KnowledgeItemModel, item_id)
            if row is not None:
                losers.append(row)

        # Any other active item at the winner's key steps aside as well
        occupant = await self.store.find_active_row(
            KnowledgeOwner(owner_type=winner.owner_type, owner_id=winner.owner_id),
            winner.field_path,
            exclude_id=winner.id,
        )
        if occupant is not None and occupant not in losers:
            losers.append(occupant)

        if winner.chain_root_id is None:
            winner.chain_root_id = winner.id
        for row in losers:
            self.store.supersede_row(row, winner)
        await self.session.flush()

        self.store.activate_row(winner)

        conflict.status = ConflictStatus.RESOLVED.value
        conflict.resolution = ConflictResolution(
            winner_id=winner_id,
            resolved_by=resolved_by,
            resolved_at=utcnow(),
            reason=reason,
        ).model_dump(mode="json")
        await self.session.flush()

        logger.info("Resolved conflict %s in favour of %s", conflict_id, winner_id)
        return _to_conflict(conflict)

    async def _get_row(self, conflict_id: UUID) -> IntelligenceConflictModel:
        row = await self.session.get(IntelligenceConflictModel, conflict_id)
        if row is None:
            raise NotFoundError("Intelligence conflict", conflict_id)
        return row
