"""Apply consolidation decisions to an owner's knowledge items.

Consolidation proposals (duplicates, custom fields that belong on a canonical
path, genuine disagreements) are produced elsewhere; this module only writes
them, keeping at most one active item per field path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.db.models import KnowledgeItemModel
from lendcore.errors import InvalidStateError
from lendcore.knowledge.conflicts import ConflictService
from lendcore.knowledge.items import KnowledgeStore
from lendcore.models import ConsolidationResult, KnowledgeOwner, KnowledgeStatus

logger = logging.getLogger(__name__)


@dataclass
class DuplicateResolution:
    keep_id: UUID
    remove_ids: list[UUID] = field(default_factory=list)


@dataclass
class Reclassification:
    item_id: UUID
    field_path: str
    label: str
    category: str


@dataclass
class ConflictProposal:
    field_path: str
    category: str
    description: str
    related_item_ids: list[UUID] = field(default_factory=list)


class ConsolidationService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = KnowledgeStore(session)
        self.conflicts = ConflictService(session)

    async def apply_duplicate_resolution(self, keep_id: UUID, remove_ids: list[UUID]) -> int:
        """Supersede active duplicates toward ``keep_id``.

        Returns the number of items superseded.

        Raises:
            InvalidStateError: The item to keep is missing or not active
        """
        keep = await self.session.get(KnowledgeItemModel, keep_id)
        if keep is None or keep.status != KnowledgeStatus.ACTIVE.value:
            raise InvalidStateError("Item to keep not found or not active")
        return await self._supersede_duplicates(keep, remove_ids)

    async def apply_consolidation(
        self,
        owner: KnowledgeOwner,
        duplicates: list[DuplicateResolution] | None = None,
        reclassifications: list[Reclassification] | None = None,
        conflicts: list[ConflictProposal] | None = None,
        limit: int | None = None,
    ) -> ConsolidationResult:
        """Apply a batch of consolidation decisions.

        Each list is truncated to ``limit`` entries. Entries whose items are no
        longer active are skipped, and a conflict is not created twice for a
        field path that already has a pending one.
        """
        result = ConsolidationResult()
        duplicates = (duplicates or [])[:limit]
        reclassifications = (reclassifications or [])[:limit]
        conflicts = (conflicts or [])[:limit]

        for dup in duplicates:
            keep = await self.session.get(KnowledgeItemModel, dup.keep_id)
            if keep is None or keep.status != KnowledgeStatus.ACTIVE.value:
                continue
            result.items_archived += await self._supersede_duplicates(keep, dup.remove_ids)
            result.duplicates_resolved += 1

        for change in reclassifications:
            item = await self.session.get(KnowledgeItemModel, change.item_id)
            if item is None or item.status != KnowledgeStatus.ACTIVE.value:
                continue
            occupant = await self.store.find_active_row(
                owner, change.field_path, exclude_id=change.item_id
            )
            if occupant is not None:
                result.items_archived += 1
            await self.store.reclassify_to_canonical(
                change.item_id, change.field_path, change.category, change.label
            )
            result.items_reclassified += 1

        for proposal in conflicts:
            if await self.conflicts.get_pending_conflict(owner, proposal.field_path):
                continue
            if len(set(proposal.related_item_ids)) < 2:
                logger.warning("Skipping conflict on %s with fewer than two items", proposal.field_path)
                continue
            await self.conflicts.create_conflict(
                owner,
                field_path=proposal.field_path,
                description=proposal.description,
                related_item_ids=proposal.related_item_ids,
                category=proposal.category,
                flag_prefix="Conflict detected",
            )
            result.conflicts_created += 1

        logger.info(
            "Consolidation for %s %s: %d duplicates, %d archived, %d reclassified, %d conflicts",
            owner.owner_type.value,
            owner.owner_id,
            result.duplicates_resolved,
            result.items_archived,
            result.items_reclassified,
            result.conflicts_created,
        )
        return result

    async def _supersede_duplicates(self, keep: KnowledgeItemModel, remove_ids: list[UUID]) -> int:
        archived = 0
        for remove_id in remove_ids:
            if remove_id == keep.id:
                continue
            row = await self.session.get(KnowledgeItemModel, remove_id)
            if row is None or row.status != KnowledgeStatus.ACTIVE.value:
                continue
            self.store.supersede_row(row, keep)
            archived += 1
        await self.session.flush()
        return archived
