"""Codified extraction records and the confirmation workflow.

One ``CodifiedExtraction`` exists per source document. Items move from
``suggested``/``pending_review`` to ``confirmed`` (or ``unmatched`` when
skipped); confirming writes the label back into the alias dictionary so the
next document with the same label is a Fast Pass hit.
"""

from __future__ import annotations

import logging
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.db.models import CodifiedExtractionModel, utcnow
from lendcore.errors import InvalidStateError, NotFoundError
from lendcore.models import (
    CodifiedExtraction,
    CodifiedItem,
    ExtractionStats,
    MappingStatus,
)
from lendcore.registry.aliases import AliasLearner
from lendcore.registry.codes import CodeRegistry

logger = logging.getLogger(__name__)

_REVIEW_STATUSES = {MappingStatus.PENDING_REVIEW, MappingStatus.SUGGESTED}
_RESOLVED_STATUSES = {MappingStatus.CONFIRMED, MappingStatus.MATCHED}


class ModelRunReadiness(BaseModel):
    ready: bool
    reason: str | None = None
    unconfirmed_count: int = 0


def _to_extraction(row: CodifiedExtractionModel) -> CodifiedExtraction:
    return CodifiedExtraction.model_validate(row, from_attributes=True)


def _items_of(row: CodifiedExtractionModel) -> list[CodifiedItem]:
    return [CodifiedItem.model_validate(item) for item in row.items or []]


class ExtractionService:
    """CRUD and confirmation over ``codified_extractions``."""

    def __init__(self, session: AsyncSession, learn_aliases: bool = True):
        self.session = session
        self.learner = AliasLearner(session, enabled=learn_aliases)
        self.codes = CodeRegistry(session)

    async def create(
        self,
        document_id: str,
        items: list[CodifiedItem],
        document_name: str | None = None,
        project_id: str | None = None,
        fast_pass_completed: bool = True,
        smart_pass_completed: bool = False,
    ) -> CodifiedExtraction:
        """Persist a codified extraction, replacing the document's unmerged one.

        Raises:
            InvalidStateError: If the document's extraction is already merged
        """
        existing = await self._find_by_document(document_id)
        if existing is not None:
            if existing.merged_to_project_library:
                raise InvalidStateError(
                    f"Extraction for document {document_id} is already merged"
                )
            await self.session.delete(existing)
            await self.session.flush()

        row = CodifiedExtractionModel(
            document_id=document_id,
            document_name=document_name,
            project_id=project_id,
            fast_pass_completed=fast_pass_completed,
            smart_pass_completed=smart_pass_completed,
        )
        self._write_items(row, items)
        self.session.add(row)
        await self.session.flush()
        return _to_extraction(row)

    async def get(self, extraction_id: UUID) -> CodifiedExtraction:
        return _to_extraction(await self._get_row(extraction_id))

    async def get_by_document(self, document_id: str) -> CodifiedExtraction | None:
        row = await self._find_by_document(document_id)
        return _to_extraction(row) if row else None

    async def list_for_project(self, project_id: str) -> list[CodifiedExtraction]:
        stmt = (
            select(CodifiedExtractionModel)
            .where(CodifiedExtractionModel.project_id == project_id)
            .order_by(CodifiedExtractionModel.created_at.asc())
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_to_extraction(row) for row in rows]

    async def remove(self, extraction_id: UUID) -> None:
        row = await self._get_row(extraction_id)
        await self.session.delete(row)
        await self.session.flush()

    async def update_after_smart_pass(
        self, extraction_id: UUID, items: list[CodifiedItem]
    ) -> CodifiedExtraction:
        """Replace the item list with Smart Pass results and recompute stats."""
        row = await self._get_row(extraction_id)
        self._ensure_not_merged(row)
        self._write_items(row, items)
        row.smart_pass_completed = True
        await self.session.flush()
        return _to_extraction(row)

    async def confirm_item(
        self,
        extraction_id: UUID,
        item_id: str,
        item_code: str | None = None,
        learn_alias: bool = True,
    ) -> CodifiedExtraction:
        """Confirm one item's code.

        The code comes from ``item_code`` or, when omitted, the item's
        suggestion. A new code proposed by the classifier is registered first.
        The label is then learned as a user-confirmed alias.

        Raises:
            NotFoundError: Unknown extraction, item or code
            InvalidStateError: Merged extraction, or nothing to confirm
        """
        row = await self._get_row(extraction_id)
        self._ensure_not_merged(row)
        items = _items_of(row)

        index = next((i for i, item in enumerate(items) if item.id == item_id), None)
        if index is None:
            raise NotFoundError("Extracted item", item_id)
        item = items[index]

        code = item_code or item.suggested_code or item.item_code
        if not code:
            raise InvalidStateError(f"Item {item_id} has no code to confirm")

        await self._ensure_code(item, code)

        items[index] = item.model_copy(
            update={
                "item_code": code,
                "mapping_status": MappingStatus.CONFIRMED,
                "confidence": 1.0,
                "is_new_code": False,
            }
        )
        if learn_alias:
            await self.learner.learn(item.original_name, code)

        self._write_items(row, items, stamp_confirmed=True)
        await self.session.flush()
        return _to_extraction(row)

    async def confirm_all_suggested(
        self, extraction_id: UUID, learn_alias: bool = True
    ) -> list[CodifiedItem]:
        """Confirm every ``suggested`` item with its suggested code.

        Returns:
            The items that were confirmed by this call
        """
        row = await self._get_row(extraction_id)
        self._ensure_not_merged(row)
        items = _items_of(row)

        confirmed: list[CodifiedItem] = []
        for index, item in enumerate(items):
            if item.mapping_status != MappingStatus.SUGGESTED or not item.suggested_code:
                continue
            await self._ensure_code(item, item.suggested_code)
            items[index] = item.model_copy(
                update={
                    "item_code": item.suggested_code,
                    "mapping_status": MappingStatus.CONFIRMED,
                    "confidence": 1.0,
                    "is_new_code": False,
                }
            )
            if learn_alias:
                await self.learner.learn(item.original_name, item.suggested_code)
            confirmed.append(items[index])

        self._write_items(row, items, stamp_confirmed=True)
        await self.session.flush()
        logger.info("Confirmed %d suggested items on %s", len(confirmed), extraction_id)
        return confirmed

    async def skip_item(self, extraction_id: UUID, item_id: str) -> CodifiedExtraction:
        """Mark an item ``unmatched`` so it is never merged."""
        row = await self._get_row(extraction_id)
        self._ensure_not_merged(row)
        items = _items_of(row)

        index = next((i for i, item in enumerate(items) if item.id == item_id), None)
        if index is None:
            raise NotFoundError("Extracted item", item_id)

        items[index] = items[index].model_copy(
            update={"mapping_status": MappingStatus.UNMATCHED, "confidence": 0.0}
        )
        self._write_items(row, items, stamp_confirmed=True)
        await self.session.flush()
        return _to_extraction(row)

    async def get_items_needing_review(self, extraction_id: UUID) -> list[CodifiedItem]:
        row = await self._get_row(extraction_id)
        return [item for item in _items_of(row) if item.mapping_status in _REVIEW_STATUSES]

    async def is_ready_for_model_run(self, document_id: str) -> ModelRunReadiness:
        row = await self._find_by_document(document_id)
        if row is None:
            return ModelRunReadiness(ready=False, reason="No codified extraction found")

        if not row.is_fully_confirmed:
            unconfirmed = [
                item for item in _items_of(row) if item.mapping_status not in _RESOLVED_STATUSES
            ]
            return ModelRunReadiness(
                ready=False,
                reason=f"{len(unconfirmed)} items need confirmation",
                unconfirmed_count=len(unconfirmed),
            )
        return ModelRunReadiness(ready=True)

    async def get_confirmed_items(self, document_id: str) -> list[CodifiedItem]:
        """Confirmed or matched items that carry a code."""
        row = await self._find_by_document(document_id)
        if row is None:
            return []
        return [
            item
            for item in _items_of(row)
            if item.mapping_status in _RESOLVED_STATUSES and item.item_code
        ]

    async def _ensure_code(self, item: CodifiedItem, code: str) -> None:
        if await self.codes.get_by_code(code) is not None:
            return
        if item.is_new_code and code == item.suggested_code:
            await self.codes.create(
                code=code,
                display_name=item.suggested_code_name or item.original_name,
                category=item.category,
                data_type=item.data_type,
            )
            logger.info("Registered new code %s from classifier suggestion", code)
            return
        raise NotFoundError("Item code", code)

    @staticmethod
    def _ensure_not_merged(row: CodifiedExtractionModel) -> None:
        if row.merged_to_project_library:
            raise InvalidStateError(f"Extraction {row.id} is already merged")

    @staticmethod
    def _write_items(
        row: CodifiedExtractionModel, items: list[CodifiedItem], stamp_confirmed: bool = False
    ) -> None:
        stats = ExtractionStats.from_items(items)
        # JSON columns are reassigned whole
        row.items = [item.model_dump(mode="json") for item in items]
        row.stats = stats.model_dump()
        row.is_fully_confirmed = stats.is_fully_confirmed
        if stamp_confirmed and stats.is_fully_confirmed and row.confirmed_at is None:
            row.confirmed_at = utcnow()

    async def _find_by_document(self, document_id: str) -> CodifiedExtractionModel | None:
        stmt = (
            select(CodifiedExtractionModel)
            .where(CodifiedExtractionModel.document_id == document_id)
            .order_by(CodifiedExtractionModel.created_at.desc())
            .limit(1)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _get_row(self, extraction_id: UUID) -> CodifiedExtractionModel:
        row = await self.session.get(CodifiedExtractionModel, extraction_id)
        if row is None:
            raise NotFoundError("Codified extraction", extraction_id)
        return row
