"""Project Data Library: versioned, audit-trailed ledger of codified values.

Every ``(project_id, item_code)`` row owns an append-only history. Exactly one
history entry is current and the row's ``current_*`` fields mirror it. Rows are
soft-deleted, never removed, except category total overrides which are cleared
by hard delete.

Merging an extraction is idempotent: the extraction is stamped
``merged_to_project_library`` and a second merge is a no-op.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.canonical.normalize import get_category_total_code, normalize_numeric
from lendcore.db.models import (
    CodifiedExtractionModel,
    ProjectDataHistoryModel,
    ProjectDataItemModel,
    utcnow,
)
from lendcore.errors import InvalidStateError, NotFoundError
from lendcore.models import (
    CodifiedItem,
    DataType,
    LedgerAddedBy,
    LibraryStats,
    MappingStatus,
    MergeResult,
    PendingExtractions,
    ProjectDataItem,
    RevertResult,
    ValueHistoryEntry,
    as_raw_value,
)

logger = logging.getLogger(__name__)

MANUAL_OVERRIDE_SOURCE = "Manual Override"
MANUAL_ENTRY_SOURCE = "Manual Entry"


def compute_variance(values: list[float]) -> float | None:
    """Spread of values as a percentage of the minimum.

    None for a single value or when the minimum is zero.
    """
    if len(values) < 2:
        return None
    low, high = min(values), max(values)
    if low == 0:
        return None
    return (high - low) / low * 100


def _to_history(row: ProjectDataHistoryModel) -> ValueHistoryEntry:
    return ValueHistoryEntry.model_validate(row, from_attributes=True)


def _to_item(
    row: ProjectDataItemModel, history: list[ProjectDataHistoryModel] | None = None
) -> ProjectDataItem:
    item = ProjectDataItem.model_validate(row, from_attributes=True)
    if history:
        item.value_history = [_to_history(h) for h in history]
    return item


class DataLibrary:
    """Merge engine and queries over ``project_data_items``."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    async def merge_extraction(
        self,
        extraction_id: UUID,
        project_id: str | None = None,
        document_id: str | None = None,
        document_name: str | None = None,
    ) -> MergeResult:
        """Merge a codified extraction into its project's library.

        Items that are ``unmatched`` or carry no code (confirmed or suggested)
        are skipped. An existing row gets a new current history entry; a
        soft-deleted row is revived by the append.

        Raises:
            NotFoundError: Unknown extraction
            InvalidStateError: No project to merge into
        """
        extraction = await self.session.get(CodifiedExtractionModel, extraction_id)
        if extraction is None:
            raise NotFoundError("Codified extraction", extraction_id)

        if extraction.merged_to_project_library:
            logger.info("Extraction %s already merged, skipping", extraction_id)
            return MergeResult()

        project_id = project_id or extraction.project_id
        if not project_id:
            raise InvalidStateError(f"Extraction {extraction_id} has no project")
        document_id = document_id or extraction.document_id
        document_name = document_name or extraction.document_name

        created = updated = 0
        for raw in extraction.items or []:
            item = CodifiedItem.model_validate(raw)
            code = item.resolved_code
            if item.mapping_status == MappingStatus.UNMATCHED or not code:
                continue

            entry = ProjectDataHistoryModel(
                value=item.value.model_dump(mode="json"),
                value_normalized=normalize_numeric(item.value),
                source_document_id=document_id,
                source_document_name=document_name,
                source_extraction_id=extraction.id,
                original_name=item.original_name,
                added_by=LedgerAddedBy.EXTRACTION.value,
            )

            row = await self._find(project_id, code)
            if row is None:
                row = ProjectDataItemModel(
                    project_id=project_id,
                    item_code=code,
                    category=item.category,
                    original_name=item.original_name,
                    current_data_type=item.data_type.value,
                    is_subtotal=item.is_subtotal,
                    subtotal_reason=item.subtotal_reason,
                    has_multiple_sources=False,
                )
                self.session.add(row)
                await self._append(row, [], entry)
                created += 1
            else:
                history = await self._history(row.id)
                row.value_variance = compute_variance(
                    [h.value_normalized for h in history] + [entry.value_normalized]
                )
                row.has_multiple_sources = True
                row.current_data_type = item.data_type.value
                if row.is_deleted:
                    logger.info("Reviving deleted item %s (%s)", row.id, code)
                    row.is_deleted = False
                    row.deleted_at = None
                    row.deleted_reason = None
                await self._append(row, history, entry)
                updated += 1

        extraction.merged_to_project_library = True
        extraction.merged_at = utcnow()
        await self.session.flush()

        logger.info(
            "Merged extraction %s into project %s: %d created, %d updated",
            extraction_id,
            project_id,
            created,
            updated,
        )
        return MergeResult(merged=created + updated, updated=updated, created=created)

    # ------------------------------------------------------------------
    # Reverts and overrides
    # ------------------------------------------------------------------

    async def revert_document_addition(self, project_id: str, document_id: str) -> RevertResult:
        """Undo everything a document contributed to a project.

        Rows sourced only from the document are soft-deleted. Otherwise the
        newest non-reverted entry from another document becomes current and
        the document's entries are marked reverted.
        """
        result = RevertResult()
        for row in await self._rows(project_id, include_deleted=False):
            history = await self._history(row.id)
            from_doc = [h for h in history if h.source_document_id == document_id]
            if not from_doc:
                continue

            others = [
                h
                for h in history
                if h.source_document_id != document_id and not h.was_reverted
            ]
            # Tagged even when the row is deleted so a revived row never falls back here
            for h in from_doc:
                h.was_reverted = True

            if not others:
                row.is_deleted = True
                row.deleted_at = utcnow()
                row.deleted_reason = "Source document removed"
                result.deleted += 1
                continue

            previous = max(others, key=lambda h: (h.added_at, h.position))
            await self._make_current(row, history, previous)
            row.last_updated_by = LedgerAddedBy.EXTRACTION.value
            result.reverted += 1

        await self.session.flush()
        logger.info(
            "Reverted document %s in project %s: %d reverted, %d deleted",
            document_id,
            project_id,
            result.reverted,
            result.deleted,
        )
        return result

    async def revert_item_to_version(self, item_id: UUID, history_index: int) -> ProjectDataItem:
        """Make the history entry at ``history_index`` (oldest first) current.

        Raises:
            InvalidStateError: If the index is out of range
        """
        row = await self._get_row(item_id)
        history = await self._history(row.id)
        if history_index < 0 or history_index >= len(history):
            raise InvalidStateError("Invalid history index")

        await self._make_current(row, history, history[history_index])
        await self.session.flush()
        return _to_item(row, history)

    async def manual_override_item(
        self, item_id: UUID, value: Any, note: str | None = None
    ) -> ProjectDataItem:
        """Record a manual value as the new current entry."""
        row = await self._get_row(item_id)
        history = await self._history(row.id)

        entry = ProjectDataHistoryModel(
            value=as_raw_value(value).model_dump(mode="json"),
            value_normalized=normalize_numeric(value),
            source_document_id=row.current_source_document_id,
            source_document_name=MANUAL_OVERRIDE_SOURCE,
            source_extraction_id=history[0].source_extraction_id if history else None,
            original_name=row.original_name,
            added_by=LedgerAddedBy.MANUAL.value,
            note=note,
        )
        await self._append(row, history, entry)
        row.manual_override_note = note
        row.has_multiple_sources = True
        await self.session.flush()
        return _to_item(row, await self._history(row.id))

    async def add_manual_item(
        self,
        project_id: str,
        item_code: str,
        category: str,
        original_name: str,
        value: Any,
        data_type: DataType = DataType.CURRENCY,
        note: str | None = None,
        source_document_id: str | None = None,
        source_document_name: str | None = None,
    ) -> ProjectDataItem:
        """Add an item that did not come from an extraction.

        A soft-deleted row with the same code is revived instead.

        Raises:
            InvalidStateError: If an active row already holds the code
        """
        row = await self._find(project_id, item_code)
        if row is not None and not row.is_deleted:
            raise InvalidStateError(f"Item with code {item_code} already exists")

        entry = ProjectDataHistoryModel(
            value=as_raw_value(value).model_dump(mode="json"),
            value_normalized=normalize_numeric(value),
            source_document_id=source_document_id or "manual",
            source_document_name=source_document_name or MANUAL_ENTRY_SOURCE,
            original_name=original_name,
            added_by=LedgerAddedBy.MANUAL.value,
            note=note,
        )

        if row is None:
            row = ProjectDataItemModel(
                project_id=project_id,
                item_code=item_code,
                category=category,
                original_name=original_name,
                current_data_type=DataType(data_type).value,
                has_multiple_sources=False,
            )
            self.session.add(row)
            history: list[ProjectDataHistoryModel] = []
        else:
            history = await self._history(row.id)
            row.is_deleted = False
            row.deleted_at = None
            row.deleted_reason = None
            row.category = category
            row.current_data_type = DataType(data_type).value
            row.has_multiple_sources = True

        await self._append(row, history, entry)
        row.manual_override_note = note
        await self.session.flush()
        return _to_item(row, await self._history(row.id))

    async def delete_item(self, item_id: UUID, reason: str | None = None) -> ProjectDataItem:
        row = await self._get_row(item_id)
        row.is_deleted = True
        row.deleted_at = utcnow()
        row.deleted_reason = reason or "User deleted"
        await self.session.flush()
        return _to_item(row)

    async def restore_item(self, item_id: UUID) -> ProjectDataItem:
        """Undo a soft delete.

        Raises:
            InvalidStateError: If the item is not deleted
        """
        row = await self._get_row(item_id)
        if not row.is_deleted:
            raise InvalidStateError("Item is not deleted")
        row.is_deleted = False
        row.deleted_at = None
        row.deleted_reason = None
        await self.session.flush()
        return _to_item(row)

    async def override_category_total(
        self, project_id: str, category: str, value: float, note: str | None = None
    ) -> ProjectDataItem:
        """Pin a category total to a manual value (creates or updates the row)."""
        total_code = get_category_total_code(category)
        label = f"Total {category}"
        row = await self._find(project_id, total_code)

        entry = ProjectDataHistoryModel(
            value=as_raw_value(value).model_dump(mode="json"),
            value_normalized=normalize_numeric(value),
            source_document_name=MANUAL_OVERRIDE_SOURCE,
            original_name=label,
            added_by=LedgerAddedBy.MANUAL.value,
            note=note,
        )

        if row is None:
            row = ProjectDataItemModel(
                project_id=project_id,
                item_code=total_code,
                category=category,
                original_name=label,
                current_data_type=DataType.CURRENCY.value,
                has_multiple_sources=False,
            )
            self.session.add(row)
            history: list[ProjectDataHistoryModel] = []
            entry.source_document_id = "manual-override"
        else:
            history = await self._history(row.id)
            entry.source_document_id = row.current_source_document_id
            entry.source_extraction_id = history[0].source_extraction_id if history else None
            row.is_deleted = False
            row.deleted_at = None
            row.deleted_reason = None

        await self._append(row, history, entry)
        row.manual_override_note = note
        row.has_multiple_sources = len(history) + 1 > 1
        await self.session.flush()
        logger.info("Category total %s overridden for project %s", total_code, project_id)
        return _to_item(row, await self._history(row.id))

    async def clear_category_total_override(self, project_id: str, category: str) -> bool:
        """Hard-delete the override row so the computed total applies again.

        Returns:
            True if an override existed
        """
        row = await self._find(project_id, get_category_total_code(category))
        if row is None:
            return False
        await self.session.execute(
            delete(ProjectDataHistoryModel).where(ProjectDataHistoryModel.data_item_id == row.id)
        )
        await self.session.delete(row)
        await self.session.flush()
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_items(
        self, project_id: str, include_deleted: bool = False
    ) -> list[ProjectDataItem]:
        """Library rows (with history) sorted by category, then code."""
        rows = await self._rows(project_id, include_deleted=include_deleted)
        return [_to_item(row, await self._history(row.id)) for row in rows]

    async def get_item(self, item_id: UUID) -> ProjectDataItem:
        row = await self._get_row(item_id)
        return _to_item(row, await self._history(row.id))

    async def get_item_history(self, item_id: UUID) -> list[ValueHistoryEntry]:
        """History newest first."""
        row = await self._get_row(item_id)
        history = await self._history(row.id)
        ordered = sorted(history, key=lambda h: (h.added_at, h.position), reverse=True)
        return [_to_history(h) for h in ordered]

    async def get_items_from_document(
        self, project_id: str, document_id: str
    ) -> list[ProjectDataItem]:
        """Active rows with at least one history entry from ``document_id``."""
        sourced = (
            select(ProjectDataHistoryModel.data_item_id)
            .where(ProjectDataHistoryModel.source_document_id == document_id)
            .distinct()
        )
        stmt = (
            select(ProjectDataItemModel)
            .where(
                ProjectDataItemModel.project_id == project_id,
                ProjectDataItemModel.is_deleted.is_(False),
                ProjectDataItemModel.id.in_(sourced),
            )
            .order_by(ProjectDataItemModel.category, ProjectDataItemModel.item_code)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_to_item(row, await self._history(row.id)) for row in rows]

    async def get_changed_items(self, project_id: str) -> list[ProjectDataItem]:
        """Active rows fed by more than one source."""
        rows = await self._rows(project_id, include_deleted=False)
        return [
            _to_item(row, await self._history(row.id))
            for row in rows
            if row.has_multiple_sources
        ]

    async def get_deleted_items(self, project_id: str) -> list[ProjectDataItem]:
        stmt = (
            select(ProjectDataItemModel)
            .where(
                ProjectDataItemModel.project_id == project_id,
                ProjectDataItemModel.is_deleted.is_(True),
            )
            .order_by(ProjectDataItemModel.deleted_at.desc())
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_to_item(row) for row in rows]

    async def get_pending_extractions(self, project_id: str) -> PendingExtractions:
        stmt = select(CodifiedExtractionModel).where(
            CodifiedExtractionModel.project_id == project_id
        )
        extractions = (await self.session.execute(stmt)).scalars().all()

        unconfirmed = [e for e in extractions if not e.is_fully_confirmed]
        pending_merge = [
            e for e in extractions if e.is_fully_confirmed and not e.merged_to_project_library
        ]
        return PendingExtractions(
            total_extractions=len(extractions),
            unconfirmed_count=len(unconfirmed),
            unconfirmed_item_count=sum(len(e.items or []) for e in unconfirmed),
            pending_merge_count=len(pending_merge),
            pending_merge_item_count=sum(len(e.items or []) for e in pending_merge),
            fully_merged_count=sum(1 for e in extractions if e.merged_to_project_library),
        )

    async def get_library_stats(self, project_id: str) -> LibraryStats:
        rows = await self._rows(project_id, include_deleted=True)
        active = [row for row in rows if not row.is_deleted]

        by_category: dict[str, int] = {}
        for row in active:
            by_category[row.category] = by_category.get(row.category, 0) + 1

        documents = set()
        if active:
            stmt = (
                select(ProjectDataHistoryModel.source_document_id)
                .where(ProjectDataHistoryModel.data_item_id.in_([row.id for row in active]))
                .distinct()
            )
            documents = {doc for doc in (await self.session.execute(stmt)).scalars() if doc}

        return LibraryStats(
            total_items=len(active),
            deleted_items=len(rows) - len(active),
            multi_source_items=sum(1 for row in active if row.has_multiple_sources),
            manual_overrides=sum(
                1 for row in active if row.last_updated_by == LedgerAddedBy.MANUAL.value
            ),
            total_documents=len(documents),
            by_category=by_category,
        )

    async def check_item_code_exists(
        self, project_id: str, item_code: str
    ) -> ProjectDataItem | None:
        """The row holding ``item_code`` (deleted or not), if any."""
        row = await self._find(project_id, item_code)
        return _to_item(row) if row else None

    async def get_existing_item_codes(self, project_id: str) -> list[dict[str, str]]:
        """Codes already in use by the project (classifier consistency hints)."""
        return [
            {
                "item_code": row.item_code,
                "category": row.category,
                "original_name": row.original_name,
            }
            for row in await self._rows(project_id, include_deleted=False)
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _append(
        self,
        row: ProjectDataItemModel,
        history: list[ProjectDataHistoryModel],
        entry: ProjectDataHistoryModel,
    ) -> None:
        """Append ``entry`` as the single current value and mirror it on ``row``."""
        for h in history:
            h.is_current_value = False
        self._mirror(row, entry)
        # Clear the old current flag (and insert a new row) before adding the entry
        await self.session.flush()

        position = await self.session.scalar(
            select(func.max(ProjectDataHistoryModel.position)).where(
                ProjectDataHistoryModel.data_item_id == row.id
            )
        )
        entry.data_item_id = row.id
        entry.position = 0 if position is None else position + 1
        entry.is_current_value = True
        entry.added_at = utcnow()
        self.session.add(entry)
        await self.session.flush()

    async def _make_current(
        self,
        row: ProjectDataItemModel,
        history: list[ProjectDataHistoryModel],
        target: ProjectDataHistoryModel,
    ) -> None:
        for h in history:
            h.is_current_value = False
        await self.session.flush()
        target.is_current_value = True
        self._mirror(row, target)

    @staticmethod
    def _mirror(row: ProjectDataItemModel, entry: ProjectDataHistoryModel) -> None:
        row.current_value = entry.value
        row.current_value_normalized = entry.value_normalized
        row.current_source_document_id = entry.source_document_id
        row.current_source_document_name = entry.source_document_name
        if entry.original_name:
            row.original_name = entry.original_name
        row.last_updated_at = utcnow()
        row.last_updated_by = entry.added_by

    async def _history(self, item_id: UUID) -> list[ProjectDataHistoryModel]:
        stmt = (
            select(ProjectDataHistoryModel)
            .where(ProjectDataHistoryModel.data_item_id == item_id)
            .order_by(ProjectDataHistoryModel.position.asc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def _rows(self, project_id: str, include_deleted: bool) -> list[ProjectDataItemModel]:
        stmt = select(ProjectDataItemModel).where(ProjectDataItemModel.project_id == project_id)
        if not include_deleted:
            stmt = stmt.where(ProjectDataItemModel.is_deleted.is_(False))
        stmt = stmt.order_by(ProjectDataItemModel.category, ProjectDataItemModel.item_code)
        return list((await self.session.execute(stmt)).scalars().all())

    async def _find(self, project_id: str, item_code: str) -> ProjectDataItemModel | None:
        stmt = select(ProjectDataItemModel).where(
            ProjectDataItemModel.project_id == project_id,
            ProjectDataItemModel.item_code == item_code,
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _get_row(self, item_id: UUID) -> ProjectDataItemModel:
        row = await self.session.get(ProjectDataItemModel, item_id)
        if row is None:
            raise NotFoundError("Project data item", item_id)
        return row


async def merge_extraction(session: AsyncSession, extraction_id: UUID) -> MergeResult:
    """Convenience function: merge one extraction into its project library."""
    return await DataLibrary(session).merge_extraction(extraction_id)
