"""Document requirement checklists for clients and projects.

A checklist is instantiated once per owner from a YAML template. Each entry can
be linked to several documents; while any link exists exactly one of them is
primary and the entry is ``fulfilled``.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.db.models import KnowledgeChecklistItemModel, KnowledgeChecklistLinkModel
from lendcore.errors import InvalidStateError, NotFoundError
from lendcore.knowledge.field_hints import FieldHintRegistry
from lendcore.knowledge.items import KnowledgeStore
from lendcore.models import (
    ChecklistItem,
    ChecklistStatus,
    ChecklistSummary,
    DocumentLink,
    FieldProgress,
    FieldProgressReport,
    FieldProgressStatus,
    FieldProgressSummary,
    KnowledgeOwner,
    KnowledgeStatus,
)
from lendcore.resources import ChecklistTemplate, load_checklist_templates

logger = logging.getLogger(__name__)

DEFAULT_SUGGESTION_CONFIDENCE = 0.8

_PROGRESS_ORDER = {
    FieldProgressStatus.MISSING: 0,
    FieldProgressStatus.PARTIALLY_FILLED: 1,
    FieldProgressStatus.PENDING_REVIEW: 1,
    FieldProgressStatus.FULFILLED: 2,
}


def _to_link(row: KnowledgeChecklistLinkModel) -> DocumentLink:
    return DocumentLink.model_validate(row, from_attributes=True)


class ChecklistService:
    """Checklist instantiation, document linking and progress reporting."""

    def __init__(
        self,
        session: AsyncSession,
        templates: dict[str, ChecklistTemplate] | None = None,
        hints: FieldHintRegistry | None = None,
    ):
        self.session = session
        self._templates = templates
        self._hints = hints

    @property
    def templates(self) -> dict[str, ChecklistTemplate]:
        if self._templates is None:
            self._templates = load_checklist_templates()
        return self._templates

    @property
    def hints(self) -> FieldHintRegistry:
        if self._hints is None:
            self._hints = FieldHintRegistry.from_yaml()
        return self._hints

    async def initialize_from_template(self, owner: KnowledgeOwner, template_name: str) -> int:
        """Create the owner's checklist from a template.

        Returns the number of entries created; 0 when the owner already has a
        checklist.

        Raises:
            NotFoundError: Unknown template
            InvalidStateError: Template is for the other owner type
        """
        template = self.templates.get(template_name)
        if template is None:
            raise NotFoundError("Checklist template", template_name)
        if template.owner_type != owner.owner_type:
            raise InvalidStateError(
                f"Template '{template_name}' is for {template.owner_type.value} checklists"
            )

        existing = await self.session.execute(
            select(KnowledgeChecklistItemModel.id)
            .where(*self._owner_clause(owner))
            .limit(1)
        )
        if existing.first() is not None:
            logger.info("Checklist for %s %s already exists", owner.owner_type.value, owner.owner_id)
            return 0

        for requirement in template.requirements:
            self.session.add(
                KnowledgeChecklistItemModel(
                    owner_type=owner.owner_type.value,
                    owner_id=owner.owner_id,
                    template_name=template.name,
                    name=requirement.name,
                    category=requirement.category,
                    description=requirement.description,
                    phase_required=requirement.phase_required,
                    priority=requirement.priority,
                    order=requirement.order,
                    is_custom=False,
                    status=ChecklistStatus.MISSING.value,
                    matching_document_types=list(requirement.matching_document_types),
                )
            )
        await self.session.flush()

        logger.info(
            "Created %d checklist items for %s %s from '%s'",
            len(template.requirements),
            owner.owner_type.value,
            owner.owner_id,
            template_name,
        )
        return len(template.requirements)

    # ------------------------------------------------------------------
    # Document links
    # ------------------------------------------------------------------

    async def link_document(
        self,
        checklist_item_id: UUID,
        document_id: str,
        document_name: str | None = None,
        linked_by: str | None = None,
    ) -> DocumentLink:
        """Link a document; the first link becomes primary and fulfils the entry.

        Linking an already linked document returns the existing link.
        """
        item = await self._get_row(checklist_item_id)
        existing = await self._find_link(checklist_item_id, document_id)
        if existing is not None:
            return _to_link(existing)

        links = await self._links(checklist_item_id)
        link = KnowledgeChecklistLinkModel(
            checklist_item_id=checklist_item_id,
            document_id=document_id,
            document_name=document_name or "Unknown",
            linked_by=linked_by,
            is_primary=not links,
        )
        self.session.add(link)

        if link.is_primary:
            item.status = ChecklistStatus.FULFILLED.value
            self._clear_suggestion(item)

        await self.session.flush()
        return _to_link(link)

    async def unlink_document(self, checklist_item_id: UUID, document_id: str) -> bool:
        """Remove one link. False when the document was not linked.

        Removing the primary link promotes the oldest remaining one; with no
        links left the entry goes back to ``missing``.
        """
        item = await self._get_row(checklist_item_id)
        link = await self._find_link(checklist_item_id, document_id)
        if link is None:
            return False

        was_primary = link.is_primary
        await self.session.delete(link)
        await self.session.flush()

        if was_primary:
            remaining = await self._links(checklist_item_id)
            if remaining:
                remaining[0].is_primary = True
            else:
                item.status = ChecklistStatus.MISSING.value
            await self.session.flush()
        return True

    async def get_linked_documents(self, checklist_item_id: UUID) -> list[DocumentLink]:
        """Links of an entry, primary first, then oldest first."""
        links = await self._links(checklist_item_id)
        links.sort(key=lambda link: not link.is_primary)
        return [_to_link(link) for link in links]

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    async def set_suggestion(
        self,
        checklist_item_id: UUID,
        document_id: str,
        document_name: str | None = None,
        confidence: float = DEFAULT_SUGGESTION_CONFIDENCE,
    ) -> ChecklistItem:
        item = await self._get_row(checklist_item_id)
        item.status = ChecklistStatus.PENDING_REVIEW.value
        item.suggested_document_id = document_id
        item.suggested_document_name = document_name
        item.suggestion_confidence = confidence
        await self.session.flush()
        return await self._to_item(item)

    async def confirm_suggested_link(
        self, checklist_item_id: UUID, linked_by: str | None = None
    ) -> ChecklistItem:
        """Turn the pending suggestion into a document link.

        Raises:
            InvalidStateError: The entry has no suggestion
        """
        item = await self._get_row(checklist_item_id)
        if not item.suggested_document_id:
            raise InvalidStateError(f"Checklist item {checklist_item_id} has no suggestion")

        document_id = item.suggested_document_id
        document_name = item.suggested_document_name
        await self.link_document(checklist_item_id, document_id, document_name, linked_by)

        self._clear_suggestion(item)
        item.status = ChecklistStatus.FULFILLED.value
        await self.session.flush()
        return await self._to_item(item)

    async def reject_suggested_link(self, checklist_item_id: UUID) -> ChecklistItem:
        """Drop the suggestion; status falls back to what the links say."""
        item = await self._get_row(checklist_item_id)
        self._clear_suggestion(item)
        links = await self._links(checklist_item_id)
        item.status = (
            ChecklistStatus.FULFILLED.value if links else ChecklistStatus.MISSING.value
        )
        await self.session.flush()
        return await self._to_item(item)

    async def suggest_document_matches(
        self,
        owner: KnowledgeOwner,
        document_id: str,
        document_name: str | None,
        document_type: str,
        category: str | None = None,
    ) -> int:
        """Propose a classified document for every missing entry it may satisfy.

        Returns the number of entries that received the suggestion.
        """
        doc_type = document_type.lower()
        doc_category = (category or "").lower()

        result = await self.session.execute(
            select(KnowledgeChecklistItemModel).where(
                *self._owner_clause(owner),
                KnowledgeChecklistItemModel.status == ChecklistStatus.MISSING.value,
            )
        )
        matched = 0
        for item in result.scalars().all():
            types = [t.lower() for t in item.matching_document_types or []]
            if not any(
                t in doc_type or doc_type in t or (doc_category and t in doc_category)
                for t in types
            ):
                continue
            item.status = ChecklistStatus.PENDING_REVIEW.value
            item.suggested_document_id = document_id
            item.suggested_document_name = document_name
            item.suggestion_confidence = DEFAULT_SUGGESTION_CONFIDENCE
            matched += 1

        await self.session.flush()
        logger.info("Document %s suggested for %d checklist items", document_id, matched)
        return matched

    # ------------------------------------------------------------------
    # Custom requirements and status
    # ------------------------------------------------------------------

    async def add_custom_requirement(
        self,
        owner: KnowledgeOwner,
        name: str,
        category: str,
        description: str | None = None,
        priority: str = "required",
        phase_required: str | None = None,
    ) -> ChecklistItem:
        """Append a user-defined requirement at the end of its category."""
        max_order = await self.session.scalar(
            select(func.max(KnowledgeChecklistItemModel.order)).where(
                *self._owner_clause(owner),
                KnowledgeChecklistItemModel.category == category,
            )
        )
        item = KnowledgeChecklistItemModel(
            owner_type=owner.owner_type.value,
            owner_id=owner.owner_id,
            name=name,
            category=category,
            description=description,
            priority=priority,
            phase_required=phase_required or "always",
            order=(max_order or 0) + 1,
            is_custom=True,
            status=ChecklistStatus.MISSING.value,
        )
        self.session.add(item)
        await self.session.flush()
        return await self._to_item(item)

    async def delete_custom_requirement(self, checklist_item_id: UUID) -> None:
        """Delete a custom requirement and its links.

        Raises:
            InvalidStateError: The entry comes from a template
        """
        item = await self._get_row(checklist_item_id)
        if not item.is_custom:
            raise InvalidStateError("Cannot delete template-based requirements")

        await self.session.execute(
            delete(KnowledgeChecklistLinkModel).where(
                KnowledgeChecklistLinkModel.checklist_item_id == checklist_item_id
            )
        )
        await self.session.delete(item)
        await self.session.flush()

    async def update_item_status(
        self, checklist_item_id: UUID, status: ChecklistStatus
    ) -> ChecklistItem:
        item = await self._get_row(checklist_item_id)
        item.status = ChecklistStatus(status).value
        await self.session.flush()
        return await self._to_item(item)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_checklist(self, owner: KnowledgeOwner) -> list[ChecklistItem]:
        """Entries with their links, ordered by category, then template order."""
        result = await self.session.execute(
            select(KnowledgeChecklistItemModel)
            .where(*self._owner_clause(owner))
            .order_by(
                KnowledgeChecklistItemModel.category,
                KnowledgeChecklistItemModel.order,
                KnowledgeChecklistItemModel.name,
            )
        )
        return [await self._to_item(row) for row in result.scalars().all()]

    async def get_checklist_summary(self, owner: KnowledgeOwner) -> ChecklistSummary:
        result = await self.session.execute(
            select(KnowledgeChecklistItemModel.status, func.count())
            .where(*self._owner_clause(owner))
            .group_by(KnowledgeChecklistItemModel.status)
        )
        counts = dict(result.all())
        summary = ChecklistSummary(
            total=sum(counts.values()),
            fulfilled=counts.get(ChecklistStatus.FULFILLED.value, 0),
            pending_review=counts.get(ChecklistStatus.PENDING_REVIEW.value, 0),
            missing=counts.get(ChecklistStatus.MISSING.value, 0),
        )
        if summary.total:
            summary.completion_percent = round(summary.fulfilled / summary.total * 100, 1)
        return summary

    async def get_checklist_field_progress(self, owner: KnowledgeOwner) -> FieldProgressReport:
        """Progress of each entry measured by the knowledge fields it provides.

        An entry is ``fulfilled`` when every expected field has an active
        knowledge item, ``partially_filled`` when some do and ``missing`` when
        none do. Entries without field hints keep their checklist status.
        """
        result = await self.session.execute(
            select(KnowledgeChecklistItemModel).where(*self._owner_clause(owner))
        )
        rows = result.scalars().all()

        knowledge = await KnowledgeStore(self.session).get_items(owner)
        filled_paths = {
            item.field_path for item in knowledge if item.status == KnowledgeStatus.ACTIVE
        }

        progress: list[FieldProgress] = []
        for row in rows:
            expected = self.hints.hints_for(row.name)
            filled = [path for path in expected if path in filled_paths]

            if not expected:
                effective = FieldProgressStatus(row.status)
            elif len(filled) == len(expected):
                effective = FieldProgressStatus.FULFILLED
            elif filled:
                effective = FieldProgressStatus.PARTIALLY_FILLED
            else:
                effective = FieldProgressStatus.MISSING

            progress.append(
                FieldProgress(
                    checklist_item_id=row.id,
                    name=row.name,
                    category=row.category,
                    priority=row.priority,
                    status=ChecklistStatus(row.status),
                    effective_status=effective,
                    expected_fields=expected,
                    filled_fields=filled,
                    missing_fields=[path for path in expected if path not in filled_paths],
                )
            )

        progress.sort(
            key=lambda p: (p.category, _PROGRESS_ORDER[p.effective_status], p.name)
        )
        summary = FieldProgressSummary(
            total=len(progress),
            fulfilled=sum(p.effective_status == FieldProgressStatus.FULFILLED for p in progress),
            partially_filled=sum(
                p.effective_status == FieldProgressStatus.PARTIALLY_FILLED for p in progress
            ),
            missing=sum(p.effective_status == FieldProgressStatus.MISSING for p in progress),
            total_expected_fields=sum(len(p.expected_fields) for p in progress),
            total_filled_fields=sum(len(p.filled_fields) for p in progress),
        )
        return FieldProgressReport(items=progress, summary=summary)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _clear_suggestion(item: KnowledgeChecklistItemModel) -> None:
        item.suggested_document_id = None
        item.suggested_document_name = None
        item.suggestion_confidence = None

    async def _to_item(self, row: KnowledgeChecklistItemModel) -> ChecklistItem:
        item = ChecklistItem.model_validate(row, from_attributes=True)
        item.links = await self.get_linked_documents(row.id)
        return item

    async def _links(self, checklist_item_id: UUID) -> list[KnowledgeChecklistLinkModel]:
        result = await self.session.execute(
            select(KnowledgeChecklistLinkModel)
            .where(KnowledgeChecklistLinkModel.checklist_item_id == checklist_item_id)
            .order_by(KnowledgeChecklistLinkModel.linked_at)
        )
        return list(result.scalars().all())

    async def _find_link(
        self, checklist_item_id: UUID, document_id: str
    ) -> KnowledgeChecklistLinkModel | None:
        result = await self.session.execute(
            select(KnowledgeChecklistLinkModel).where(
                KnowledgeChecklistLinkModel.checklist_item_id == checklist_item_id,
                KnowledgeChecklistLinkModel.document_id == document_id,
            )
        )
        return result.scalars().first()

    async def _get_row(self, checklist_item_id: UUID) -> KnowledgeChecklistItemModel:
        row = await self.session.get(KnowledgeChecklistItemModel, checklist_item_id)
        if row is None:
            raise NotFoundError("Checklist item", checklist_item_id)
        return row

    @staticmethod
    def _owner_clause(owner: KnowledgeOwner) -> tuple:
        return (
            KnowledgeChecklistItemModel.owner_type == owner.owner_type.value,
            KnowledgeChecklistItemModel.owner_id == owner.owner_id,
        )
