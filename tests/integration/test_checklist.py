"""Integration tests for document requirement checklists."""

from __future__ import annotations

from uuid import uuid4

import pytest

from lendcore.errors import InvalidStateError, NotFoundError
from lendcore.knowledge import ChecklistService, FieldHintRegistry, KnowledgeStore
from lendcore.models import (
    ChecklistStatus,
    FieldProgressStatus,
    KnowledgeItemInput,
    OwnerType,
)
from lendcore.resources import ChecklistTemplate, RequirementTemplate


@pytest.fixture
def templates() -> dict[str, ChecklistTemplate]:
    return {
        "project_docs": ChecklistTemplate(
            name="project_docs",
            owner_type=OwnerType.PROJECT,
            requirements=[
                RequirementTemplate(
                    name="Appraisal",
                    category="Project Information",
                    matching_document_types=["Appraisal", "Financial Model"],
                    order=1,
                ),
                RequirementTemplate(
                    name="Site Plan",
                    category="Project Plans",
                    matching_document_types=["Plans"],
                    order=1,
                ),
                RequirementTemplate(
                    name="Valuation Report",
                    category="Valuation",
                    matching_document_types=["Valuation"],
                    order=1,
                ),
            ],
        ),
        "client_docs": ChecklistTemplate(name="client_docs", owner_type=OwnerType.CLIENT),
    }


@pytest.fixture
def hints() -> FieldHintRegistry:
    return FieldHintRegistry(
        {
            "Appraisal": ["financials.gdv", "financials.totalDevelopmentCost"],
            "Valuation Report": ["valuation.marketValue"],
        }
    )


@pytest.fixture
def service(db_session, templates, hints) -> ChecklistService:
    return ChecklistService(db_session, templates=templates, hints=hints)


async def entry(service, owner, name):
    return next(item for item in await service.get_checklist(owner) if item.name == name)


class TestInitialize:
    @pytest.mark.asyncio
    async def test_creates_entries_once(self, service, project_owner):
        assert await service.initialize_from_template(project_owner, "project_docs") == 3
        assert await service.initialize_from_template(project_owner, "project_docs") == 0

        checklist = await service.get_checklist(project_owner)
        assert [item.name for item in checklist] == ["Appraisal", "Site Plan", "Valuation Report"]
        assert all(item.status == ChecklistStatus.MISSING for item in checklist)
        assert checklist[0].template_name == "project_docs"

    @pytest.mark.asyncio
    async def test_template_errors(self, service, project_owner):
        with pytest.raises(NotFoundError):
            await service.initialize_from_template(project_owner, "nope")
        with pytest.raises(InvalidStateError):
            await service.initialize_from_template(project_owner, "client_docs")

    @pytest.mark.asyncio
    async def test_packaged_templates(self, db_session, project_owner):
        created = await ChecklistService(db_session).initialize_from_template(
            project_owner, "borrower_project"
        )

        assert created > 0
        names = [item.name for item in await ChecklistService(db_session).get_checklist(project_owner)]
        assert "Appraisal" in names


class TestDocumentLinks:
    @pytest.mark.asyncio
    async def test_first_link_is_primary(self, service, project_owner):
        await service.initialize_from_template(project_owner, "project_docs")
        appraisal = await entry(service, project_owner, "Appraisal")

        first = await service.link_document(appraisal.id, "doc-1", "Appraisal.pdf", linked_by="analyst")
        second = await service.link_document(appraisal.id, "doc-2")
        again = await service.link_document(appraisal.id, "doc-1")

        assert first.is_primary
        assert not second.is_primary
        assert second.document_name == "Unknown"
        assert again.id == first.id
        updated = await entry(service, project_owner, "Appraisal")
        assert updated.status == ChecklistStatus.FULFILLED
        assert [link.document_id for link in updated.links] == ["doc-1", "doc-2"]

    @pytest.mark.asyncio
    async def test_unlinking_primary_promotes_another(self, service, project_owner):
        """Test exactly one primary link remains while any link exists."""
        await service.initialize_from_template(project_owner, "project_docs")
        appraisal = await entry(service, project_owner, "Appraisal")
        for doc in ("doc-1", "doc-2", "doc-3"):
            await service.link_document(appraisal.id, doc)

        assert await service.unlink_document(appraisal.id, "doc-1")
        assert not await service.unlink_document(appraisal.id, "doc-1")

        links = await service.get_linked_documents(appraisal.id)
        assert len(links) == 2
        assert sum(link.is_primary for link in links) == 1
        assert links[0].is_primary

    @pytest.mark.asyncio
    async def test_last_unlink_resets_status(self, service, project_owner):
        await service.initialize_from_template(project_owner, "project_docs")
        appraisal = await entry(service, project_owner, "Appraisal")
        await service.link_document(appraisal.id, "doc-1")

        await service.unlink_document(appraisal.id, "doc-1")

        assert (await entry(service, project_owner, "Appraisal")).status == ChecklistStatus.MISSING


class TestSuggestions:
    @pytest.mark.asyncio
    async def test_suggest_and_confirm(self, service, project_owner):
        await service.initialize_from_template(project_owner, "project_docs")

        matched = await service.suggest_document_matches(
            project_owner, "doc-9", "Appraisal v2.pdf", "Development Appraisal"
        )

        assert matched == 1
        appraisal = await entry(service, project_owner, "Appraisal")
        assert appraisal.status == ChecklistStatus.PENDING_REVIEW
        assert appraisal.suggested_document_id == "doc-9"
        assert appraisal.suggestion_confidence == 0.8

        confirmed = await service.confirm_suggested_link(appraisal.id, linked_by="analyst")

        assert confirmed.status == ChecklistStatus.FULFILLED
        assert confirmed.suggested_document_id is None
        assert [link.document_id for link in confirmed.links] == ["doc-9"]
        assert confirmed.links[0].is_primary

    @pytest.mark.asyncio
    async def test_category_match(self, service, project_owner):
        await service.initialize_from_template(project_owner, "project_docs")

        matched = await service.suggest_document_matches(
            project_owner, "doc-9", None, "Drawing", category="Architectural Plans"
        )

        assert matched == 1
        assert (await entry(service, project_owner, "Site Plan")).status == (
            ChecklistStatus.PENDING_REVIEW
        )

    @pytest.mark.asyncio
    async def test_reject_falls_back_to_links(self, service, project_owner):
        await service.initialize_from_template(project_owner, "project_docs")
        appraisal = await entry(service, project_owner, "Appraisal")
        await service.set_suggestion(appraisal.id, "doc-9", "Draft.pdf", confidence=0.6)

        rejected = await service.reject_suggested_link(appraisal.id)

        assert rejected.status == ChecklistStatus.MISSING
        assert rejected.suggested_document_id is None
        with pytest.raises(InvalidStateError):
            await service.confirm_suggested_link(appraisal.id)

        await service.link_document(appraisal.id, "doc-1")
        await service.set_suggestion(appraisal.id, "doc-9")
        assert (await service.reject_suggested_link(appraisal.id)).status == ChecklistStatus.FULFILLED


class TestCustomRequirements:
    @pytest.mark.asyncio
    async def test_add_and_delete(self, service, project_owner):
        await service.initialize_from_template(project_owner, "project_docs")

        custom = await service.add_custom_requirement(
            project_owner, "Party Wall Agreement", "Project Plans", description="Neighbour consent"
        )

        assert custom.is_custom
        assert custom.order == 2
        assert custom.phase_required == "always"
        await service.link_document(custom.id, "doc-1")

        await service.delete_custom_requirement(custom.id)

        assert len(await service.get_checklist(project_owner)) == 3

    @pytest.mark.asyncio
    async def test_template_entries_cannot_be_deleted(self, service, project_owner):
        await service.initialize_from_template(project_owner, "project_docs")
        appraisal = await entry(service, project_owner, "Appraisal")

        with pytest.raises(InvalidStateError):
            await service.delete_custom_requirement(appraisal.id)

    @pytest.mark.asyncio
    async def test_unknown_entry(self, service):
        with pytest.raises(NotFoundError):
            await service.update_item_status(uuid4(), ChecklistStatus.FULFILLED)


class TestProgress:
    @pytest.mark.asyncio
    async def test_summary(self, service, project_owner):
        await service.initialize_from_template(project_owner, "project_docs")
        appraisal = await entry(service, project_owner, "Appraisal")
        valuation = await entry(service, project_owner, "Valuation Report")
        await service.link_document(appraisal.id, "doc-1")
        await service.update_item_status(valuation.id, ChecklistStatus.PENDING_REVIEW)

        summary = await service.get_checklist_summary(project_owner)

        assert (summary.total, summary.fulfilled, summary.pending_review, summary.missing) == (3, 1, 1, 1)
        assert summary.completion_percent == 33.3

    @pytest.mark.asyncio
    async def test_empty_summary(self, service, client_owner):
        summary = await service.get_checklist_summary(client_owner)

        assert summary.total == 0
        assert summary.completion_percent == 0.0

    @pytest.mark.asyncio
    async def test_field_progress(self, db_session, service, project_owner):
        """Test entries are measured by the knowledge fields they provide."""
        await service.initialize_from_template(project_owner, "project_docs")
        store = KnowledgeStore(db_session)
        await store.add_item(project_owner, KnowledgeItemInput(field_path="financials.gdv", value=4000000))
        await store.add_item(project_owner, KnowledgeItemInput(field_path="valuation.marketValue", value=1))

        report = await service.get_checklist_field_progress(project_owner)

        by_name = {p.name: p for p in report.items}
        assert by_name["Appraisal"].effective_status == FieldProgressStatus.PARTIALLY_FILLED
        assert by_name["Appraisal"].missing_fields == ["financials.totalDevelopmentCost"]
        assert by_name["Valuation Report"].effective_status == FieldProgressStatus.FULFILLED
        assert by_name["Site Plan"].effective_status == FieldProgressStatus.MISSING
        assert by_name["Site Plan"].expected_fields == []
        assert report.summary.total == 3
        assert report.summary.fulfilled == 1
        assert report.summary.partially_filled == 1
        assert report.summary.missing == 1
        assert report.summary.total_expected_fields == 3
        assert report.summary.total_filled_fields == 2
