"""Integration tests for intelligence conflicts."""

from __future__ import annotations

from uuid import uuid4

import pytest
import pytest_asyncio

from lendcore.errors import InvalidStateError, NotFoundError
from lendcore.knowledge import ConflictService, KnowledgeStore
from lendcore.models import ConflictStatus, KnowledgeItemInput, KnowledgeStatus

PATH = "financial.netWorth"


@pytest_asyncio.fixture
async def two_values(db_session, client_owner):
    """Two versions of the client's net worth (the first superseded)."""
    store = KnowledgeStore(db_session)
    first = await store.add_item(client_owner, KnowledgeItemInput(field_path=PATH, value=1000000))
    second = await store.add_item(client_owner, KnowledgeItemInput(field_path=PATH, value=1200000))
    return first, second


class TestCreateConflict:
    @pytest.mark.asyncio
    async def test_flags_related_items(self, db_session, client_owner, two_values):
        first, second = two_values
        service = ConflictService(db_session)

        conflict = await service.create_conflict(
            client_owner, PATH, "Statements disagree", [first.id, second.id], category="financial"
        )

        assert conflict.status == ConflictStatus.PENDING
        assert conflict.related_item_ids == [first.id, second.id]
        for item in await service.get_related_items(conflict.id):
            assert item.status == KnowledgeStatus.FLAGGED
            assert item.flag_reason == "Conflict: Statements disagree"
        assert (await service.get_pending_conflict(client_owner, PATH)).id == conflict.id

    @pytest.mark.asyncio
    async def test_needs_two_distinct_items(self, db_session, client_owner, two_values):
        first, _ = two_values

        with pytest.raises(InvalidStateError):
            await ConflictService(db_session).create_conflict(
                client_owner, PATH, "Only one", [first.id, first.id]
            )

    @pytest.mark.asyncio
    async def test_unknown_item(self, db_session, client_owner, two_values):
        first, _ = two_values

        with pytest.raises(NotFoundError):
            await ConflictService(db_session).create_conflict(
                client_owner, PATH, "Missing", [first.id, uuid4()]
            )


class TestResolveConflict:
    @pytest.mark.asyncio
    async def test_winner_becomes_active(self, db_session, client_owner, two_values):
        """Test the winner is active and every other item points at it."""
        first, second = two_values
        service = ConflictService(db_session)
        store = KnowledgeStore(db_session)
        conflict = await service.create_conflict(
            client_owner, PATH, "Statements disagree", [first.id, second.id]
        )
        # A value written while the conflict is open also steps aside
        interim = await store.add_item(client_owner, KnowledgeItemInput(field_path=PATH, value=1))

        resolved = await service.resolve_conflict(
            conflict.id, first.id, resolved_by="analyst", reason="Audited accounts"
        )

        assert resolved.status == ConflictStatus.RESOLVED
        assert resolved.resolution.winner_id == first.id
        assert resolved.resolution.resolved_by == "analyst"
        winner = await store.get_item(first.id)
        assert winner.status == KnowledgeStatus.ACTIVE
        assert winner.flag_reason is None
        for loser_id in (second.id, interim.id):
            loser = await store.get_item(loser_id)
            assert loser.status == KnowledgeStatus.SUPERSEDED
            assert loser.superseded_by == first.id
        assert (await store.get_item_at_path(client_owner, PATH)).id == first.id
        assert await service.get_pending_conflict(client_owner, PATH) is None

    @pytest.mark.asyncio
    async def test_resolution_errors(self, db_session, client_owner, two_values):
        first, second = two_values
        service = ConflictService(db_session)
        conflict = await service.create_conflict(
            client_owner, PATH, "Statements disagree", [first.id, second.id]
        )

        with pytest.raises(InvalidStateError, match="not part of"):
            await service.resolve_conflict(conflict.id, uuid4(), resolved_by="analyst")

        await service.resolve_conflict(conflict.id, second.id, resolved_by="analyst")
        with pytest.raises(InvalidStateError, match="already resolved"):
            await service.resolve_conflict(conflict.id, second.id, resolved_by="analyst")
        with pytest.raises(NotFoundError):
            await service.resolve_conflict(uuid4(), second.id, resolved_by="analyst")

    @pytest.mark.asyncio
    async def test_listing_by_status(self, db_session, client_owner, two_values):
        first, second = two_values
        service = ConflictService(db_session)
        conflict = await service.create_conflict(
            client_owner, PATH, "Statements disagree", [first.id, second.id]
        )
        await service.resolve_conflict(conflict.id, first.id, resolved_by="analyst")

        assert [c.id for c in await service.get_conflicts(client_owner)] == [conflict.id]
        assert await service.get_conflicts(client_owner, ConflictStatus.PENDING) == []
        assert len(await service.get_conflicts(client_owner, ConflictStatus.RESOLVED)) == 1

    @pytest.mark.asyncio
    async def test_superseded_winner_heads_the_chain(self, db_session, client_owner, two_values):
        """Test an older version that wins no longer points at the loser."""
        first, second = two_values
        service = ConflictService(db_session)
        store = KnowledgeStore(db_session)
        conflict = await service.create_conflict(
            client_owner, PATH, "Statements disagree", [first.id, second.id]
        )

        await service.resolve_conflict(conflict.id, first.id, resolved_by="analyst")

        winner = await store.get_item(first.id)
        loser = await store.get_item(second.id)
        assert winner.status == KnowledgeStatus.ACTIVE
        assert winner.superseded_by is None
        assert loser.superseded_by == first.id
        assert loser.chain_root_id == winner.chain_root_id

        history = await store.get_field_history(client_owner, PATH)
        assert [item.id for item in history] == [first.id, second.id]
