"""Integration tests for the canonical registry (codes, categories, aliases, seed)."""

from __future__ import annotations

from uuid import uuid4

import pytest

from lendcore.errors import InvalidStateError, NotFoundError
from lendcore.models import AliasSource, DataType
from lendcore.registry.aliases import AliasLearner, AliasRegistry
from lendcore.registry.categories import CategoryRegistry
from lendcore.registry.codes import CodeRegistry
from lendcore.registry.seed import seed_registry


class TestCodeRegistry:
    """Code grammar, uniqueness and lifecycle."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, db_session):
        codes = CodeRegistry(db_session)

        created = await codes.create("<stamp.duty>", "Stamp Duty", "Site Costs")

        assert created.code == "<stamp.duty>"
        assert created.data_type == DataType.CURRENCY
        assert (await codes.get(created.id)).display_name == "Stamp Duty"
        assert (await codes.get_by_code("<stamp.duty>")).id == created.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", ["stamp duty", "<Stamp.Duty>", "<stamp..duty>"])
    async def test_rejects_malformed_codes(self, db_session, bad):
        with pytest.raises(InvalidStateError, match="Invalid item code"):
            await CodeRegistry(db_session).create(bad, "Stamp Duty", "Site Costs")

    @pytest.mark.asyncio
    async def test_rejects_duplicates(self, db_session):
        codes = CodeRegistry(db_session)
        await codes.create("<gdv>", "GDV", "Revenue")

        with pytest.raises(InvalidStateError, match="already exists"):
            await codes.create("<gdv>", "Gross Development Value", "Revenue")

    @pytest.mark.asyncio
    async def test_rename_repoints_aliases(self, db_session):
        """Test renaming a code keeps its aliases attached."""
        codes = CodeRegistry(db_session)
        aliases = AliasRegistry(db_session)
        code = await codes.create("<sdlt>", "SDLT", "Site Costs")
        await aliases.create("Stamp Duty Land Tax", code.id)

        await codes.update(code.id, code="<stamp.duty>")

        alias = await aliases.lookup("stamp duty land tax")
        assert alias.canonical_code == "<stamp.duty>"

    @pytest.mark.asyncio
    async def test_deactivated_codes_hidden(self, db_session):
        codes = CodeRegistry(db_session)
        kept = await codes.create("<gdv>", "GDV", "Revenue")
        retired = await codes.create("<old.code>", "Old", "Other")

        await codes.deactivate(retired.id)

        assert [c.code for c in await codes.list_codes()] == [kept.code]
        assert len(await codes.list_codes(active_only=False)) == 2
        assert await codes.get_categories() == ["Revenue"]

    @pytest.mark.asyncio
    async def test_remove_requires_no_aliases(self, db_session):
        codes = CodeRegistry(db_session)
        aliases = AliasRegistry(db_session)
        code = await codes.create("<gdv>", "GDV", "Revenue")
        alias, _ = await aliases.create("Total Sales", code.id)

        with pytest.raises(InvalidStateError, match="aliases"):
            await codes.remove(code.id)

        await aliases.remove(alias.id)
        await codes.remove(code.id)
        assert await codes.get_by_code("<gdv>") is None

    @pytest.mark.asyncio
    async def test_bulk_change_category(self, db_session):
        codes = CodeRegistry(db_session)
        a = await codes.create("<a>", "A", "Other")
        b = await codes.create("<b>", "B", "Other")

        moved = await codes.bulk_change_category([a.id, b.id], "Site Costs")

        assert moved == 2
        grouped = await codes.get_grouped_by_category()
        assert [c.code for c in grouped["Site Costs"]] == ["<a>", "<b>"]

    @pytest.mark.asyncio
    async def test_unknown_code(self, db_session):
        with pytest.raises(NotFoundError):
            await CodeRegistry(db_session).get(uuid4())

    @pytest.mark.asyncio
    async def test_vocabulary_caps_aliases(self, db_session):
        codes = CodeRegistry(db_session)
        aliases = AliasRegistry(db_session)
        code = await codes.create("<gdv>", "GDV", "Revenue")
        for label in ["Total Sales", "Sales", "Revenue", "Gross Value"]:
            await aliases.create(label, code.id)

        entries = await codes.vocabulary(max_aliases=2)

        assert len(entries) == 1
        assert len(entries[0].aliases) == 2


class TestCategoryRegistry:
    @pytest.mark.asyncio
    async def test_create_normalizes_name(self, db_session):
        category = await CategoryRegistry(db_session).create("Site Costs", display_order=1)

        assert category.normalized_name == "site.costs"

    @pytest.mark.asyncio
    async def test_duplicate_normalized_name(self, db_session):
        categories = CategoryRegistry(db_session)
        await categories.create("Site Costs")

        with pytest.raises(InvalidStateError):
            await categories.create("site   costs")

    @pytest.mark.asyncio
    async def test_system_categories_are_protected(self, db_session):
        categories = CategoryRegistry(db_session)
        system = await categories.create("Revenue", is_system=True)

        with pytest.raises(InvalidStateError, match="rename"):
            await categories.update(system.id, name="Income")
        with pytest.raises(InvalidStateError, match="delete"):
            await categories.remove(system.id)

        updated = await categories.update(system.id, description="Sales income")
        assert updated.description == "Sales income"

    @pytest.mark.asyncio
    async def test_category_in_use_cannot_be_removed(self, db_session):
        categories = CategoryRegistry(db_session)
        category = await categories.create("Ground Rent")
        await CodeRegistry(db_session).create("<ground.rent>", "Ground Rent", "Ground Rent")

        with pytest.raises(InvalidStateError, match="item codes assigned"):
            await categories.remove(category.id)

    @pytest.mark.asyncio
    async def test_ordering_and_prompt(self, db_session):
        categories = CategoryRegistry(db_session)
        await categories.create("Other", display_order=99)
        await categories.create("Site Costs", display_order=1, examples=["SDLT"])

        listed = await categories.list_categories()
        prompt = await categories.for_prompt()

        assert [c.name for c in listed] == ["Site Costs", "Other"]
        assert prompt[0].examples == ["SDLT"]


class TestAliasRegistry:
    """Alias writes respect source authority and confidence."""

    @pytest.mark.asyncio
    async def test_create_and_lookup(self, db_session):
        code = await CodeRegistry(db_session).create("<stamp.duty>", "Stamp Duty", "Site Costs")
        aliases = AliasRegistry(db_session)

        alias, created = await aliases.create("  SDLT ", code.id, source=AliasSource.SYSTEM_SEED)

        assert created
        assert alias.alias == "SDLT"
        assert alias.alias_normalized == "sdlt"
        assert (await aliases.lookup("sdlt")).canonical_code == "<stamp.duty>"
        assert await aliases.lookup("unknown") is None

    @pytest.mark.asyncio
    async def test_lower_confidence_llm_alias_does_not_overwrite(self, db_session):
        codes = CodeRegistry(db_session)
        a = await codes.create("<stamp.duty>", "Stamp Duty", "Site Costs")
        b = await codes.create("<legal.fees>", "Legal Fees", "Site Costs")
        aliases = AliasRegistry(db_session)
        await aliases.create("Duty", a.id, source=AliasSource.SYSTEM_SEED, confidence=1.0)

        alias, created = await aliases.create(
            "Duty", b.id, source=AliasSource.LLM_SUGGESTED, confidence=0.8
        )

        assert not created
        assert alias.canonical_code == "<stamp.duty>"

    @pytest.mark.asyncio
    async def test_user_confirmation_overwrites(self, db_session):
        codes = CodeRegistry(db_session)
        a = await codes.create("<stamp.duty>", "Stamp Duty", "Site Costs")
        b = await codes.create("<legal.fees>", "Legal Fees", "Site Costs")
        aliases = AliasRegistry(db_session)
        await aliases.create("Duty", a.id, source=AliasSource.SYSTEM_SEED)

        alias, _ = await aliases.create("duty", b.id, source=AliasSource.USER_CONFIRMED)

        assert alias.canonical_code == "<legal.fees>"
        assert alias.source == AliasSource.USER_CONFIRMED
        assert alias.usage_count == 2

    @pytest.mark.asyncio
    async def test_empty_alias_and_unknown_code(self, db_session):
        aliases = AliasRegistry(db_session)
        code = await CodeRegistry(db_session).create("<gdv>", "GDV", "Revenue")

        with pytest.raises(InvalidStateError):
            await aliases.create("   ", code.id)
        with pytest.raises(NotFoundError):
            await aliases.create("GDV", uuid4())

    @pytest.mark.asyncio
    async def test_bulk_lookup_keeps_given_labels(self, db_session):
        code = await CodeRegistry(db_session).create("<gdv>", "GDV", "Revenue")
        aliases = AliasRegistry(db_session)
        await aliases.create("Total Sales", code.id)

        found = await aliases.bulk_lookup(["TOTAL SALES", "Nothing"])

        assert found["TOTAL SALES"].canonical_code == "<gdv>"
        assert found["Nothing"] is None

    @pytest.mark.asyncio
    async def test_increment_usage(self, db_session):
        code = await CodeRegistry(db_session).create("<gdv>", "GDV", "Revenue")
        aliases = AliasRegistry(db_session)
        alias, _ = await aliases.create("GDV", code.id)

        await aliases.increment_usage(alias.id)

        assert (await aliases.lookup("gdv")).usage_count == 2


class TestAliasLearner:
    @pytest.mark.asyncio
    async def test_learn_records_user_confirmed_alias(self, db_session):
        await CodeRegistry(db_session).create("<stamp.duty>", "Stamp Duty", "Site Costs")

        alias = await AliasLearner(db_session).learn("Stamp Duty Payable", "<stamp.duty>")

        assert alias.source == AliasSource.USER_CONFIRMED
        assert (await AliasRegistry(db_session).lookup("stamp duty payable")) is not None

    @pytest.mark.asyncio
    async def test_disabled_learner_writes_nothing(self, db_session):
        await CodeRegistry(db_session).create("<stamp.duty>", "Stamp Duty", "Site Costs")

        assert await AliasLearner(db_session, enabled=False).learn("X", "<stamp.duty>") is None
        assert await AliasRegistry(db_session).all_rows() == []

    @pytest.mark.asyncio
    async def test_unknown_code(self, db_session):
        with pytest.raises(NotFoundError):
            await AliasLearner(db_session).learn("X", "<missing>")


class TestSeedRegistry:
    """Seeding the packaged vocabulary is idempotent."""

    @pytest.mark.asyncio
    async def test_seed_and_reseed(self, db_session):
        first = await seed_registry(db_session)

        assert first.categories_created > 0
        assert first.codes_created > 0
        assert first.aliases_created > 0
        assert (await AliasRegistry(db_session).lookup("SDLT")).canonical_code == "<stamp.duty>"
        assert (await CategoryRegistry(db_session).get_by_name("Site Costs")).is_system

        second = await seed_registry(db_session)

        assert second.categories_created == 0
        assert second.codes_created == 0
        assert second.codes_skipped == first.codes_created
        assert second.aliases_created == 0
