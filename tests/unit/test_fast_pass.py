"""Unit tests for Fast Pass alias lookup and legacy field-path resolution."""

from __future__ import annotations

from uuid import uuid4

import pytest

from lendcore.canonical.normalize import normalize_alias
from lendcore.matching.fast_pass import AliasIndex, FastPassMatcher, FieldPathResolver
from lendcore.models import AliasSource, ItemCodeAlias, OwnerType


def make_alias(alias: str, code: str, confidence: float = 1.0) -> ItemCodeAlias:
    return ItemCodeAlias(
        alias=alias,
        alias_normalized=normalize_alias(alias),
        canonical_code_id=uuid4(),
        canonical_code=code,
        confidence=confidence,
        source=AliasSource.SYSTEM_SEED,
    )


@pytest.fixture
def matcher() -> FastPassMatcher:
    return FastPassMatcher(
        AliasIndex(
            [
                make_alias("Stamp Duty", "<stamp.duty>"),
                make_alias("SDLT", "<stamp.duty>"),
                make_alias("Build Cost", "<build.cost>"),
                make_alias("Agent Fee", "<agent.fee>", confidence=0.8),
                make_alias("Agent Fee", "<sales.agent>", confidence=0.95),
            ]
        )
    )


class TestFastPassMatcher:
    """Fast Pass is a pure dictionary lookup."""

    def test_exact_hit(self, matcher):
        """Test a label equal to an alias matches with the alias confidence."""
        result = matcher.match("Stamp Duty")

        assert result.matched
        assert result.code == "<stamp.duty>"
        assert result.matched_alias == "Stamp Duty"
        assert result.confidence == 1.0
        assert result.alias_id is not None

    def test_case_and_whitespace_insensitive(self, matcher):
        """Test case and whitespace differences still hit."""
        assert matcher.match("  sdlt ").code == "<stamp.duty>"

    def test_second_probe_uses_label_normalization(self, matcher):
        """Test noisy labels hit through the aggressive normalization."""
        result = matcher.match("Build Costs (x4 plots)")

        assert result.matched
        assert result.code == "<build.cost>"

    def test_highest_confidence_alias_wins(self, matcher):
        """Test a duplicated alias key resolves to the most confident entry."""
        assert matcher.match("Agent Fee").code == "<sales.agent>"

    def test_miss(self, matcher):
        """Test unknown labels miss without a fuzzy fallback."""
        result = matcher.match("Stamp Dty", field_path="financials.stampDuty")

        assert not result.matched
        assert result.code is None
        assert result.confidence == 0.0

    def test_empty_index(self):
        matcher = FastPassMatcher(AliasIndex([]))

        assert len(matcher.index) == 0
        assert not matcher.match("Stamp Duty").matched


class TestFieldPathResolver:
    """Legacy intelligence paths map onto canonical field paths."""

    @pytest.fixture
    def resolver(self) -> FieldPathResolver:
        return FieldPathResolver(
            {
                OwnerType.CLIENT: {"identity.legalName": "company.legalName"},
                OwnerType.PROJECT: {"financials.gdv": "financials.grossDevelopmentValue"},
            }
        )

    def test_known_path_is_canonical(self, resolver):
        resolved = resolver.resolve(OwnerType.CLIENT, "identity.legalName")

        assert resolved.field_path == "company.legalName"
        assert resolved.is_canonical

    def test_mappings_are_per_owner_type(self, resolver):
        """Test a client mapping does not apply to projects."""
        resolved = resolver.resolve(OwnerType.PROJECT, "identity.legalName")

        assert resolved.field_path == "custom.identity_legalName"
        assert not resolved.is_canonical

    def test_accepts_owner_type_value(self, resolver):
        assert resolver.resolve("project", "financials.gdv").is_canonical
