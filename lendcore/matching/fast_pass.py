"""Fast Pass: exact alias-dictionary matching.

Labels are normalized and looked up in an in-memory dict built from the alias
table. A miss on the plain alias key gets a second probe with the aggressive
label normalization (still one dict lookup). There is no fuzzy fallback here;
anything that misses goes to Smart Pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.canonical.normalize import normalize_alias, normalize_label
from lendcore.models import FastPassResult, ItemCodeAlias, OwnerType
from lendcore.registry.aliases import AliasRegistry

logger = logging.getLogger(__name__)


@dataclass
class AliasEntry:
    code: str
    alias_id: UUID
    alias: str
    confidence: float


class AliasIndex:
    """Normalized alias -> best alias entry (highest confidence wins)."""

    def __init__(self, aliases: list[ItemCodeAlias]):
        self._by_alias: dict[str, AliasEntry] = {}
        self._by_label: dict[str, AliasEntry] = {}
        for alias in aliases:
            entry = AliasEntry(
                code=alias.canonical_code,
                alias_id=alias.id,
                alias=alias.alias,
                confidence=alias.confidence,
            )
            self._keep_best(self._by_alias, normalize_alias(alias.alias_normalized), entry)
            self._keep_best(self._by_label, normalize_label(alias.alias_normalized), entry)

    @staticmethod
    def _keep_best(index: dict[str, AliasEntry], key: str, entry: AliasEntry) -> None:
        if not key:
            return
        existing = index.get(key)
        if existing is None or entry.confidence > existing.confidence:
            index[key] = entry

    def __len__(self) -> int:
        return len(self._by_alias)

    def get(self, label: str) -> AliasEntry | None:
        entry = self._by_alias.get(normalize_alias(label))
        if entry is None:
            entry = self._by_label.get(normalize_label(label))
        return entry


class FastPassMatcher:
    """Instant alias lookup. Never calls out and never writes."""

    def __init__(self, index: AliasIndex):
        self.index = index

    @classmethod
    async def load(cls, session: AsyncSession) -> FastPassMatcher:
        """Build a matcher over the current alias table."""
        aliases = await AliasRegistry(session).all_rows()
        logger.debug("Fast Pass index built from %d aliases", len(aliases))
        return cls(AliasIndex(aliases))

    def match(self, label: str, field_path: str | None = None) -> FastPassResult:
        """Look up ``label``.

        Args:
            label: Raw label text as extracted
            field_path: Optional context (unused by the alias lookup, logged only)

        Returns:
            FastPassResult(matched=True, ...) on a hit, else matched=False
        """
        entry = self.index.get(label)
        if entry is None:
            if field_path:
                logger.debug("Fast Pass miss for %r (field %s)", label, field_path)
            return FastPassResult(matched=False)

        return FastPassResult(
            matched=True,
            code=entry.code,
            alias_id=entry.alias_id,
            matched_alias=entry.alias,
            confidence=entry.confidence,
        )


@dataclass
class ResolvedFieldPath:
    field_path: str
    is_canonical: bool


class FieldPathResolver:
    """Maps legacy knowledge paths onto canonical field paths.

    The mapping table is injected (see ``lendcore.resources.load_legacy_paths``).
    Unknown paths fall back to ``custom.<path_with_underscores>``.
    """

    def __init__(self, mappings: dict[OwnerType, dict[str, str]]):
        self.mappings = mappings

    def resolve(self, owner_type: OwnerType, legacy_path: str) -> ResolvedFieldPath:
        canonical = self.mappings.get(OwnerType(owner_type), {}).get(legacy_path)
        if canonical:
            return ResolvedFieldPath(field_path=canonical, is_canonical=True)
        return ResolvedFieldPath(
            field_path=f"custom.{legacy_path.replace('.', '_')}", is_canonical=False
        )
