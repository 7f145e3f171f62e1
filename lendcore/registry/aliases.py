"""Alias dictionary: alternative labels mapped onto canonical codes.

The dictionary is the learning memory of codification. Every alias confirmed by
a user becomes a Fast Pass hit the next time the same label shows up, so the
share of items needing Smart Pass drops over time.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.canonical.normalize import normalize_alias
from lendcore.db.models import ItemCodeAliasModel, ItemCodeModel
from lendcore.errors import InvalidStateError, NotFoundError
from lendcore.models import AliasBulkResult, AliasSource, ItemCodeAlias

logger = logging.getLogger(__name__)

# Sources that always overwrite an existing alias mapping
_AUTHORITATIVE_SOURCES = {AliasSource.USER_CONFIRMED, AliasSource.MANUAL}


def _to_alias(row: ItemCodeAliasModel) -> ItemCodeAlias:
    return ItemCodeAlias.model_validate(row, from_attributes=True)


class AliasRegistry:
    """CRUD and lookup over ``item_code_aliases``."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_aliases(self, canonical_code: str | None = None) -> list[ItemCodeAlias]:
        stmt = select(ItemCodeAliasModel)
        if canonical_code is not None:
            stmt = stmt.where(ItemCodeAliasModel.canonical_code == canonical_code)
        stmt = stmt.order_by(
            ItemCodeAliasModel.canonical_code.asc(), ItemCodeAliasModel.alias.asc()
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_to_alias(row) for row in rows]

    async def lookup(self, alias: str) -> ItemCodeAlias | None:
        """Point lookup by normalized alias (highest confidence wins)."""
        stmt = (
            select(ItemCodeAliasModel)
            .where(ItemCodeAliasModel.alias_normalized == normalize_alias(alias))
            .order_by(ItemCodeAliasModel.confidence.desc())
            .limit(1)
        )
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return _to_alias(row) if row else None

    async def bulk_lookup(self, aliases: list[str]) -> dict[str, ItemCodeAlias | None]:
        """Lookup many labels in one query; keys are the labels as given."""
        keys = {alias: normalize_alias(alias) for alias in aliases}
        stmt = select(ItemCodeAliasModel).where(
            ItemCodeAliasModel.alias_normalized.in_(set(keys.values()))
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        by_key = {row.alias_normalized: _to_alias(row) for row in rows}
        return {alias: by_key.get(key) for alias, key in keys.items()}

    async def get_grouped_by_code(self) -> dict[str, list[ItemCodeAlias]]:
        grouped: dict[str, list[ItemCodeAlias]] = defaultdict(list)
        for alias in await self.list_aliases():
            grouped[alias.canonical_code].append(alias)
        return dict(grouped)

    async def create(
        self,
        alias: str,
        canonical_code_id: UUID,
        source: AliasSource = AliasSource.MANUAL,
        confidence: float = 1.0,
    ) -> tuple[ItemCodeAlias, bool]:
        """Create an alias, or re-point an existing one.

        An existing alias is overwritten when the new source is user/manual or
        the new confidence is higher; its usage counter is bumped either way a
        write happens.

        Args:
            alias: Label text as seen in documents
            canonical_code_id: Target code id
            source: Alias provenance
            confidence: 0..1

        Returns:
            (alias, created) where created is False for updates and no-ops

        Raises:
            NotFoundError: If the target code does not exist
            InvalidStateError: If the alias normalizes to an empty string
        """
        normalized = normalize_alias(alias)
        if not normalized:
            raise InvalidStateError("Alias must not be empty")

        code = await self.session.get(ItemCodeModel, canonical_code_id)
        if code is None:
            raise NotFoundError("Item code", canonical_code_id)

        source = AliasSource(source)
        existing = await self._find(normalized)
        if existing is not None:
            if source in _AUTHORITATIVE_SOURCES or confidence > existing.confidence:
                existing.canonical_code_id = code.id
                existing.canonical_code = code.code
                existing.confidence = confidence
                existing.source = source.value
                existing.usage_count = (existing.usage_count or 0) + 1
                await self.session.flush()
            return _to_alias(existing), False

        row = ItemCodeAliasModel(
            alias=alias.strip(),
            alias_normalized=normalized,
            canonical_code_id=code.id,
            canonical_code=code.code,
            confidence=confidence,
            source=source.value,
            usage_count=1,
        )
        self.session.add(row)
        await self.session.flush()
        return _to_alias(row), True

    async def bulk_create(
        self, entries: list[tuple[str, UUID]], source: AliasSource = AliasSource.SYSTEM_SEED
    ) -> AliasBulkResult:
        """Create many ``(alias, code_id)`` pairs.

        Pairs already mapped to the same code are skipped without a write.
        """
        result = AliasBulkResult()
        for alias, code_id in entries:
            existing = await self._find(normalize_alias(alias))
            if existing is not None and existing.canonical_code_id == code_id:
                result.skipped += 1
                continue
            _, created = await self.create(alias, code_id, source=source)
            if created:
                result.created += 1
            else:
                result.updated += 1
        return result

    async def increment_usage(self, alias_id: UUID) -> None:
        """Bump the usage counter of an alias that produced a confirmed hit."""
        row = await self.session.get(ItemCodeAliasModel, alias_id)
        if row is None:
            raise NotFoundError("Alias", alias_id)
        row.usage_count = (row.usage_count or 0) + 1
        await self.session.flush()

    async def remove(self, alias_id: UUID) -> None:
        row = await self.session.get(ItemCodeAliasModel, alias_id)
        if row is None:
            raise NotFoundError("Alias", alias_id)
        await self.session.delete(row)
        await self.session.flush()

    async def all_rows(self) -> list[ItemCodeAlias]:
        """Every alias (used to build the in-memory Fast Pass index)."""
        rows = (await self.session.execute(select(ItemCodeAliasModel))).scalars().all()
        return [_to_alias(row) for row in rows]

    async def _find(self, normalized: str) -> ItemCodeAliasModel | None:
        stmt = select(ItemCodeAliasModel).where(
            ItemCodeAliasModel.alias_normalized == normalized
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()


class AliasLearner:
    """Explicit write-back command for the confirmation loop.

    Only the confirmation path calls ``learn``. Disable it for deterministic
    runs where the dictionary must not change.
    """

    def __init__(self, session: AsyncSession, enabled: bool = True):
        self.session = session
        self.enabled = enabled
        self.aliases = AliasRegistry(session)

    async def learn(
        self, label: str, code: str, confidence: float = 1.0
    ) -> ItemCodeAlias | None:
        """Record ``label`` as a user-confirmed alias of ``code``.

        Returns:
            The written alias, or None when learning is disabled

        Raises:
            NotFoundError: If ``code`` is not a registered item code
        """
        if not self.enabled:
            return None

        row = (
            await self.session.execute(select(ItemCodeModel).where(ItemCodeModel.code == code))
        ).scalar_one_or_none()
        if row is None:
            raise NotFoundError("Item code", code)

        alias, created = await self.aliases.create(
            label, row.id, source=AliasSource.USER_CONFIRMED, confidence=confidence
        )
        logger.info(
            "Learned alias %r -> %s (%s)", label, code, "created" if created else "updated"
        )
        return alias
