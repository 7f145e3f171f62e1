"""Canonical item code maintenance.

Codes follow the ``<category.item>`` grammar and are retired by deactivation.
A code can only be hard-deleted once no alias points at it.
"""

from __future__ import annotations

from collections import defaultdict
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.canonical.normalize import is_item_code
from lendcore.db.models import ItemCodeAliasModel, ItemCodeModel
from lendcore.errors import InvalidStateError, NotFoundError
from lendcore.models import CodeVocabularyEntry, DataType, ItemCode


def _to_code(row: ItemCodeModel) -> ItemCode:
    return ItemCode.model_validate(row, from_attributes=True)


class CodeRegistry:
    """CRUD over ``item_codes``."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_codes(
        self, active_only: bool = True, category: str | None = None
    ) -> list[ItemCode]:
        """Codes sorted by category, then display name."""
        stmt = select(ItemCodeModel)
        if active_only:
            stmt = stmt.where(ItemCodeModel.is_active.is_(True))
        if category is not None:
            stmt = stmt.where(ItemCodeModel.category == category)
        stmt = stmt.order_by(ItemCodeModel.category.asc(), ItemCodeModel.display_name.asc())

        rows = (await self.session.execute(stmt)).scalars().all()
        return [_to_code(row) for row in rows]

    async def get(self, code_id: UUID) -> ItemCode:
        return _to_code(await self._get_row(code_id))

    async def get_by_code(self, code: str) -> ItemCode | None:
        row = await self._find(code)
        return _to_code(row) if row else None

    async def get_categories(self) -> list[str]:
        """Distinct categories of active codes, sorted."""
        stmt = (
            select(ItemCodeModel.category)
            .where(ItemCodeModel.is_active.is_(True))
            .distinct()
            .order_by(ItemCodeModel.category.asc())
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def get_grouped_by_category(self) -> dict[str, list[ItemCode]]:
        grouped: dict[str, list[ItemCode]] = defaultdict(list)
        for code in await self.list_codes():
            grouped[code.category].append(code)
        return dict(grouped)

    async def create(
        self,
        code: str,
        display_name: str,
        category: str,
        data_type: DataType = DataType.CURRENCY,
        description: str | None = None,
        is_system_default: bool = False,
    ) -> ItemCode:
        """Create a new canonical code.

        Raises:
            InvalidStateError: On malformed or duplicate codes
        """
        code = code.strip()
        if not is_item_code(code):
            raise InvalidStateError(f"Invalid item code format: {code!r}")
        if await self._find(code) is not None:
            raise InvalidStateError(f"Item code already exists: {code}")

        row = ItemCodeModel(
            code=code,
            display_name=display_name.strip(),
            category=category.strip(),
            data_type=DataType(data_type).value,
            description=description,
            is_active=True,
            is_system_default=is_system_default,
        )
        self.session.add(row)
        await self.session.flush()
        return _to_code(row)

    async def update(
        self,
        code_id: UUID,
        code: str | None = None,
        display_name: str | None = None,
        category: str | None = None,
        data_type: DataType | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> ItemCode:
        """Update a code. Renaming the code string re-points its aliases.

        Raises:
            NotFoundError: If the code does not exist
            InvalidStateError: If the new code string is malformed or taken
        """
        row = await self._get_row(code_id)

        if code is not None and code != row.code:
            if not is_item_code(code):
                raise InvalidStateError(f"Invalid item code format: {code!r}")
            if await self._find(code) is not None:
                raise InvalidStateError(f"Item code already exists: {code}")
            await self.session.execute(
                update(ItemCodeAliasModel)
                .where(ItemCodeAliasModel.canonical_code_id == row.id)
                .values(canonical_code=code)
            )
            row.code = code

        if display_name is not None:
            row.display_name = display_name
        if category is not None:
            row.category = category
        if data_type is not None:
            row.data_type = DataType(data_type).value
        if description is not None:
            row.description = description
        if is_active is not None:
            row.is_active = is_active

        await self.session.flush()
        return _to_code(row)

    async def deactivate(self, code_id: UUID) -> ItemCode:
        return await self.update(code_id, is_active=False)

    async def remove(self, code_id: UUID) -> None:
        """Hard-delete a code with no aliases.

        Raises:
            InvalidStateError: If aliases still reference the code
        """
        row = await self._get_row(code_id)
        alias_count = await self.session.scalar(
            select(func.count()).where(ItemCodeAliasModel.canonical_code_id == row.id)
        )
        if alias_count:
            raise InvalidStateError(
                f"Code {row.code} has {alias_count} aliases. Delete aliases first."
            )
        await self.session.delete(row)
        await self.session.flush()

    async def change_category(self, code_id: UUID, category: str) -> ItemCode:
        return await self.update(code_id, category=category)

    async def bulk_change_category(self, code_ids: list[UUID], category: str) -> int:
        """Move several codes to one category. Returns the number moved."""
        moved = 0
        for code_id in code_ids:
            await self.change_category(code_id, category)
            moved += 1
        return moved

    async def bulk_create(self, codes: list[ItemCode]) -> dict[str, int]:
        """Create codes, skipping any that already exist."""
        created = skipped = 0
        for code in codes:
            if await self._find(code.code) is not None:
                skipped += 1
                continue
            await self.create(
                code=code.code,
                display_name=code.display_name,
                category=code.category,
                data_type=code.data_type,
                description=code.description,
                is_system_default=code.is_system_default,
            )
            created += 1
        return {"created": created, "skipped": skipped}

    async def vocabulary(self, max_aliases: int = 5) -> list[CodeVocabularyEntry]:
        """Active codes with their best aliases, for the classifier prompt."""
        codes = await self.list_codes()

        alias_rows = (
            await self.session.execute(
                select(ItemCodeAliasModel).order_by(
                    ItemCodeAliasModel.confidence.desc(),
                    ItemCodeAliasModel.usage_count.desc(),
                )
            )
        ).scalars().all()

        aliases_by_code: dict[UUID, list[str]] = defaultdict(list)
        for alias in alias_rows:
            bucket = aliases_by_code[alias.canonical_code_id]
            if len(bucket) < max_aliases:
                bucket.append(alias.alias)

        return [
            CodeVocabularyEntry(
                code=code.code,
                display_name=code.display_name,
                category=code.category,
                data_type=code.data_type,
                aliases=aliases_by_code.get(code.id, []),
            )
            for code in codes
        ]

    async def _find(self, code: str) -> ItemCodeModel | None:
        stmt = select(ItemCodeModel).where(ItemCodeModel.code == code)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _get_row(self, code_id: UUID) -> ItemCodeModel:
        row = await self.session.get(ItemCodeModel, code_id)
        if row is None:
            raise NotFoundError("Item code", code_id)
        return row
