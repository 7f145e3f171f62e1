"""Item category maintenance.

Categories group item codes in review screens and are handed to the
classifier as vocabulary. System categories are immutable.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.canonical.normalize import normalize_category
from lendcore.db.models import ItemCategoryModel, ItemCodeModel
from lendcore.errors import InvalidStateError, NotFoundError
from lendcore.models import CategoryVocabularyEntry, ItemCategory


def _to_category(row: ItemCategoryModel) -> ItemCategory:
    return ItemCategory.model_validate(row, from_attributes=True)


class CategoryRegistry:
    """CRUD over ``item_categories``."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_categories(self) -> list[ItemCategory]:
        """All categories ordered by display order, then name."""
        stmt = select(ItemCategoryModel).order_by(
            ItemCategoryModel.display_order.asc(), ItemCategoryModel.name.asc()
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [_to_category(row) for row in rows]

    async def get(self, category_id: UUID) -> ItemCategory:
        return _to_category(await self._get_row(category_id))

    async def get_by_name(self, name: str) -> ItemCategory | None:
        row = await self._find(normalize_category(name))
        return _to_category(row) if row else None

    async def create(
        self,
        name: str,
        description: str = "",
        examples: list[str] | None = None,
        display_order: int = 999,
        is_system: bool = False,
    ) -> ItemCategory:
        """Create a category.

        Raises:
            InvalidStateError: If a category with the same normalized name exists
        """
        normalized = normalize_category(name)
        if not normalized:
            raise InvalidStateError("Category name must not be empty")
        if await self._find(normalized) is not None:
            raise InvalidStateError(f"Category already exists: {name}")

        row = ItemCategoryModel(
            name=name.strip(),
            normalized_name=normalized,
            description=description,
            examples=list(examples or []),
            display_order=display_order,
            is_system=is_system,
        )
        self.session.add(row)
        await self.session.flush()
        return _to_category(row)

    async def update(
        self,
        category_id: UUID,
        name: str | None = None,
        description: str | None = None,
        examples: list[str] | None = None,
        display_order: int | None = None,
    ) -> ItemCategory:
        """Update a category; system categories keep their name.

        Raises:
            NotFoundError: If the category does not exist
            InvalidStateError: On system rename or a name collision
        """
        row = await self._get_row(category_id)

        if name is not None and name.strip() != row.name:
            if row.is_system:
                raise InvalidStateError("Cannot rename system categories")
            normalized = normalize_category(name)
            existing = await self._find(normalized)
            if existing is not None and existing.id != row.id:
                raise InvalidStateError(f"Category already exists: {name}")
            row.name = name.strip()
            row.normalized_name = normalized

        if description is not None:
            row.description = description
        if examples is not None:
            row.examples = list(examples)
        if display_order is not None:
            row.display_order = display_order

        await self.session.flush()
        return _to_category(row)

    async def remove(self, category_id: UUID) -> None:
        """Delete a non-system category with no codes assigned.

        Raises:
            InvalidStateError: For system categories or categories in use
        """
        row = await self._get_row(category_id)
        if row.is_system:
            raise InvalidStateError("Cannot delete system categories")

        in_use = await self.session.execute(
            select(ItemCodeModel.id).where(ItemCodeModel.category == row.name).limit(1)
        )
        if in_use.first() is not None:
            raise InvalidStateError(
                "Cannot delete category that has item codes assigned. "
                "Move or delete the codes first."
            )

        await self.session.delete(row)
        await self.session.flush()

    async def for_prompt(self) -> list[CategoryVocabularyEntry]:
        """Category vocabulary for the classifier."""
        return [
            CategoryVocabularyEntry(
                name=category.name,
                description=category.description,
                examples=category.examples,
            )
            for category in await self.list_categories()
        ]

    async def _find(self, normalized: str) -> ItemCategoryModel | None:
        stmt = select(ItemCategoryModel).where(
            ItemCategoryModel.normalized_name == normalized
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _get_row(self, category_id: UUID) -> ItemCategoryModel:
        row = await self.session.get(ItemCategoryModel, category_id)
        if row is None:
            raise NotFoundError("Category", category_id)
        return row
