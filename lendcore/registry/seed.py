"""Seed the canonical registry from the vocabulary resource.

Re-running is idempotent: existing categories and codes are left untouched and
aliases already mapped to the same code are skipped.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.registry.aliases import AliasRegistry
from lendcore.registry.categories import CategoryRegistry
from lendcore.registry.codes import CodeRegistry
from lendcore.resources import Vocabulary, load_vocabulary

logger = logging.getLogger(__name__)


class SeedResult(BaseModel):
    categories_created: int = 0
    codes_created: int = 0
    codes_skipped: int = 0
    aliases_created: int = 0
    aliases_skipped: int = 0


async def seed_registry(
    session: AsyncSession,
    vocabulary: Vocabulary | None = None,
    path: Path | None = None,
) -> SeedResult:
    """Load system categories, default codes and their aliases.

    Args:
        session: Database session
        vocabulary: Pre-loaded vocabulary (takes precedence over ``path``)
        path: vocabulary.yaml location (defaults to the packaged resource)

    Returns:
        SeedResult with created/skipped counters
    """
    vocabulary = vocabulary or load_vocabulary(path)
    result = SeedResult()

    categories = CategoryRegistry(session)
    for category in vocabulary.categories:
        if await categories.get_by_name(category.name) is not None:
            continue
        await categories.create(
            name=category.name,
            description=category.description,
            examples=category.examples,
            display_order=category.display_order,
            is_system=True,
        )
        result.categories_created += 1

    codes = CodeRegistry(session)
    aliases = AliasRegistry(session)
    for entry in vocabulary.codes:
        code = await codes.get_by_code(entry.code)
        if code is None:
            code = await codes.create(
                code=entry.code,
                display_name=entry.display_name,
                category=entry.category,
                data_type=entry.data_type,
                description=entry.description,
                is_system_default=True,
            )
            result.codes_created += 1
        else:
            result.codes_skipped += 1

        # The display name doubles as an alias
        labels = [entry.display_name, *entry.aliases]
        bulk = await aliases.bulk_create([(label, code.id) for label in labels])
        result.aliases_created += bulk.created
        result.aliases_skipped += bulk.skipped

    logger.info(
        "Seeded registry: %d categories, %d codes, %d aliases",
        result.categories_created,
        result.codes_created,
        result.aliases_created,
    )
    return result
