"""Migration of legacy nested intelligence records into knowledge items.

A legacy record is a nested dict of sections (``identity``, ``financials``...)
plus optional ``evidenceTrail`` (``[{fieldPath, value}]``) and
``extractedAttributes`` (``[{key, value}]``). Each leaf becomes one knowledge
item at its canonical field path; unmapped paths land under ``custom.``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.knowledge.items import KnowledgeStore
from lendcore.knowledge.paths import (
    flatten_object,
    get_category_from_path,
    get_label_from_path,
    infer_value_type,
)
from lendcore.matching.fast_pass import FieldPathResolver
from lendcore.models import (
    KnowledgeItemInput,
    KnowledgeOwner,
    KnowledgeSourceType,
    MigrationResult,
    MigrationSummary,
    OwnerType,
)
from lendcore.resources import load_legacy_paths

__all__ = [
    "IntelligenceMigrator",
    "LegacyIntelligence",
    "flatten_object",
    "get_category_from_path",
    "get_label_from_path",
    "infer_value_type",
    "migrate_all_intelligence",
    "migrate_intelligence",
]

logger = logging.getLogger(__name__)

MIGRATION_USER = "migration"

SECTIONS = {
    OwnerType.CLIENT: ("identity", "primaryContact", "addresses", "banking", "borrowerProfile"),
    OwnerType.PROJECT: ("overview", "location", "financials", "timeline", "development"),
}


@dataclass
class LegacyIntelligence:
    owner: KnowledgeOwner
    payload: dict[str, Any]


def collect_legacy_fields(
    owner_type: OwnerType, payload: dict[str, Any]
) -> tuple[list[tuple[str, Any]], list[str]]:
    """Flatten a legacy record into ``(legacy_path, value)`` pairs.

    Evidence trail entries only add paths the sections did not already provide.
    Malformed list entries are reported as errors and skipped.
    """
    fields: list[tuple[str, Any]] = []
    errors: list[str] = []
    for section in SECTIONS[OwnerType(owner_type)]:
        data = payload.get(section)
        if isinstance(data, dict):
            fields.extend(flatten_object(data, section))

    seen = {path for path, _ in fields}
    for evidence in payload.get("evidenceTrail") or []:
        if not isinstance(evidence, dict):
            errors.append(f"Malformed evidence entry: {evidence!r}")
            continue
        path = evidence.get("fieldPath")
        if path and path not in seen:
            fields.append((path, evidence.get("value")))
            seen.add(path)

    for attribute in payload.get("extractedAttributes") or []:
        if not isinstance(attribute, dict) or not attribute.get("key"):
            errors.append(f"Malformed extracted attribute: {attribute!r}")
            continue
        fields.append((f"custom.{attribute['key']}", attribute.get("value")))
    return fields, errors


class IntelligenceMigrator:
    """Writes legacy intelligence into the knowledge store."""

    def __init__(self, session: AsyncSession, resolver: FieldPathResolver | None = None):
        self.session = session
        self.store = KnowledgeStore(session)
        self.resolver = resolver or FieldPathResolver(load_legacy_paths())

    async def migrate_intelligence(
        self, owner: KnowledgeOwner, payload: dict[str, Any], dry_run: bool = False
    ) -> MigrationResult:
        """Migrate one owner's record.

        Empty values and paths that already hold knowledge are skipped. With
        ``dry_run`` nothing is written but counts are reported as if it were.
        """
        result = MigrationResult(
            owner_type=owner.owner_type, owner_id=owner.owner_id, dry_run=dry_run
        )
        planned: set[str] = set()
        fields, errors = collect_legacy_fields(owner.owner_type, payload)
        result.errors.extend(errors)

        for legacy_path, value in fields:
            if value is None or value == "":
                result.skipped += 1
                continue

            if legacy_path.startswith("custom."):
                path, is_canonical = legacy_path, False
            else:
                resolved = self.resolver.resolve(owner.owner_type, legacy_path)
                path, is_canonical = resolved.field_path, resolved.is_canonical
            if path in planned or await self.store.get_field_history(owner, path):
                result.skipped += 1
                continue
            planned.add(path)

            if not dry_run:
                await self.store.add_item(
                    owner,
                    KnowledgeItemInput(
                        field_path=path,
                        value=value,
                        value_type=infer_value_type(value, path),
                        label=get_label_from_path(path),
                        category=get_category_from_path(path),
                        is_canonical=is_canonical,
                        source_type=KnowledgeSourceType.MIGRATION,
                        original_label=legacy_path,
                        added_by=MIGRATION_USER,
                    ),
                )
            result.added += 1

        logger.info(
            "%s %s %s: %d added, %d skipped",
            "Dry run for" if dry_run else "Migrated",
            owner.owner_type.value,
            owner.owner_id,
            result.added,
            result.skipped,
        )
        return result

    async def migrate_all_intelligence(
        self,
        records: list[LegacyIntelligence],
        limit: int = 100,
        dry_run: bool = False,
    ) -> MigrationSummary:
        """Migrate up to ``limit`` records; owners that already have knowledge are skipped.

        Callers re-invoke with the remaining records; there is no pagination loop.
        """
        summary = MigrationSummary(dry_run=dry_run)
        for record in records[:limit]:
            if await self.store.has_items(record.owner):
                summary.already_migrated += 1
                continue

            result = await self.migrate_intelligence(record.owner, record.payload, dry_run)
            if record.owner.owner_type == OwnerType.CLIENT:
                summary.clients_migrated += 1
            else:
                summary.projects_migrated += 1
            summary.items_added += result.added
            summary.items_skipped += result.skipped
            summary.errors.extend(result.errors)
        return summary


async def migrate_intelligence(
    session: AsyncSession, owner: KnowledgeOwner, payload: dict[str, Any], dry_run: bool = False
) -> MigrationResult:
    """Convenience function to migrate one legacy record."""
    return await IntelligenceMigrator(session).migrate_intelligence(owner, payload, dry_run)


async def migrate_all_intelligence(
    session: AsyncSession,
    records: list[LegacyIntelligence],
    limit: int = 100,
    dry_run: bool = False,
) -> MigrationSummary:
    """Convenience function to migrate a batch of legacy records."""
    return await IntelligenceMigrator(session).migrate_all_intelligence(records, limit, dry_run)
