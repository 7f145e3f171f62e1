"""Category totals for the Project Data Library.

Totals are virtual: they are computed on read and never persisted, unless a
user pins one with a manual override row (code ``<total.<slug>>``). The
override wins, but still carries the computed figure for comparison.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.canonical.normalize import get_category_total_code
from lendcore.db.models import utcnow
from lendcore.library.ledger import DataLibrary
from lendcore.models import DataType, ProjectDataItem, ProjectLibrary

COMPUTED_SOURCE = "Computed Total"


@dataclass
class _CategoryTotal:
    category: str
    total: float = 0.0
    item_count: int = 0
    override: ProjectDataItem | None = None


def compute_category_totals(
    project_id: str, items: list[ProjectDataItem]
) -> list[ProjectDataItem]:
    """One total per category present in ``items``.

    Categories are bucketed by their total code, so spellings that slug the
    same ("Purchase Costs", "purchase costs") share one total. The bucket is
    named after the first regular row seen.

    Sums ``current_value_normalized`` of currency rows, skipping subtotals,
    computed rows and the category's own total row. Deleted rows are ignored.
    """
    totals: dict[str, _CategoryTotal] = {}

    for item in items:
        if item.is_deleted or item.is_computed:
            continue
        total_code = get_category_total_code(item.category)
        bucket = totals.get(total_code)

        if item.item_code == total_code:
            if bucket is None:
                bucket = totals[total_code] = _CategoryTotal(category=item.category)
            bucket.override = item
            continue

        if bucket is None:
            bucket = totals[total_code] = _CategoryTotal(category=item.category)
        elif bucket.item_count == 0:
            # Only the override was seen so far
            bucket.category = item.category

        if item.current_data_type == DataType.CURRENCY and not item.is_subtotal:
            bucket.total += item.current_value_normalized
        bucket.item_count += 1

    result: list[ProjectDataItem] = []
    for total_code, bucket in totals.items():
        category = bucket.category
        if bucket.override is not None:
            result.append(
                bucket.override.model_copy(
                    update={
                        "category": category,
                        "is_computed": False,
                        "computed_from_category": category,
                        "computed_total": bucket.total,
                        "computed_item_count": bucket.item_count,
                    }
                )
            )
            continue

        result.append(
            ProjectDataItem(
                project_id=project_id,
                item_code=total_code,
                category=category,
                original_name=f"Total {category}",
                current_value=bucket.total,
                current_value_normalized=bucket.total,
                current_data_type=DataType.CURRENCY,
                current_source_document_id="computed",
                current_source_document_name=COMPUTED_SOURCE,
                last_updated_at=utcnow(),
                is_computed=True,
                computed_from_category=category,
                computed_total=bucket.total,
                computed_item_count=bucket.item_count,
            )
        )
    return result


async def get_project_library(session: AsyncSession, project_id: str) -> ProjectLibrary:
    """Active rows plus category totals (override rows appear only as totals)."""
    items = await DataLibrary(session).list_items(project_id)
    regular = [item for item in items if item.item_code != get_category_total_code(item.category)]
    return ProjectLibrary(
        project_id=project_id,
        items=regular,
        totals=compute_category_totals(project_id, items),
    )


async def get_project_library_by_category(
    session: AsyncSession, project_id: str
) -> dict[str, list[ProjectDataItem]]:
    """Regular rows grouped by category, each group ending with its total."""
    library = await get_project_library(session, project_id)
    grouped: dict[str, list[ProjectDataItem]] = defaultdict(list)
    for item in library.items:
        grouped[item.category].append(item)
    for total in library.totals:
        grouped[total.category].append(total)
    return dict(grouped)
