"""Codification pipeline: Fast Pass, then Smart Pass on a miss.

    extracted items -> FastPassMatcher -> (miss) SmartPassMatcher -> CodifiedExtraction

Smart Pass failures degrade single items to ``unmatched``; they never abort
the batch.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from lendcore.canonical.normalize import normalize_label
from lendcore.codification.extractions import ExtractionService
from lendcore.config import MatchingConfig
from lendcore.matching.classifier import Classifier
from lendcore.matching.fast_pass import FastPassMatcher
from lendcore.matching.smart_pass import SmartPassMatcher, apply_smart_pass
from lendcore.models import (
    CategoryVocabularyEntry,
    CodeVocabularyEntry,
    CodifiedExtraction,
    CodifiedItem,
    DataType,
    ExtractedItem,
    MappingStatus,
)
from lendcore.registry.aliases import AliasRegistry
from lendcore.registry.categories import CategoryRegistry
from lendcore.registry.codes import CodeRegistry

logger = logging.getLogger(__name__)

# Structured extraction payload section -> category
COST_CATEGORY_NAMES = {
    "site_costs": "Site Costs",
    "net_construction_costs": "Construction Costs",
    "professional_fees": "Professional Fees",
    "financing_legal_fees": "Financing Costs",
    "disposal_fees": "Disposal Costs",
}


def _guess_type(amount: Any, currency: str | None) -> DataType:
    if currency:
        return DataType.CURRENCY
    if isinstance(amount, (int, float)) and not isinstance(amount, bool):
        if 0 <= amount <= 1 and amount != int(amount):
            return DataType.PERCENTAGE
        return DataType.NUMBER
    return DataType.STRING


def extract_items_from_data(data: dict[str, Any]) -> list[ExtractedItem]:
    """Flatten a structured extraction payload into line items.

    Sections read: ``costs``, ``cost_categories``, ``financing``, ``plots``,
    ``revenue``, ``profit``, ``units``. Category items duplicating a ``costs``
    entry (same label and amount) are skipped.
    """
    items: list[ExtractedItem] = []
    currency = data.get("detected_currency") or "GBP"

    def add(name: Any, amount: Any, category: str, item_currency: str | None) -> None:
        items.append(
            ExtractedItem(
                original_name=str(name),
                value=amount,
                data_type=_guess_type(amount, item_currency),
                category=category,
            )
        )

    for cost in data.get("costs") or []:
        if cost.get("type") and cost.get("amount") is not None:
            add(
                cost["type"],
                cost["amount"],
                cost.get("category") or "Other",
                cost.get("currency") or currency,
            )

    for key, section in (data.get("cost_categories") or {}).items():
        if not section or not isinstance(section.get("items"), list):
            continue
        category = COST_CATEGORY_NAMES.get(key, key)
        for entry in section["items"]:
            if not entry.get("type") or entry.get("amount") is None:
                continue
            duplicate = any(
                normalize_label(existing.original_name) == normalize_label(entry["type"])
                and existing.value.payload == entry["amount"]
                for existing in items
            )
            if not duplicate:
                add(
                    entry["type"],
                    entry["amount"],
                    category,
                    entry.get("currency") or section.get("currency") or currency,
                )

    financing = data.get("financing") or {}
    if financing.get("loan_amount"):
        add("Loan Amount", financing["loan_amount"], "Financing Costs",
            financing.get("currency") or currency)
    if financing.get("interest_rate") is not None:
        add("Interest Rate", financing["interest_rate"], "Financing Costs", None)

    for plot in data.get("plots") or []:
        if plot.get("name") and plot.get("cost") is not None:
            add(f"Plot: {plot['name']}", plot["cost"], "Plots", plot.get("currency") or currency)

    revenue = data.get("revenue") or {}
    if revenue.get("total_sales"):
        add("Total Sales", revenue["total_sales"], "Revenue", revenue.get("currency") or currency)

    profit = data.get("profit") or {}
    if profit.get("total"):
        add("Total Profit", profit["total"], "Profit", profit.get("currency") or currency)

    units = data.get("units") or {}
    if units.get("count"):
        add("Unit Count", units["count"], "Plots", None)

    return items


class CodificationPipeline:
    """Codifies extracted items for one document and persists the result."""

    def __init__(
        self,
        session: AsyncSession,
        classifier: Classifier | None = None,
        config: MatchingConfig | None = None,
        learn_aliases: bool | None = None,
    ):
        self.session = session
        self.config = config or MatchingConfig()
        self.learn_aliases = (
            self.config.learn_aliases if learn_aliases is None else learn_aliases
        )
        self.smart_pass = (
            SmartPassMatcher(
                classifier,
                suggest_threshold=self.config.smart_pass_suggest_threshold,
                timeout_seconds=self.config.classifier_timeout_seconds,
            )
            if classifier is not None
            else None
        )
        self.extractions = ExtractionService(session, learn_aliases=self.learn_aliases)
        self.aliases = AliasRegistry(session)

    async def codify(
        self,
        document_id: str,
        items: list[ExtractedItem],
        document_name: str | None = None,
        project_id: str | None = None,
    ) -> CodifiedExtraction:
        """Run both passes over ``items`` and store one extraction.

        Without a classifier, Fast Pass misses stay ``pending_review`` and the
        extraction is stored with ``smart_pass_completed=False``.
        """
        matcher = await FastPassMatcher.load(self.session)
        codified: list[CodifiedItem] = []
        misses: list[int] = []

        for item in items:
            result = matcher.match(item.original_name)
            if result.matched:
                codified.append(
                    CodifiedItem(
                        original_name=item.original_name,
                        value=item.value,
                        data_type=item.data_type,
                        category=item.category,
                        mapping_status=MappingStatus.MATCHED,
                        item_code=result.code,
                        confidence=result.confidence,
                        matched_alias=result.matched_alias,
                        normalization_confidence=result.confidence,
                        is_subtotal=item.is_subtotal,
                        subtotal_reason=item.subtotal_reason,
                    )
                )
                if self.learn_aliases and result.alias_id is not None:
                    await self.aliases.increment_usage(result.alias_id)
            else:
                misses.append(len(codified))
                codified.append(
                    CodifiedItem(
                        original_name=item.original_name,
                        value=item.value,
                        data_type=item.data_type,
                        category=item.category,
                        mapping_status=MappingStatus.PENDING_REVIEW,
                        is_subtotal=item.is_subtotal,
                        subtotal_reason=item.subtotal_reason,
                    )
                )

        logger.info(
            "Fast Pass for document %s: %d/%d matched",
            document_id,
            len(codified) - len(misses),
            len(codified),
        )

        if self.smart_pass is not None and misses:
            codified = await self._run_smart_pass(codified, misses)

        return await self.extractions.create(
            document_id=document_id,
            items=codified,
            document_name=document_name,
            project_id=project_id,
            fast_pass_completed=True,
            smart_pass_completed=self.smart_pass is not None,
        )

    async def run_smart_pass(self, extraction_id: UUID) -> CodifiedExtraction:
        """Classify the ``pending_review`` items of a stored extraction.

        Items that already carry a suggestion are left alone.
        """
        extraction = await self.extractions.get(extraction_id)
        if self.smart_pass is None:
            return extraction

        items = list(extraction.items)
        misses = [
            index
            for index, item in enumerate(items)
            if item.mapping_status == MappingStatus.PENDING_REVIEW and not item.suggested_code
        ]
        if misses:
            items = await self._run_smart_pass(items, misses)
        return await self.extractions.update_after_smart_pass(extraction_id, items)

    async def _run_smart_pass(
        self, items: list[CodifiedItem], indexes: list[int]
    ) -> list[CodifiedItem]:
        categories, codes = await self._vocabulary()
        items = list(items)
        for index in indexes:
            item = items[index]
            result = await self.smart_pass.match(
                label=item.original_name,
                category=item.category,
                value=item.value.payload,
                categories=categories,
                codes=codes,
            )
            items[index] = apply_smart_pass(item, result)
        return items

    async def _vocabulary(
        self,
    ) -> tuple[list[CategoryVocabularyEntry], list[CodeVocabularyEntry]]:
        categories = await CategoryRegistry(self.session).for_prompt()
        codes = await CodeRegistry(self.session).vocabulary(
            max_aliases=self.config.max_aliases_per_code
        )
        return categories, codes
