"""Smart Pass: classifier fallback for Fast Pass misses.

The classifier call is the only external I/O in codification. It is awaited
once with a timeout and never retried; any failure degrades the item to
``unmatched`` instead of failing the batch.
"""

from __future__ import annotations

import asyncio
import logging

from lendcore.matching.classifier import Classifier
from lendcore.models import (
    CategoryVocabularyEntry,
    ClassificationRequest,
    CodeVocabularyEntry,
    CodifiedItem,
    MappingStatus,
    SmartPassResult,
)

logger = logging.getLogger(__name__)


class SmartPassMatcher:
    """Wraps a classifier with thresholding, timeout and failure absorption."""

    def __init__(
        self,
        classifier: Classifier,
        suggest_threshold: float = 0.9,
        timeout_seconds: float = 30.0,
    ):
        self.classifier = classifier
        self.suggest_threshold = suggest_threshold
        self.timeout_seconds = timeout_seconds

    async def match(
        self,
        label: str,
        category: str,
        value: object = None,
        categories: list[CategoryVocabularyEntry] | None = None,
        codes: list[CodeVocabularyEntry] | None = None,
    ) -> SmartPassResult:
        """Classify one label.

        Returns:
            SmartPassResult with status ``suggested`` (confidence at or above the
            threshold), ``pending_review`` (below) or ``unmatched`` (no answer,
            timeout or error)
        """
        request = ClassificationRequest(
            label=label,
            category=category,
            value=value,
            categories=categories or [],
            codes=codes or [],
        )

        try:
            suggestion = await asyncio.wait_for(
                self.classifier.classify(request), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Smart Pass timed out after %.1fs for %r", self.timeout_seconds, label
            )
            return SmartPassResult(status=MappingStatus.UNMATCHED, error="timeout")
        except Exception as e:
            logger.error("Smart Pass failed for %r: %s", label, e)
            return SmartPassResult(status=MappingStatus.UNMATCHED, error=str(e))

        if suggestion is None or not suggestion.code:
            return SmartPassResult(status=MappingStatus.UNMATCHED)

        status = (
            MappingStatus.SUGGESTED
            if suggestion.confidence >= self.suggest_threshold
            else MappingStatus.PENDING_REVIEW
        )
        return SmartPassResult(status=status, suggestion=suggestion)


def apply_smart_pass(item: CodifiedItem, result: SmartPassResult) -> CodifiedItem:
    """Stamp a Smart Pass outcome onto a codified item (returns a copy)."""
    suggestion = result.suggestion
    if result.status == MappingStatus.UNMATCHED or suggestion is None:
        return item.model_copy(
            update={
                "mapping_status": MappingStatus.UNMATCHED,
                "confidence": 0.0,
                "suggested_code": None,
                "suggested_code_name": None,
                "reasoning": result.error,
            }
        )

    update = {
        "mapping_status": result.status,
        "suggested_code": suggestion.code,
        "suggested_code_name": suggestion.display_name,
        "confidence": suggestion.confidence,
        "normalization_confidence": suggestion.confidence,
        "reasoning": suggestion.reasoning,
        "is_new_code": suggestion.is_new_code,
    }
    if suggestion.data_type is not None:
        update["data_type"] = suggestion.data_type
    return item.model_copy(update=update)
