"""Codification: turn extracted line items into canonical item codes."""

from lendcore.codification.extractions import ExtractionService, ModelRunReadiness
from lendcore.codification.pipeline import CodificationPipeline, extract_items_from_data

__all__ = [
    "CodificationPipeline",
    "ExtractionService",
    "ModelRunReadiness",
    "extract_items_from_data",
]
