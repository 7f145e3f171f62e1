"""Knowledge library: field-path intelligence, conflicts and requirement checklists."""

from lendcore.knowledge.checklist import ChecklistService
from lendcore.knowledge.conflicts import ConflictService
from lendcore.knowledge.consolidation import (
    ConflictProposal,
    ConsolidationService,
    DuplicateResolution,
    Reclassification,
)
from lendcore.knowledge.field_hints import FieldHintRegistry
from lendcore.knowledge.items import KnowledgeStore
from lendcore.knowledge.migration import IntelligenceMigrator, LegacyIntelligence

__all__ = [
    "ChecklistService",
    "ConflictProposal",
    "ConflictService",
    "ConsolidationService",
    "DuplicateResolution",
    "FieldHintRegistry",
    "IntelligenceMigrator",
    "KnowledgeStore",
    "LegacyIntelligence",
    "Reclassification",
]
