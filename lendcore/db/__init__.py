"""Database layer for lendcore with async SQLAlchemy."""

from lendcore.db.connection import close_db, get_session, init_db
from lendcore.db.models import (
    Base,
    CodifiedExtractionModel,
    IntelligenceConflictModel,
    ItemCategoryModel,
    ItemCodeAliasModel,
    ItemCodeModel,
    KnowledgeChecklistItemModel,
    KnowledgeChecklistLinkModel,
    KnowledgeItemModel,
    ProjectDataHistoryModel,
    ProjectDataItemModel,
)

__all__ = [
    "Base",
    "ItemCategoryModel",
    "ItemCodeModel",
    "ItemCodeAliasModel",
    "CodifiedExtractionModel",
    "ProjectDataItemModel",
    "ProjectDataHistoryModel",
    "KnowledgeItemModel",
    "IntelligenceConflictModel",
    "KnowledgeChecklistItemModel",
    "KnowledgeChecklistLinkModel",
    "get_session",
    "init_db",
    "close_db",
]
