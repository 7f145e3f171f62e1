"""Domain error taxonomy.

Operations raise these before any write; the session context manager rolls back
anything already flushed. Classifier failures never surface here: they are
absorbed into item-level ``unmatched`` status.
"""

from __future__ import annotations


class NotFoundError(LookupError):
    """Referenced extraction, item, checklist entry or code does not exist."""

    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class InvalidStateError(ValueError):
    """Operation rejected because the target is in the wrong state."""

    pass


class ConfigurationError(Exception):
    """Configuration resource is invalid or missing."""

    pass
