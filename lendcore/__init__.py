"""lendcore - codification and reconciliation engine for lending back offices."""

__version__ = "0.1.0"
