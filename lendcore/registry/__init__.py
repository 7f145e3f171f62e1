"""Canonical registry: item codes, categories and the alias dictionary."""
