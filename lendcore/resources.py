"""YAML mapping resources.

Seed vocabulary, checklist field hints, legacy intelligence paths and checklist
requirement templates are data, not code. Each loader takes an optional path so
tests and deployments can inject their own tables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from lendcore.config import ResourceConfig
from lendcore.errors import ConfigurationError
from lendcore.models import DataType, OwnerType

logger = logging.getLogger(__name__)


@dataclass
class VocabularyCategory:
    name: str
    display_order: int = 999
    description: str = ""
    examples: list[str] = field(default_factory=list)


@dataclass
class VocabularyCode:
    code: str
    display_name: str
    category: str
    data_type: DataType = DataType.CURRENCY
    description: str | None = None
    aliases: list[str] = field(default_factory=list)


@dataclass
class Vocabulary:
    """Seed vocabulary: system categories plus default codes and aliases."""

    categories: list[VocabularyCategory] = field(default_factory=list)
    codes: list[VocabularyCode] = field(default_factory=list)


@dataclass
class RequirementTemplate:
    """One document requirement inside a checklist template."""

    name: str
    category: str
    phase_required: str | None = None
    priority: str = "required"
    description: str | None = None
    matching_document_types: list[str] = field(default_factory=list)
    order: int = 0


@dataclass
class ChecklistTemplate:
    name: str
    owner_type: OwnerType
    requirements: list[RequirementTemplate] = field(default_factory=list)


def _read_yaml(path: Path) -> dict[str, Any]:
    """Read a versioned YAML mapping file.

    Raises:
        ConfigurationError: If the file is missing, malformed or not a mapping
    """
    if not path.exists():
        raise ConfigurationError(f"Resource file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping at the top of {path}, got {type(data)}")

    return data


def _string_map(data: Any, path: Path, section: str) -> dict[str, str]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section '{section}' in {path} must be a mapping")
    return {str(key): str(value) for key, value in data.items()}


def load_vocabulary(path: Path | None = None) -> Vocabulary:
    """Load the seed vocabulary (``vocabulary.yaml``)."""
    path = path or ResourceConfig().vocabulary_path
    data = _read_yaml(path)

    vocabulary = Vocabulary()
    for idx, entry in enumerate(data.get("categories") or []):
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ConfigurationError(f"Category at index {idx} in {path} has no name")
        vocabulary.categories.append(
            VocabularyCategory(
                name=entry["name"],
                display_order=int(entry.get("display_order", 999)),
                description=entry.get("description") or "",
                examples=list(entry.get("examples") or []),
            )
        )

    for idx, entry in enumerate(data.get("codes") or []):
        if not isinstance(entry, dict) or "code" not in entry or "category" not in entry:
            raise ConfigurationError(f"Code at index {idx} in {path} needs 'code' and 'category'")
        try:
            data_type = DataType(entry.get("data_type", "currency"))
        except ValueError as e:
            raise ConfigurationError(f"Code {entry['code']} in {path}: {e}") from e
        vocabulary.codes.append(
            VocabularyCode(
                code=entry["code"],
                display_name=entry.get("display_name") or entry["code"],
                category=entry["category"],
                data_type=data_type,
                description=entry.get("description"),
                aliases=list(entry.get("aliases") or []),
            )
        )

    logger.debug(
        "Loaded vocabulary: %d categories, %d codes",
        len(vocabulary.categories),
        len(vocabulary.codes),
    )
    return vocabulary


def load_field_hints(path: Path | None = None) -> dict[str, list[str]]:
    """Load checklist requirement name -> expected canonical field paths."""
    path = path or ResourceConfig().field_hints_path
    data = _read_yaml(path)

    hints = data.get("hints") or {}
    if not isinstance(hints, dict):
        raise ConfigurationError(f"Section 'hints' in {path} must be a mapping")

    result: dict[str, list[str]] = {}
    for name, fields in hints.items():
        if not isinstance(fields, list):
            raise ConfigurationError(f"Hint '{name}' in {path} must list field paths")
        result[str(name)] = [str(f) for f in fields]
    return result


def load_legacy_paths(path: Path | None = None) -> dict[OwnerType, dict[str, str]]:
    """Load legacy intelligence path -> canonical field path, per owner type."""
    path = path or ResourceConfig().legacy_paths_path
    data = _read_yaml(path)
    return {
        OwnerType.CLIENT: _string_map(data.get("client"), path, "client"),
        OwnerType.PROJECT: _string_map(data.get("project"), path, "project"),
    }


def load_checklist_templates(path: Path | None = None) -> dict[str, ChecklistTemplate]:
    """Load checklist requirement templates keyed by template name."""
    path = path or ResourceConfig().checklist_templates_path
    data = _read_yaml(path)

    templates: dict[str, ChecklistTemplate] = {}
    for name, body in (data.get("templates") or {}).items():
        if not isinstance(body, dict):
            raise ConfigurationError(f"Template '{name}' in {path} must be a mapping")
        try:
            owner_type = OwnerType(body.get("owner_type", "project"))
        except ValueError as e:
            raise ConfigurationError(f"Template '{name}' in {path}: {e}") from e

        requirements = []
        for order, entry in enumerate(body.get("requirements") or [], start=1):
            if not isinstance(entry, dict) or not entry.get("name"):
                raise ConfigurationError(f"Requirement {order} of '{name}' has no name")
            requirements.append(
                RequirementTemplate(
                    name=entry["name"],
                    category=entry.get("category") or "Other",
                    phase_required=entry.get("phase_required"),
                    priority=entry.get("priority", "required"),
                    description=entry.get("description"),
                    matching_document_types=list(entry.get("matching_document_types") or []),
                    order=int(entry.get("order", order)),
                )
            )
        templates[name] = ChecklistTemplate(
            name=name, owner_type=owner_type, requirements=requirements
        )
    return templates
