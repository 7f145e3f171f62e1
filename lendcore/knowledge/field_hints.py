"""Checklist requirement -> expected canonical field paths."""

from __future__ import annotations

from pathlib import Path

from lendcore.resources import load_field_hints


class FieldHintRegistry:
    """Looks up which knowledge fields a checklist requirement usually provides.

    An exact (case-insensitive) name match wins. Otherwise every key that
    contains, or is contained in, the requirement name is a candidate and the
    longest key wins, ties broken alphabetically.
    """

    def __init__(self, hints: dict[str, list[str]]):
        self.hints = dict(hints)
        self._by_lower = {key.lower(): key for key in self.hints}

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> FieldHintRegistry:
        return cls(load_field_hints(path))

    def hints_for(self, name: str) -> list[str]:
        if name in self.hints:
            return list(self.hints[name])

        lowered = name.strip().lower()
        if not lowered:
            return []
        if lowered in self._by_lower:
            return list(self.hints[self._by_lower[lowered]])

        candidates = [
            key
            for key in self.hints
            if key.lower() in lowered or lowered in key.lower()
        ]
        if not candidates:
            return []
        best = sorted(candidates, key=lambda key: (-len(key), key))[0]
        return list(self.hints[best])
