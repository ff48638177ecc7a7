"""Canonical document type registry.

Maps every known legacy free-text label onto exactly one canonical type
code, so documents that predate ``type_code`` can still be matched by code.
"""
from __future__ import annotations

from typing import Iterable, Mapping, Optional

from solartrack.milestones.rules import RuleSetError


def _normalize_label(value: str) -> str:
    return " ".join(str(value or "").split())


class DocTypeRegistry:
    """Label -> canonical code lookup."""

    def __init__(self, codes_to_labels: Mapping[str, Iterable[str]] | None = None):
        self._label_to_code: dict[str, str] = {}
        self._codes: set[str] = set()
        for code, labels in (codes_to_labels or {}).items():
            self.register(code, labels)

    def register(self, code: str, labels: Iterable[str]) -> None:
        code = str(code or "").strip()
        if not code:
            raise RuleSetError("Document type code must not be empty")
        self._codes.add(code)
        for raw in labels:
            label = _normalize_label(raw)
            if not label:
                continue
            existing = self._label_to_code.get(label)
            if existing and existing != code:
                raise RuleSetError(
                    f"Document type label '{label}' maps to both {existing} and {code}"
                )
            self._label_to_code[label] = code

    def code_for_label(self, label: Optional[str]) -> Optional[str]:
        if not label:
            return None
        return self._label_to_code.get(_normalize_label(label))

    def is_known_code(self, code: Optional[str]) -> bool:
        return bool(code) and code in self._codes

    def as_dict(self) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = {code: [] for code in sorted(self._codes)}
        for label, code in self._label_to_code.items():
            grouped[code].append(label)
        return grouped
