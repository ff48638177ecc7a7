"""Lookup tables over a project's current documents."""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from solartrack.milestones.doc_types import DocTypeRegistry
from solartrack.models import Document, MilestoneRule

logger = logging.getLogger("solartrack.milestones")

MATCH_BY_CODE = "code"
MATCH_BY_LABEL = "label"


def participates(doc: Document) -> bool:
    return bool(doc.isCurrent) and not bool(doc.isDeleted)


class DocumentIndex:
    """``by_code`` and ``by_label`` maps; later documents overwrite earlier ones.

    With a registry, label-only documents are also indexed under their
    canonical code, unless some document carries that code explicitly.
    """

    def __init__(self, documents: Iterable[Document], registry: DocTypeRegistry | None = None):
        self.by_code: dict[str, Document] = {}
        self.by_label: dict[str, Document] = {}
        canonicalized: dict[str, Document] = {}

        for doc in documents:
            if not participates(doc):
                continue
            if doc.typeCode:
                self.by_code[doc.typeCode] = doc
            elif registry is not None:
                code = registry.code_for_label(doc.typeLabel)
                if code:
                    canonicalized[code] = doc
            if doc.typeLabel:
                self.by_label[doc.typeLabel] = doc

        for code, doc in canonicalized.items():
            if code not in self.by_code:
                self.by_code[code] = doc

    def resolve(self, rule: MilestoneRule) -> tuple[Optional[Document], Optional[str]]:
        """Return ``(document, match_path)`` for a rule's trigger document."""
        if rule.triggerTypeCode and rule.triggerTypeCode in self.by_code:
            return self.by_code[rule.triggerTypeCode], MATCH_BY_CODE
        for label in rule.triggerTypeLabels:
            doc = self.by_label.get(label)
            if doc is not None:
                logger.debug("[%s] matched via label %s", rule.code, label)
                return doc, MATCH_BY_LABEL
        return None, None
