"""SQLite implementation of DocumentRepository."""
from __future__ import annotations

from typing import Any

import aiosqlite

from solartrack.date_utils import normalize_iso_date, utc_now_iso
from solartrack.models import Document


def row_to_document(row: Any) -> Document:
    data = dict(row)
    return Document(
        id=str(data["id"]),
        typeCode=data.get("type_code") or None,
        typeLabel=data.get("type_label") or None,
        submittedAt=normalize_iso_date(data.get("submitted_at")),
        issuedAt=normalize_iso_date(data.get("issued_at")),
        attachedFileCount=int(data.get("attached_file_count") or 0),
        externalFileRef=data.get("external_file_ref") or None,
        isCurrent=bool(data.get("is_current")),
        isDeleted=bool(data.get("is_deleted")),
    )


class SqliteDocumentRepository:
    """Read access to a project's documents plus a seeding upsert. Writes do not commit; wrap them in ``transaction``."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def list_current(self, project_id: str) -> list[Document]:
        """Current, non-deleted documents, oldest first so newer rows win in the index."""
        async with self.db.execute(
            """SELECT * FROM documents
               WHERE project_id = ? AND is_current = 1 AND is_deleted = 0
               ORDER BY updated_at ASC, id ASC""",
            (project_id,),
        ) as cur:
            rows = await cur.fetchall()
        return [row_to_document(row) for row in rows]

    async def get_by_id(self, doc_id: str) -> Document | None:
        async with self.db.execute("SELECT * FROM documents WHERE id = ?", (doc_id,)) as cur:
            row = await cur.fetchone()
        return row_to_document(row) if row else None

    async def upsert(self, project_id: str, doc: Document, updated_at: str | None = None) -> None:
        now = updated_at or utc_now_iso()
        await self.db.execute(
            """INSERT INTO documents (
                id, project_id, type_code, type_label, submitted_at, issued_at,
                attached_file_count, external_file_ref, is_current, is_deleted,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                project_id=excluded.project_id, type_code=excluded.type_code,
                type_label=excluded.type_label, submitted_at=excluded.submitted_at,
                issued_at=excluded.issued_at, attached_file_count=excluded.attached_file_count,
                external_file_ref=excluded.external_file_ref, is_current=excluded.is_current,
                is_deleted=excluded.is_deleted, updated_at=excluded.updated_at""",
            (
                doc.id, project_id, doc.typeCode, doc.typeLabel,
                normalize_iso_date(doc.submittedAt), normalize_iso_date(doc.issuedAt),
                doc.attachedFileCount, doc.externalFileRef,
                1 if doc.isCurrent else 0, 1 if doc.isDeleted else 0,
                now, now,
            ),
        )
