"""PostgreSQL implementation of DocumentRepository."""
from __future__ import annotations

import asyncpg

from solartrack.date_utils import normalize_iso_date, utc_now_iso
from solartrack.db.repositories.documents import row_to_document
from solartrack.models import Document


class PostgresDocumentRepository:
    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def list_current(self, project_id: str) -> list[Document]:
        rows = await self.db.fetch(
            """SELECT * FROM documents
               WHERE project_id = $1 AND is_current AND NOT is_deleted
               ORDER BY updated_at ASC, id ASC""",
            project_id,
        )
        return [row_to_document(row) for row in rows]

    async def get_by_id(self, doc_id: str) -> Document | None:
        row = await self.db.fetchrow("SELECT * FROM documents WHERE id = $1", doc_id)
        return row_to_document(row) if row else None

    async def upsert(self, project_id: str, doc: Document, updated_at: str | None = None) -> None:
        now = updated_at or utc_now_iso()
        await self.db.execute(
            """INSERT INTO documents (
                id, project_id, type_code, type_label, submitted_at, issued_at,
                attached_file_count, external_file_ref, is_current, is_deleted,
                created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            ON CONFLICT(id) DO UPDATE SET
                project_id=EXCLUDED.project_id, type_code=EXCLUDED.type_code,
                type_label=EXCLUDED.type_label, submitted_at=EXCLUDED.submitted_at,
                issued_at=EXCLUDED.issued_at, attached_file_count=EXCLUDED.attached_file_count,
                external_file_ref=EXCLUDED.external_file_ref, is_current=EXCLUDED.is_current,
                is_deleted=EXCLUDED.is_deleted, updated_at=EXCLUDED.updated_at""",
            doc.id, project_id, doc.typeCode, doc.typeLabel,
            normalize_iso_date(doc.submittedAt), normalize_iso_date(doc.issuedAt),
            doc.attachedFileCount, doc.externalFileRef,
            doc.isCurrent, doc.isDeleted,
            now, now,
        )
