import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import DocumentRecord, DocumentSummary, ExtractionResult, normalize_confidence
from .utils.exceptions import StoreError

SUMMARY_COLUMNS = (
    "id, status, document_type, confidence, error_message, "
    "created_at, uploaded_at, processing_started_at, completed_at"
)


def _dict_factory(cursor, row):
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocumentRepository:
    """Document rows plus an audit trail of every state transition.

    Transitions are conditional updates guarded on the expected current
    status, so a transition that lost a race (or targets a deleted row)
    matches zero rows and reports ``False`` instead of overwriting state.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.init_db()

    @contextmanager
    def get_conn(self, dict_mode: bool = False):
        try:
            conn = sqlite3.connect(self.db_path, timeout=10)
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open document store: {exc}") from exc
        if dict_mode:
            conn.row_factory = _dict_factory
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StoreError(f"Document store failure: {exc}") from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        with self.get_conn() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    image_data BLOB NOT NULL,
                    content_type TEXT NOT NULL,
                    external_doc_id TEXT UNIQUE,
                    document_type TEXT,
                    confidence INTEGER,
                    extracted_fields TEXT,
                    extracted_tables TEXT,
                    error_message TEXT,
                    created_at TEXT NOT NULL,
                    uploaded_at TEXT,
                    processing_started_at TEXT,
                    completed_at TEXT
                );
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS processing_logs (
                    id TEXT PRIMARY KEY,
                    document_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    status TEXT NOT NULL,
                    details TEXT,
                    created_at TEXT NOT NULL
                );
                """
            )
            conn.commit()

    def ping(self) -> None:
        with self.get_conn() as conn:
            conn.execute("SELECT 1;")

    def create_document(self, image_data: bytes, content_type: str) -> DocumentRecord:
        now = _now()
        doc_id = str(uuid.uuid4())
        with self.get_conn() as conn:
            conn.execute(
                """
                INSERT INTO documents (id, status, image_data, content_type, created_at)
                VALUES (?, 'uploading', ?, ?, ?)
                """,
                (doc_id, sqlite3.Binary(image_data), content_type, now),
            )
            conn.commit()
        self.log_action(doc_id, "create_document", "uploading", {"size": len(image_data)})
        record = self.get_document(doc_id)
        if record is None:
            raise StoreError(f"Document {doc_id} vanished after insert")
        return record

    def mark_processing(self, document_id: str, external_doc_id: str) -> bool:
        now = _now()
        changed = self._transition(
            document_id,
            ("uploading",),
            "external_doc_id = ?, status = 'processing', uploaded_at = ?, processing_started_at = ?",
            (external_doc_id, now, now),
        )
        if changed:
            self.log_action(
                document_id, "mark_processing", "processing", {"external_doc_id": external_doc_id}
            )
        return changed

    def mark_completed(self, document_id: str, result: ExtractionResult) -> bool:
        fields = [f.to_json() for f in result.fields]
        tables = [t.to_json() for t in result.tables]
        changed = self._transition(
            document_id,
            ("processing",),
            """
            status = 'completed', document_type = ?, confidence = ?,
            extracted_fields = ?, extracted_tables = ?, completed_at = ?
            """,
            (
                result.document_type,
                normalize_confidence(result.overall_confidence),
                json.dumps(fields),
                json.dumps(tables),
                _now(),
            ),
        )
        if changed:
            self.log_action(
                document_id, "mark_completed", "completed", {"document_type": result.document_type}
            )
        return changed

    def mark_failed(
        self, document_id: str, error_message: str, from_statuses: Iterable[str]
    ) -> bool:
        changed = self._transition(
            document_id,
            tuple(from_statuses),
            "status = 'failed', error_message = ?, completed_at = ?",
            (error_message, _now()),
        )
        if changed:
            self.log_action(document_id, "mark_failed", "failed", {"error": error_message})
        return changed

    def _transition(
        self,
        document_id: str,
        from_statuses: Tuple[str, ...],
        assignments: str,
        params: Tuple[Any, ...],
    ) -> bool:
        placeholders = ", ".join("?" for _ in from_statuses)
        with self.get_conn() as conn:
            cur = conn.execute(
                f"UPDATE documents SET {assignments} WHERE id = ? AND status IN ({placeholders})",
                (*params, document_id, *from_statuses),
            )
            conn.commit()
            return cur.rowcount == 1

    def get_document(self, document_id: str) -> Optional[DocumentRecord]:
        with self.get_conn(dict_mode=True) as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        return self._to_record(row) if row else None

    def get_image(self, document_id: str) -> Optional[Tuple[bytes, str]]:
        with self.get_conn() as conn:
            row = conn.execute(
                "SELECT image_data, content_type FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        return (bytes(row[0]), row[1]) if row else None

    def get_by_external_id(self, external_doc_id: str) -> Optional[DocumentRecord]:
        with self.get_conn(dict_mode=True) as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE external_doc_id = ?", (external_doc_id,)
            ).fetchone()
        return self._to_record(row) if row else None

    def list_documents(self) -> List[DocumentSummary]:
        with self.get_conn(dict_mode=True) as conn:
            rows = conn.execute(
                f"SELECT {SUMMARY_COLUMNS} FROM documents ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
        return [DocumentSummary.model_validate(row) for row in rows]

    def delete_document(self, document_id: str) -> bool:
        with self.get_conn() as conn:
            cur = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            conn.commit()
            deleted = cur.rowcount == 1
        if deleted:
            self.log_action(document_id, "delete_document", "deleted")
        return deleted

    def get_logs(self, document_id: str) -> List[Dict[str, Any]]:
        with self.get_conn(dict_mode=True) as conn:
            rows = conn.execute(
                "SELECT action, status, details, created_at FROM processing_logs "
                "WHERE document_id = ? ORDER BY rowid",
                (document_id,),
            ).fetchall()
        for row in rows:
            row["details"] = json.loads(row["details"]) if row["details"] else {}
        return rows

    def log_action(
        self, document_id: str, action: str, status: str, details: Optional[Dict[str, Any]] = None
    ) -> None:
        with self.get_conn() as conn:
            conn.execute(
                """
                INSERT INTO processing_logs (id, document_id, action, status, details, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (str(uuid.uuid4()), document_id, action, status, json.dumps(details or {}), _now()),
            )
            conn.commit()

    @staticmethod
    def _to_record(row: Dict[str, Any]) -> DocumentRecord:
        row = dict(row)
        row.pop("image_data", None)
        for key in ("extracted_fields", "extracted_tables"):
            if row.get(key):
                row[key] = json.loads(row[key])
        return DocumentRecord.model_validate(row)
