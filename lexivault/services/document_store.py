"""Document store backed by SQLite: documents, page units and index entries."""
import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from lexivault.exceptions import DocumentNotFoundError, PageNotFoundError, StorageError
from lexivault.models.document import (
    Document,
    DocumentStatus,
    IndexEntry,
    PageStatus,
    PageUnit,
)
from lexivault.utils.logger import logger


# Columns that may be written through update_document / transact_document
DOCUMENT_MUTABLE_COLUMNS = {
    "title",
    "description",
    "category",
    "year",
    "total_page_count",
    "processed_pages",
    "failed_pages",
    "status",
    "processing_progress",
    "processing_error",
    "index_triggered",
    "run_active",
}


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DocumentStore:
    """SQLite persistence for documents, their page units and outline entries."""

    def __init__(self, db_path: str = "./data/lexivault.db"):
        """
        Initialize the store and create the schema if needed.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.ensure_schema()
        logger.info(f"Document store initialized at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode: transactions are opened explicitly in _transaction
        conn = sqlite3.connect(self.db_path, timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside a write-locked transaction.

        BEGIN IMMEDIATE takes the database write lock up front, so a
        read-then-write inside the block is serialized against every other
        writer (threads or processes).
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            raise StorageError(f"Document store transaction failed: {str(e)}") from e
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Document store read failed: {str(e)}") from e
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    document_id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    category TEXT NOT NULL,
                    year INTEGER NOT NULL,
                    storage_ref TEXT NOT NULL,
                    total_page_count INTEGER NOT NULL,
                    processed_pages INTEGER NOT NULL DEFAULT 0,
                    failed_pages INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL,
                    processing_progress INTEGER NOT NULL DEFAULT 0,
                    processing_error TEXT,
                    index_triggered INTEGER NOT NULL DEFAULT 0,
                    run_active INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS page_units (
                    page_id TEXT PRIMARY KEY,
                    document_id TEXT NOT NULL,
                    page_number INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    text TEXT NOT NULL DEFAULT '',
                    embedding_json TEXT NOT NULL,
                    asset_ref TEXT,
                    updated_at TEXT NOT NULL,
                    UNIQUE(document_id, page_number),
                    FOREIGN KEY(document_id) REFERENCES documents(document_id)
                );

                CREATE TABLE IF NOT EXISTS index_entries (
                    entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    label TEXT NOT NULL,
                    level INTEGER NOT NULL,
                    target_page INTEGER NOT NULL,
                    FOREIGN KEY(document_id) REFERENCES documents(document_id)
                );

                CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(status);
                CREATE INDEX IF NOT EXISTS idx_page_units_document_page ON page_units(document_id, page_number);
                CREATE INDEX IF NOT EXISTS idx_index_entries_document ON index_entries(document_id, position);
                """
            )
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(documents)")}
            if "run_active" not in columns:
                conn.execute("ALTER TABLE documents ADD COLUMN run_active INTEGER NOT NULL DEFAULT 0")
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        return Document(
            document_id=row["document_id"],
            title=row["title"],
            description=row["description"],
            category=row["category"],
            year=row["year"],
            storage_ref=row["storage_ref"],
            total_page_count=row["total_page_count"],
            processed_pages=row["processed_pages"],
            failed_pages=row["failed_pages"],
            status=DocumentStatus(row["status"]),
            processing_progress=row["processing_progress"],
            processing_error=row["processing_error"],
            index_triggered=bool(row["index_triggered"]),
            run_active=bool(row["run_active"]),
            created_at=row["created_at"],
        )

    def create_document(
        self,
        title: str,
        category: str,
        year: int,
        storage_ref: str,
        total_page_count: int,
        description: Optional[str] = None,
    ) -> Document:
        """Insert a new document in the processing state with zeroed counters."""
        document = Document(
            document_id=str(uuid.uuid4()),
            title=title,
            description=description,
            category=category,
            year=year,
            storage_ref=storage_ref,
            total_page_count=total_page_count,
            status=DocumentStatus.PROCESSING,
            created_at=_utcnow(),
        )
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO documents (
                    document_id, title, description, category, year, storage_ref,
                    total_page_count, processed_pages, failed_pages, status,
                    processing_progress, processing_error, index_triggered, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0, ?, 0, NULL, 0, ?)
                """,
                (
                    document.document_id,
                    document.title,
                    document.description,
                    document.category,
                    document.year,
                    document.storage_ref,
                    document.total_page_count,
                    document.status.value,
                    document.created_at,
                ),
            )
        return document

    def get_document(self, document_id: str) -> Optional[Document]:
        with self._reader() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE document_id = ?", (document_id,)
            ).fetchone()
        return self._row_to_document(row) if row else None

    def get_documents(self, document_ids: Sequence[str]) -> Dict[str, Document]:
        if not document_ids:
            return {}
        placeholders = ", ".join("?" for _ in document_ids)
        with self._reader() as conn:
            rows = conn.execute(
                f"SELECT * FROM documents WHERE document_id IN ({placeholders})",
                tuple(document_ids),
            ).fetchall()
        return {row["document_id"]: self._row_to_document(row) for row in rows}

    def list_documents(self, status: Optional[DocumentStatus] = None) -> List[Document]:
        with self._reader() as conn:
            if status is not None:
                rows = conn.execute(
                    "SELECT * FROM documents WHERE status = ? ORDER BY created_at DESC",
                    (DocumentStatus(status).value,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM documents ORDER BY created_at DESC"
                ).fetchall()
        return [self._row_to_document(row) for row in rows]

    @staticmethod
    def _apply_updates(conn: sqlite3.Connection, document_id: str, updates: Dict[str, Any]) -> None:
        unknown = set(updates) - DOCUMENT_MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update document columns: {sorted(unknown)}")

        values = []
        for column, value in updates.items():
            if isinstance(value, DocumentStatus):
                value = value.value
            elif isinstance(value, bool):
                value = int(value)
            values.append(value)

        assignments = ", ".join(f"{column} = ?" for column in updates)
        conn.execute(
            f"UPDATE documents SET {assignments} WHERE document_id = ?",
            (*values, document_id),
        )

    def update_document(self, document_id: str, **updates: Any) -> None:
        """
        Patch document columns.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        if not updates:
            return
        with self._transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM documents WHERE document_id = ?", (document_id,)
            ).fetchone()
            if not exists:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            self._apply_updates(conn, document_id, updates)

    def transact_document(
        self,
        document_id: str,
        mutate: Callable[[Document], Optional[Dict[str, Any]]],
    ) -> Document:
        """
        Serializable read-modify-write of a single document record.

        The current record is read and ``mutate`` computes the column updates
        inside one write-locked transaction, so concurrent callers never lose
        each other's writes.

        Args:
            document_id: Document to update
            mutate: Receives the current document and returns the columns to
                write, or None/empty to leave it unchanged

        Returns:
            The document as stored when the transaction commits

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE document_id = ?", (document_id,)
            ).fetchone()
            if row is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")

            updates = mutate(self._row_to_document(row))
            if updates:
                self._apply_updates(conn, document_id, updates)
                row = conn.execute(
                    "SELECT * FROM documents WHERE document_id = ?", (document_id,)
                ).fetchone()

        return self._row_to_document(row)

    def claim_run(self, document_id: str, allow_existing_pages: bool = False) -> bool:
        """
        Atomically take the processing-run latch of a document.

        The claim fails when another run holds the latch, or when the document
        already has page units and ``allow_existing_pages`` is False. A
        successful claim resets the document to ``processing`` with zeroed
        counters in the same transaction.

        Returns:
            True if the caller now owns the run

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT run_active FROM documents WHERE document_id = ?", (document_id,)
            ).fetchone()
            if row is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            if row["run_active"]:
                return False
            if not allow_existing_pages:
                has_pages = conn.execute(
                    "SELECT 1 FROM page_units WHERE document_id = ? LIMIT 1", (document_id,)
                ).fetchone()
                if has_pages:
                    return False

            self._apply_updates(conn, document_id, {
                "run_active": True,
                "status": DocumentStatus.PROCESSING,
                "processed_pages": 0,
                "failed_pages": 0,
                "processing_progress": 0,
                "processing_error": None,
                "index_triggered": False,
            })
        return True

    def release_stale_runs(self) -> int:
        """Clear every run latch; runs only live as long as the process that started them."""
        with self._transaction() as conn:
            cursor = conn.execute("UPDATE documents SET run_active = 0 WHERE run_active = 1")
        return cursor.rowcount

    def search_titles(self, query: str, limit: int = 10) -> List[Document]:
        """
        Title search: documents whose title contains any query term,
        ranked by the number of matching terms.
        """
        terms = [term for term in query.split() if term]
        if not terms:
            return []

        match_exprs = ["(title LIKE ? ESCAPE '\\')" for _ in terms]
        params = [f"%{_escape_like(term)}%" for term in terms]

        with self._reader() as conn:
            rows = conn.execute(
                f"""
                SELECT *, ({' + '.join(match_exprs)}) AS match_count
                FROM documents
                WHERE {' OR '.join(match_exprs)}
                ORDER BY match_count DESC, title ASC, document_id ASC
                LIMIT ?
                """,
                (*params, *params, limit),
            ).fetchall()
        return [self._row_to_document(row) for row in rows]

    # ------------------------------------------------------------------
    # Page units
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_page(row: sqlite3.Row) -> PageUnit:
        return PageUnit(
            page_id=row["page_id"],
            document_id=row["document_id"],
            page_number=row["page_number"],
            status=PageStatus(row["status"]),
            text=row["text"],
            embedding=json.loads(row["embedding_json"]),
            asset_ref=row["asset_ref"],
        )

    def create_page_unit(
        self,
        document_id: str,
        page_number: int,
        asset_ref: str,
        embedding_dimension: int,
    ) -> PageUnit:
        """Insert a pending page placeholder with a zero-filled embedding."""
        page = PageUnit(
            page_id=str(uuid.uuid4()),
            document_id=document_id,
            page_number=page_number,
            status=PageStatus.PENDING,
            text="",
            embedding=[0.0] * embedding_dimension,
            asset_ref=asset_ref,
        )
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO page_units (
                    page_id, document_id, page_number, status, text,
                    embedding_json, asset_ref, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    page.page_id,
                    page.document_id,
                    page.page_number,
                    page.status.value,
                    page.text,
                    json.dumps(page.embedding),
                    page.asset_ref,
                    _utcnow(),
                ),
            )
        return page

    def get_page_unit(self, page_id: str) -> Optional[PageUnit]:
        with self._reader() as conn:
            row = conn.execute(
                "SELECT * FROM page_units WHERE page_id = ?", (page_id,)
            ).fetchone()
        return self._row_to_page(row) if row else None

    def get_page_by_number(self, document_id: str, page_number: int) -> Optional[PageUnit]:
        with self._reader() as conn:
            row = conn.execute(
                "SELECT * FROM page_units WHERE document_id = ? AND page_number = ?",
                (document_id, page_number),
            ).fetchone()
        return self._row_to_page(row) if row else None

    def list_page_units(
        self,
        document_id: str,
        page_number: Optional[int] = None,
        status: Optional[PageStatus] = None,
    ) -> List[PageUnit]:
        """Page units of a document in ascending page order."""
        clauses = ["document_id = ?"]
        params: List[Any] = [document_id]
        if page_number is not None:
            clauses.append("page_number = ?")
            params.append(page_number)
        if status is not None:
            clauses.append("status = ?")
            params.append(PageStatus(status).value)

        with self._reader() as conn:
            rows = conn.execute(
                f"SELECT * FROM page_units WHERE {' AND '.join(clauses)} ORDER BY page_number ASC",
                tuple(params),
            ).fetchall()
        return [self._row_to_page(row) for row in rows]

    def count_page_units(self, document_id: str) -> int:
        with self._reader() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS cnt FROM page_units WHERE document_id = ?",
                (document_id,),
            ).fetchone()
        return row["cnt"]

    def page_status_counts(self, document_id: str) -> Dict[str, int]:
        """Number of page units per status (every status present, zero-filled)."""
        counts = {status.value: 0 for status in PageStatus}
        with self._reader() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS cnt FROM page_units WHERE document_id = ? GROUP BY status",
                (document_id,),
            ).fetchall()
        for row in rows:
            counts[row["status"]] = row["cnt"]
        return counts

    def update_page_status(self, page_id: str, status: PageStatus) -> None:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE page_units SET status = ?, updated_at = ? WHERE page_id = ?",
                (PageStatus(status).value, _utcnow(), page_id),
            )
            if cursor.rowcount == 0:
                raise PageNotFoundError(f"Page unit {page_id} not found")

    def update_page_content(
        self,
        page_id: str,
        text: str,
        embedding: List[float],
        status: PageStatus = PageStatus.COMPLETED,
    ) -> None:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE page_units
                SET text = ?, embedding_json = ?, status = ?, updated_at = ?
                WHERE page_id = ?
                """,
                (text, json.dumps(embedding), PageStatus(status).value, _utcnow(), page_id),
            )
            if cursor.rowcount == 0:
                raise PageNotFoundError(f"Page unit {page_id} not found")

    def reset_pages(self, document_id: str, from_status: PageStatus) -> List[str]:
        """Move every page in ``from_status`` back to pending; returns their ids."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT page_id FROM page_units WHERE document_id = ? AND status = ? ORDER BY page_number",
                (document_id, PageStatus(from_status).value),
            ).fetchall()
            page_ids = [row["page_id"] for row in rows]
            conn.execute(
                "UPDATE page_units SET status = ?, updated_at = ? WHERE document_id = ? AND status = ?",
                (PageStatus.PENDING.value, _utcnow(), document_id, PageStatus(from_status).value),
            )
        return page_ids

    def delete_page_units(self, document_id: str) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM page_units WHERE document_id = ?", (document_id,)
            )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Index entries
    # ------------------------------------------------------------------

    def replace_index(self, document_id: str, entries: Sequence[IndexEntry]) -> None:
        """Delete every existing entry of the document and insert the new list, atomically."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM index_entries WHERE document_id = ?", (document_id,))
            conn.executemany(
                """
                INSERT INTO index_entries (document_id, position, label, level, target_page)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (document_id, position, entry.label, entry.level, entry.target_page)
                    for position, entry in enumerate(entries)
                ],
            )

    def get_index(self, document_id: str) -> List[IndexEntry]:
        with self._reader() as conn:
            rows = conn.execute(
                "SELECT * FROM index_entries WHERE document_id = ? ORDER BY position ASC",
                (document_id,),
            ).fetchall()
        return [
            IndexEntry(
                document_id=row["document_id"],
                position=row["position"],
                label=row["label"],
                level=row["level"],
                target_page=row["target_page"],
            )
            for row in rows
        ]
