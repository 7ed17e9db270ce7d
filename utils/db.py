"""
Database utilities for SQLite operations.

Provides connection management, schema initialization and the bulk writes
used by the sync batch writer and the extraction document saver.
"""

import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Sequence

import orjson

from utils.errors import StorageError
from utils.schemas import ExtractedDocument, LinkDescriptor, WorkItemDetail

logger = logging.getLogger(__name__)

WORK_ITEM_COLUMNS = (
    "id", "key", "self_link", "summary", "status", "issue_type", "priority",
    "assignee", "reporter", "labels", "created", "updated", "project_key",
    "project_name", "description", "comment", "issue_links", "attachment",
    "sub_tasks", "watcher", "work_log", "time_tracking", "rendered_fields",
    "names", "field_schema", "transitions", "edit_meta", "changelog",
    "versioned_representations", "extra_fields", "links", "synced_at",
)

UPSERT_WORK_ITEM = "INSERT INTO work_items ({cols}) VALUES ({marks}) ON CONFLICT(id) DO UPDATE SET {updates}".format(
    cols=", ".join(WORK_ITEM_COLUMNS),
    marks=", ".join("?" for _ in WORK_ITEM_COLUMNS),
    updates=", ".join(f"{col} = excluded.{col}" for col in WORK_ITEM_COLUMNS if col != "id"),
)

CREATE_WORK_ITEMS = "CREATE TABLE IF NOT EXISTS work_items (id TEXT PRIMARY KEY, {columns})".format(
    columns=", ".join(f"{col} TEXT" for col in WORK_ITEM_COLUMNS[1:]),
)

UPSERT_DOCUMENT = """
    INSERT INTO extracted_documents (
        id, job_id, platform, source_url, title, body_text, metadata,
        extracted_at, source_item_ids
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(id) DO NOTHING
"""


def _dumps(value) -> str:
    return orjson.dumps(value).decode("utf-8")


class Database:
    """SQLite storage handle.

    Create one per process and pass it to whoever needs storage; the
    constructor prepares the database directory and announces its location.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        logger.info("Using SQLite database at %s", path)

    def get_conn(self) -> sqlite3.Connection:
        """
        Get SQLite database connection with dict-friendly row factory.

        Raises:
            sqlite3.Error: If connection fails
        """
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_schema(self) -> None:
        """
        Initialize database schema by creating required tables if they don't exist.

        Creates:
        - work_items: resolved tracker items, keyed by item identifier
        - extracted_documents: documents produced by extraction jobs
        """
        with closing(self.get_conn()) as conn, conn:
            conn.execute(CREATE_WORK_ITEMS)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS extracted_documents (
                    id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    source_url TEXT NOT NULL,
                    title TEXT,
                    body_text TEXT,
                    metadata TEXT,
                    extracted_at TEXT NOT NULL,
                    source_item_ids TEXT
                )
            """)

        logger.info("DB schema ready")

    def upsert_work_items(self, records: Sequence[WorkItemDetail]) -> None:
        """
        Upsert a batch of work items by identifier in a single transaction.

        Raises:
            StorageError: If any row fails; the whole batch is rolled back
        """
        synced_at = datetime.now(timezone.utc).isoformat()
        rows = [self._work_item_row(record, synced_at) for record in records]

        try:
            with closing(self.get_conn()) as conn, conn:
                conn.executemany(UPSERT_WORK_ITEM, rows)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to upsert {len(rows)} work items: {e}") from e

        logger.debug("Upserted %d work items", len(rows))

    @staticmethod
    def _work_item_row(record: WorkItemDetail, synced_at: str) -> tuple:
        data = record.model_dump(mode="json")
        data["labels"] = _dumps(data["labels"])
        data["extra_fields"] = _dumps(data["extra_fields"])
        data["links"] = _dumps(data["links"])
        data["synced_at"] = synced_at
        return tuple(data[col] for col in WORK_ITEM_COLUMNS)

    def get_work_items(self, ids: Iterable[str]) -> list[WorkItemDetail]:
        """Load stored work items; unknown identifiers are ignored."""
        ids = list(ids)
        if not ids:
            return []

        with closing(self.get_conn()) as conn:
            rows = []
            for chunk in _chunks(ids, 500):
                marks = ", ".join("?" for _ in chunk)
                rows.extend(conn.execute(f"SELECT * FROM work_items WHERE id IN ({marks})", chunk))

        return [self._work_item_from_row(row) for row in rows]

    @staticmethod
    def _work_item_from_row(row: sqlite3.Row) -> WorkItemDetail:
        data = {col: row[col] for col in WORK_ITEM_COLUMNS if col != "synced_at"}
        data["labels"] = orjson.loads(data["labels"] or "[]")
        data["extra_fields"] = orjson.loads(data["extra_fields"] or "{}")
        data["links"] = [LinkDescriptor(**link) for link in orjson.loads(data["links"] or "[]")]
        return WorkItemDetail(**data)

    def count_work_items(self) -> int:
        with closing(self.get_conn()) as conn:
            return conn.execute("SELECT COUNT(*) FROM work_items").fetchone()[0]

    def save_extracted_documents(self, documents: Sequence[ExtractedDocument]) -> None:
        """
        Persist extracted documents in a single transaction.

        Raises:
            StorageError: If the write fails
        """
        rows = [
            (
                str(doc.id),
                str(doc.job_id),
                doc.platform.value,
                doc.source_url,
                doc.title,
                doc.body_text,
                _dumps(doc.metadata.model_dump(mode="json")),
                doc.extracted_at.isoformat(),
                _dumps(doc.source_item_ids),
            )
            for doc in documents
        ]

        try:
            with closing(self.get_conn()) as conn, conn:
                conn.executemany(UPSERT_DOCUMENT, rows)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save {len(rows)} extracted documents: {e}") from e

    def count_extracted_documents(self) -> int:
        with closing(self.get_conn()) as conn:
            return conn.execute("SELECT COUNT(*) FROM extracted_documents").fetchone()[0]


def _chunks(items: list[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]
