"""DuckDB-based history store.

An embedded alternative to MongoDB for single-node deployments and tests.

Database Schema:
    chat_records table:
        - seq: Auto-incrementing insertion order (used for ordering/retention)
        - id: Message ID (upsert key for reactions)
        - document: JSON text of the record as sent on the wire
        - created_at: Server insertion timestamp (UTC)
        - partial: Reactions upserted for a message the table does not hold;
          ignored by count, list and retention until the message is appended

Thread Safety:
    The DuckDB connection is NOT thread-safe. Calls are made directly from
    the event loop; each statement is short and local.
"""
import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

import duckdb

from relay.chat.schemas import AnyRecord, Reactions, record_to_wire

from .base import HistoryStore, StoreError, records_from_documents

logger = logging.getLogger(__name__)


class DuckDBHistoryStore(HistoryStore):
    """Chat history kept in a DuckDB table.

    Attributes:
        _db_path: Path to the DuckDB database file, or ":memory:".
    """

    name = "duckdb"
    _db_path: str = "chat_history.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info(f"[DB] Using DuckDB history store at {self._db_path}")

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get the DuckDB connection, creating if needed."""
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the sequence and table if they don't exist (idempotent)."""
        conn = self._get_connection()
        conn.execute("""
            CREATE SEQUENCE IF NOT EXISTS chat_records_seq START 1;
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS chat_records (
                seq BIGINT DEFAULT nextval('chat_records_seq') PRIMARY KEY,
                id VARCHAR NOT NULL,
                document VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL,
                partial BOOLEAN NOT NULL DEFAULT FALSE
            )
        """)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    async def append(self, record: AnyRecord) -> None:
        document = record_to_wire(record)
        conn = self._get_connection()
        try:
            # Reactions stored before the message itself arrived take over
            pending = conn.execute(
                "SELECT document FROM chat_records WHERE id = ? AND partial ORDER BY seq DESC LIMIT 1",
                [record.id],
            ).fetchone()
            if pending is not None:
                document["reacciones"] = json.loads(pending[0]).get("reacciones", {})
                conn.execute("DELETE FROM chat_records WHERE id = ? AND partial", [record.id])
            conn.execute(
                "INSERT INTO chat_records (id, document, created_at, partial) VALUES (?, ?, ?, FALSE)",
                [record.id, json.dumps(document, ensure_ascii=False), self._now()],
            )
        except duckdb.Error as exc:
            raise StoreError(f"insert failed: {exc}") from exc

    async def list_recent(self, limit: int) -> List[AnyRecord]:
        try:
            rows = self._get_connection().execute(
                f"SELECT document FROM chat_records WHERE NOT partial ORDER BY seq DESC LIMIT {int(limit)}"
            ).fetchall()
        except duckdb.Error as exc:
            raise StoreError(f"history read failed: {exc}") from exc
        return records_from_documents((json.loads(row[0]) for row in rows), self.name)

    async def count(self) -> int:
        try:
            result = self._get_connection().execute(
                "SELECT COUNT(*) FROM chat_records WHERE NOT partial"
            ).fetchone()
        except duckdb.Error as exc:
            raise StoreError(f"count failed: {exc}") from exc
        return int(result[0]) if result else 0

    async def delete_oldest(self, n: int) -> None:
        if n <= 0:
            return
        conn = self._get_connection()
        try:
            conn.execute(
                f"""
                DELETE FROM chat_records
                WHERE seq IN (
                    SELECT seq FROM chat_records WHERE NOT partial ORDER BY seq ASC LIMIT {int(n)}
                )
                """
            )
            # Partial rows older than every kept message can no longer be merged
            conn.execute("""
                DELETE FROM chat_records
                WHERE partial
                  AND seq < (SELECT COALESCE(MIN(seq), 0) FROM chat_records WHERE NOT partial)
            """)
        except duckdb.Error as exc:
            raise StoreError(f"retention delete failed: {exc}") from exc

    async def update_reactions(self, message_id: str, reactions: Reactions) -> None:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT seq, document FROM chat_records WHERE id = ?",
                [message_id],
            ).fetchall()
            if not rows:
                # Upsert: keep the reactions as a partial row until the message shows up
                document = json.dumps({"id": message_id, "reacciones": reactions}, ensure_ascii=False)
                conn.execute(
                    "INSERT INTO chat_records (id, document, created_at, partial) VALUES (?, ?, ?, TRUE)",
                    [message_id, document, self._now()],
                )
                return
            for seq, raw in rows:
                document = json.loads(raw)
                document["reacciones"] = reactions
                conn.execute(
                    "UPDATE chat_records SET document = ? WHERE seq = ?",
                    [json.dumps(document, ensure_ascii=False), seq],
                )
        except duckdb.Error as exc:
            raise StoreError(f"reaction update failed: {exc}") from exc

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
