"""Database initialization and helpers for PDF Chat Support.

SQLite database for storing:
- Uploaded documents and their processing status
- Chat conversations and messages
- Free-form settings
- Rate limit counters
"""
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import structlog

logger = structlog.get_logger()

DOCUMENT_STATUSES = ("uploaded", "processing", "processed", "failed")
CONVERSATION_STATUSES = ("active", "ended", "archived")
MESSAGE_TYPES = ("user", "assistant", "system")


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string (sortable)."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _row_to_dict(row: Optional[sqlite3.Row], json_fields: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    data = dict(row)
    for field in json_fields:
        if data.get(field):
            data[field] = json.loads(data[field])
    return data


class Database:
    """Thin wrapper around a SQLite file with one connection per operation."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection to the SQLite database.

        Returns:
            sqlite3.Connection with row_factory set to sqlite3.Row
        """
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self, operation: str) -> Iterator[sqlite3.Cursor]:
        """Run statements in a transaction, rolling back and logging on error.

        Args:
            operation: Name used in the failure log event
        """
        conn = self.get_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"{operation}_failed", error=str(e))
            raise
        finally:
            conn.close()

    def init_schema(self) -> None:
        """Initialize the database schema.

        Creates tables if they don't exist:
        - documents: uploaded PDFs and their processing lifecycle
        - conversations: one row per chat session
        - messages: chat turns, ordered by timestamp
        - settings: free-form key/value map
        - rate_limits: windowed request counters
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self.transaction("database_init") as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    filename TEXT NOT NULL,
                    original_filename TEXT NOT NULL,
                    file_path TEXT NOT NULL,
                    file_size INTEGER NOT NULL,
                    upload_date TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'uploaded'
                        CHECK (status IN ('uploaded', 'processing', 'processed', 'failed')),
                    total_chunks INTEGER NOT NULL DEFAULT 0,
                    processed_chunks INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT,
                    metadata_json TEXT
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(status)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_documents_file_path ON documents(file_path)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL UNIQUE,
                    user_id TEXT,
                    user_ip TEXT NOT NULL DEFAULT '',
                    user_agent TEXT,
                    started_at TEXT NOT NULL,
                    last_activity TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active'
                        CHECK (status IN ('active', 'ended', 'archived'))
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_conversations_status ON conversations(status)")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    conversation_id INTEGER NOT NULL
                        REFERENCES conversations(id) ON DELETE CASCADE,
                    message_type TEXT NOT NULL
                        CHECK (message_type IN ('user', 'assistant', 'system')),
                    content TEXT NOT NULL,
                    sources_json TEXT,
                    timestamp TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_messages_conversation
                ON messages(conversation_id, timestamp)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    setting_key TEXT PRIMARY KEY,
                    setting_value TEXT,
                    updated_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS rate_limits (
                    limit_key TEXT PRIMARY KEY,
                    request_count INTEGER NOT NULL,
                    window_start REAL NOT NULL
                )
            """)

        logger.info("database_initialized", db_path=str(self.db_path))

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def insert_document(
        self,
        filename: str,
        original_filename: str,
        file_path: str,
        file_size: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Record an uploaded document with status 'uploaded'.

        Returns:
            ID of the inserted document row
        """
        with self.transaction("document_insert") as cursor:
            cursor.execute("""
                INSERT INTO documents (
                    filename, original_filename, file_path, file_size,
                    upload_date, status, metadata_json
                ) VALUES (?, ?, ?, ?, ?, 'uploaded', ?)
            """, (
                filename,
                original_filename,
                file_path,
                file_size,
                utcnow(),
                json.dumps(metadata) if metadata else None,
            ))
            document_id = cursor.lastrowid

        logger.info("document_inserted", document_id=document_id, filename=filename)
        return document_id

    def get_document(self, document_id: int) -> Optional[Dict[str, Any]]:
        with self.transaction("document_get") as cursor:
            cursor.execute("SELECT * FROM documents WHERE id = ?", (document_id,))
            return _row_to_dict(cursor.fetchone(), ["metadata_json"])

    def get_document_by_path(self, file_path: str) -> Optional[Dict[str, Any]]:
        with self.transaction("document_get_by_path") as cursor:
            cursor.execute(
                "SELECT * FROM documents WHERE file_path = ? ORDER BY id DESC LIMIT 1",
                (file_path,),
            )
            return _row_to_dict(cursor.fetchone(), ["metadata_json"])

    def list_documents(self, status: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        """List documents, newest first, optionally filtered by status."""
        with self.transaction("document_list") as cursor:
            if status:
                cursor.execute(
                    "SELECT * FROM documents WHERE status = ? ORDER BY id DESC LIMIT ?",
                    (status, limit),
                )
            else:
                cursor.execute("SELECT * FROM documents ORDER BY id DESC LIMIT ?", (limit,))
            return [_row_to_dict(row, ["metadata_json"]) for row in cursor.fetchall()]

    def claim_document(self, document_id: int, allowed_statuses: Tuple[str, ...]) -> bool:
        """Atomically move a document to 'processing'.

        The conditional UPDATE is the single-flight lock: only one caller can
        observe a matching status and flip it.

        Args:
            document_id: Document to claim
            allowed_statuses: Statuses from which the claim may proceed

        Returns:
            True if this caller now owns the processing run
        """
        placeholders = ",".join("?" * len(allowed_statuses))
        with self.transaction("document_claim") as cursor:
            cursor.execute(f"""
                UPDATE documents
                SET status = 'processing', error_message = NULL
                WHERE id = ? AND status IN ({placeholders})
            """, (document_id, *allowed_statuses))
            return cursor.rowcount == 1

    def mark_document_processed(
        self,
        document_id: int,
        total_chunks: int,
        processed_chunks: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self.transaction("document_mark_processed") as cursor:
            cursor.execute("""
                UPDATE documents
                SET status = 'processed', total_chunks = ?, processed_chunks = ?,
                    error_message = NULL,
                    metadata_json = COALESCE(?, metadata_json)
                WHERE id = ?
            """, (
                total_chunks,
                processed_chunks,
                json.dumps(metadata) if metadata else None,
                document_id,
            ))

    def mark_document_failed(self, document_id: int, error_message: str) -> None:
        with self.transaction("document_mark_failed") as cursor:
            cursor.execute(
                "UPDATE documents SET status = 'failed', error_message = ? WHERE id = ?",
                (error_message, document_id),
            )

    def delete_document(self, document_id: int) -> bool:
        with self.transaction("document_delete") as cursor:
            cursor.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Conversations and messages
    # ------------------------------------------------------------------

    def get_or_create_conversation(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        user_ip: str = "",
        user_agent: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        """Return the conversation for a session, creating it if needed.

        Returns:
            Tuple of (conversation dict, created flag)
        """
        now = utcnow()
        with self.transaction("conversation_get_or_create") as cursor:
            cursor.execute("""
                INSERT OR IGNORE INTO conversations (
                    session_id, user_id, user_ip, user_agent,
                    started_at, last_activity, status
                ) VALUES (?, ?, ?, ?, ?, ?, 'active')
            """, (session_id, user_id, user_ip or "", user_agent, now, now))
            created = cursor.rowcount == 1
            cursor.execute("SELECT * FROM conversations WHERE session_id = ?", (session_id,))
            conversation = _row_to_dict(cursor.fetchone())

        if created:
            logger.info("conversation_created", conversation_id=conversation["id"], session_id=session_id)
        return conversation, created

    def get_conversation(self, conversation_id: int) -> Optional[Dict[str, Any]]:
        with self.transaction("conversation_get") as cursor:
            cursor.execute("SELECT * FROM conversations WHERE id = ?", (conversation_id,))
            return _row_to_dict(cursor.fetchone())

    def get_conversation_by_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self.transaction("conversation_get_by_session") as cursor:
            cursor.execute("SELECT * FROM conversations WHERE session_id = ?", (session_id,))
            return _row_to_dict(cursor.fetchone())

    def set_conversation_status(self, conversation_id: int, status: str) -> bool:
        if status not in CONVERSATION_STATUSES:
            raise ValueError(f"Unknown conversation status: {status}")
        with self.transaction("conversation_status_update") as cursor:
            cursor.execute(
                "UPDATE conversations SET status = ? WHERE id = ?",
                (status, conversation_id),
            )
            return cursor.rowcount > 0

    def archive_conversations_before(self, cutoff: str) -> int:
        """Archive non-archived conversations whose last activity is before cutoff.

        Returns:
            Number of conversations archived
        """
        with self.transaction("conversation_archive") as cursor:
            cursor.execute("""
                UPDATE conversations SET status = 'archived'
                WHERE status != 'archived' AND last_activity < ?
            """, (cutoff,))
            return cursor.rowcount

    def add_message(
        self,
        conversation_id: int,
        message_type: str,
        content: str,
        sources: Optional[List[Dict[str, Any]]] = None,
    ) -> int:
        """Store a message and bump the conversation's last activity.

        Returns:
            ID of the inserted message
        """
        if message_type not in MESSAGE_TYPES:
            raise ValueError(f"Unknown message type: {message_type}")

        now = utcnow()
        with self.transaction("message_insert") as cursor:
            cursor.execute(
                "UPDATE conversations SET last_activity = ? WHERE id = ?",
                (now, conversation_id),
            )
            cursor.execute("""
                INSERT INTO messages (conversation_id, message_type, content, sources_json, timestamp)
                VALUES (?, ?, ?, ?, ?)
            """, (
                conversation_id,
                message_type,
                content,
                json.dumps(sources) if sources else None,
                now,
            ))
            return cursor.lastrowid

    def get_recent_messages(self, conversation_id: int, limit: int) -> List[Dict[str, Any]]:
        """Get the latest messages of a conversation in chronological order."""
        if limit <= 0:
            return []
        with self.transaction("messages_recent") as cursor:
            cursor.execute("""
                SELECT * FROM messages
                WHERE conversation_id = ?
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
            """, (conversation_id, limit))
            rows = [_row_to_dict(row, ["sources_json"]) for row in cursor.fetchall()]
        rows.reverse()
        return rows

    def get_messages(self, conversation_id: int) -> List[Dict[str, Any]]:
        with self.transaction("messages_get") as cursor:
            cursor.execute("""
                SELECT * FROM messages
                WHERE conversation_id = ?
                ORDER BY timestamp ASC, id ASC
            """, (conversation_id,))
            return [_row_to_dict(row, ["sources_json"]) for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def get_stats(self, recent_limit: int = 10) -> Dict[str, Any]:
        """Usage counters and the most recently active conversations."""
        with self.transaction("stats") as cursor:
            cursor.execute("SELECT COUNT(*) FROM conversations")
            total_conversations = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM conversations WHERE status = 'active'")
            active_conversations = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM messages")
            total_messages = cursor.fetchone()[0]
            cursor.execute("SELECT status, COUNT(*) FROM documents GROUP BY status")
            documents = {row[0]: row[1] for row in cursor.fetchall()}
            cursor.execute("""
                SELECT c.id, c.session_id, c.user_id, c.started_at, c.last_activity, c.status,
                       COUNT(m.id) AS message_count
                FROM conversations c
                LEFT JOIN messages m ON m.conversation_id = c.id
                GROUP BY c.id
                ORDER BY c.last_activity DESC, c.id DESC
                LIMIT ?
            """, (recent_limit,))
            recent = [_row_to_dict(row) for row in cursor.fetchall()]

        return {
            "total_conversations": total_conversations,
            "active_conversations": active_conversations,
            "total_messages": total_messages,
            "total_documents": sum(documents.values()),
            "processed_documents": documents.get("processed", 0),
            "recent_conversations": recent,
        }

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self.transaction("setting_get") as cursor:
            cursor.execute("SELECT setting_value FROM settings WHERE setting_key = ?", (key,))
            row = cursor.fetchone()
        if row is None or row["setting_value"] is None:
            return default
        return json.loads(row["setting_value"])

    def set_setting(self, key: str, value: Any) -> None:
        with self.transaction("setting_set") as cursor:
            cursor.execute("""
                INSERT INTO settings (setting_key, setting_value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(setting_key) DO UPDATE SET
                    setting_value = excluded.setting_value,
                    updated_at = excluded.updated_at
            """, (key, json.dumps(value), utcnow()))

    # ------------------------------------------------------------------
    # Rate limits
    # ------------------------------------------------------------------

    def consume_rate_limit(
        self,
        limit_key: str,
        max_requests: int,
        window_seconds: float,
        now: float,
    ) -> Tuple[bool, int, float]:
        """Check a windowed counter and increment it if the request is allowed.

        Runs under BEGIN IMMEDIATE so concurrent callers serialize on the
        write lock and cannot both read the same count.

        Args:
            limit_key: Counter key (user or IP based)
            max_requests: Ceiling per window
            window_seconds: Window length, starting at the first accepted request
            now: Current time as a UNIX timestamp

        Returns:
            Tuple of (allowed, count after this call, window reset time)
        """
        conn = self.get_connection()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT request_count, window_start FROM rate_limits WHERE limit_key = ?",
                (limit_key,),
            ).fetchone()

            if row is None or now - row["window_start"] >= window_seconds:
                conn.execute("""
                    INSERT INTO rate_limits (limit_key, request_count, window_start)
                    VALUES (?, 1, ?)
                    ON CONFLICT(limit_key) DO UPDATE SET
                        request_count = 1, window_start = excluded.window_start
                """, (limit_key, now))
                result = (True, 1, now + window_seconds)
            elif row["request_count"] >= max_requests:
                result = (False, row["request_count"], row["window_start"] + window_seconds)
            else:
                conn.execute(
                    "UPDATE rate_limits SET request_count = request_count + 1 WHERE limit_key = ?",
                    (limit_key,),
                )
                result = (True, row["request_count"] + 1, row["window_start"] + window_seconds)

            conn.execute("COMMIT")
            return result

        except Exception as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error("rate_limit_update_failed", error=str(e), limit_key=limit_key)
            raise
        finally:
            conn.close()
