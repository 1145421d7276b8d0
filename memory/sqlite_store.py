"""SQLite-based store for conversations, summaries, memories and uploads."""

import sqlite3
import logging
from pathlib import Path
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import ValidationError as PydanticValidationError

from schemas.messages import ConversationMessage
from .models import Conversation, TrackedFile

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1


class SummaryOrderError(ValueError):
    """A summary older than the latest stored one was appended."""


class SQLiteMemoryStore:
    """SQLite-based persistent memory store."""

    def __init__(self, db_path: str = "data/conversations.db"):
        """
        Initialize SQLite memory store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS conversations (
                conversation_id TEXT PRIMARY KEY,
                title TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Messages are stored whole, in conversational order
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                timestamp INTEGER NOT NULL,
                payload TEXT NOT NULL,
                FOREIGN KEY (conversation_id) REFERENCES conversations(conversation_id)
            )
        """)

        # Append-only summary log
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS summaries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                payload TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS memories (
                memory_key TEXT PRIMARY KEY,
                memory_value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS uploaded_files (
                file_id TEXT PRIMARY KEY,
                file_uri TEXT NOT NULL,
                upload_time INTEGER NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                document_id TEXT PRIMARY KEY,
                content TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_summaries_conversation ON summaries(conversation_id)"
        )

        conn.commit()
        conn.close()
        logger.info(f"Database initialized at {self.db_path}")

    # Conversations

    def create_conversation(self, conversation_id: str, title: Optional[str] = None) -> Conversation:
        """
        Create a new conversation.

        Args:
            conversation_id: Unique conversation ID
            title: Optional title

        Returns:
            Created Conversation object
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        now = datetime.now()

        cursor.execute(
            """
            INSERT INTO conversations (conversation_id, title, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (conversation_id, title, now.isoformat(), now.isoformat())
        )

        conn.commit()
        conn.close()

        return Conversation(
            conversation_id=conversation_id,
            title=title,
            created_at=now,
            updated_at=now
        )

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        """
        Get a conversation with all messages.

        Args:
            conversation_id: Conversation ID

        Returns:
            Conversation object or None if not found
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute(
            "SELECT * FROM conversations WHERE conversation_id = ?",
            (conversation_id,)
        )
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None

        return Conversation(
            conversation_id=row["conversation_id"],
            title=row["title"],
            created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else datetime.now(),
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else datetime.now(),
            messages=self.load_messages(conversation_id)
        )

    def list_conversations(self, limit: int = 50) -> List[Conversation]:
        """List conversations, most recently updated first, without messages."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute(
            """
            SELECT * FROM conversations
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (limit,)
        )
        rows = cursor.fetchall()
        conn.close()

        return [
            Conversation(
                conversation_id=row["conversation_id"],
                title=row["title"],
                created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else datetime.now(),
                updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else datetime.now(),
            )
            for row in rows
        ]

    # Messages

    def save_messages(self, conversation_id: str, messages: List[ConversationMessage]):
        """
        Replace the stored messages of a conversation.

        Used after edits, deletions and attachment expiry, which rewrite
        messages already stored.
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
        cursor.executemany(
            """
            INSERT INTO messages (conversation_id, position, timestamp, payload)
            VALUES (?, ?, ?, ?)
            """,
            [
                (conversation_id, position, message.timestamp, message.model_dump_json())
                for position, message in enumerate(messages)
            ]
        )
        cursor.execute(
            "UPDATE conversations SET updated_at = ? WHERE conversation_id = ?",
            (datetime.now().isoformat(), conversation_id)
        )

        conn.commit()
        conn.close()

    def append_message(self, conversation_id: str, message: ConversationMessage):
        """Append one message at the end of a conversation."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute(
            "SELECT MAX(position) FROM messages WHERE conversation_id = ?",
            (conversation_id,)
        )
        result = cursor.fetchone()
        position = (result[0] if result[0] is not None else -1) + 1

        cursor.execute(
            """
            INSERT INTO messages (conversation_id, position, timestamp, payload)
            VALUES (?, ?, ?, ?)
            """,
            (conversation_id, position, message.timestamp, message.model_dump_json())
        )
        cursor.execute(
            "UPDATE conversations SET updated_at = ? WHERE conversation_id = ?",
            (datetime.now().isoformat(), conversation_id)
        )

        conn.commit()
        conn.close()

    def load_messages(self, conversation_id: str) -> List[ConversationMessage]:
        """Load the messages of a conversation in conversational order."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute(
            """
            SELECT payload FROM messages
            WHERE conversation_id = ?
            ORDER BY position
            """,
            (conversation_id,)
        )
        rows = cursor.fetchall()
        conn.close()

        return [ConversationMessage.model_validate_json(row["payload"]) for row in rows]

    # Summary log

    def append_summary(self, conversation_id: str, summary: ConversationMessage):
        """
        Append a summary to the log of a conversation.

        Raises:
            SummaryOrderError: If the summary is older than the latest one
        """
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute(
            "SELECT MAX(timestamp) FROM summaries WHERE conversation_id = ?",
            (conversation_id,)
        )
        result = cursor.fetchone()
        latest = result[0] if result else None

        if latest is not None and summary.timestamp < latest:
            conn.close()
            raise SummaryOrderError(
                f"Summary at {summary.timestamp} is older than latest summary at {latest}"
            )

        cursor.execute(
            "INSERT INTO summaries (conversation_id, timestamp, payload) VALUES (?, ?, ?)",
            (conversation_id, summary.timestamp, summary.model_dump_json())
        )

        conn.commit()
        conn.close()
        logger.info(f"Stored summary for conversation {conversation_id} at {summary.timestamp}")

    def get_summaries(self, conversation_id: str) -> List[ConversationMessage]:
        """Get the summary log of a conversation in storage order."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute(
            "SELECT payload FROM summaries WHERE conversation_id = ? ORDER BY id",
            (conversation_id,)
        )
        rows = cursor.fetchall()
        conn.close()

        return [ConversationMessage.model_validate_json(row["payload"]) for row in rows]

    # User memories

    def get_all_memories(self) -> Dict[str, str]:
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT memory_key, memory_value FROM memories ORDER BY memory_key")
        rows = cursor.fetchall()
        conn.close()
        return {row["memory_key"]: row["memory_value"] for row in rows}

    def get_memory(self, memory_key: str) -> Optional[str]:
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT memory_value FROM memories WHERE memory_key = ?", (memory_key,))
        row = cursor.fetchone()
        conn.close()
        return row["memory_value"] if row else None

    def set_memory(self, memory_key: str, memory_value: str):
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute(
            """
            INSERT OR REPLACE INTO memories (memory_key, memory_value, updated_at)
            VALUES (?, ?, ?)
            """,
            (memory_key, memory_value, datetime.now().isoformat())
        )
        conn.commit()
        conn.close()

    def delete_memory(self, memory_key: str) -> bool:
        """Delete a memory. Returns False if it did not exist."""
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("DELETE FROM memories WHERE memory_key = ?", (memory_key,))
        deleted = cursor.rowcount > 0
        conn.commit()
        conn.close()
        return deleted

    # Uploaded files

    def track_file(self, tracked: TrackedFile):
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute(
            """
            INSERT OR REPLACE INTO uploaded_files (file_id, file_uri, upload_time)
            VALUES (?, ?, ?)
            """,
            (tracked.file_id, tracked.file_uri, tracked.upload_time)
        )
        conn.commit()
        conn.close()

    def get_tracked_file(self, file_id: str) -> Optional[TrackedFile]:
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM uploaded_files WHERE file_id = ?", (file_id,))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None
        return TrackedFile(
            file_id=row["file_id"],
            file_uri=row["file_uri"],
            upload_time=row["upload_time"]
        )

    def delete_tracked_file(self, file_id: str):
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("DELETE FROM uploaded_files WHERE file_id = ?", (file_id,))
        conn.commit()
        conn.close()

    def list_tracked_files(self) -> List[TrackedFile]:
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM uploaded_files ORDER BY upload_time")
        rows = cursor.fetchall()
        conn.close()
        return [
            TrackedFile(file_id=row["file_id"], file_uri=row["file_uri"], upload_time=row["upload_time"])
            for row in rows
        ]

    # Export and import

    def export_conversation(self, conversation_id: str) -> Dict[str, Any]:
        """
        Bundle a conversation for transfer to another store.

        The bundle holds the conversation's messages in order, its summary
        log, and the tracked uploads its attachments refer to.

        Args:
            conversation_id: Conversation ID

        Returns:
            JSON-serializable bundle

        Raises:
            KeyError: If the conversation does not exist
        """
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            raise KeyError(f"Unknown conversation: {conversation_id}")

        summaries = self.get_summaries(conversation_id)
        attachment_uris = {
            part.attachment.file_uri
            for message in conversation.messages + summaries
            for part in message.parts
            if part.attachment is not None and part.attachment.file_uri
        }
        uploaded_files = [
            tracked.model_dump() for tracked in self.list_tracked_files()
            if tracked.file_uri in attachment_uris
        ]

        return {
            "version": EXPORT_VERSION,
            "exported_at": datetime.now().isoformat(),
            "conversation": {
                "conversation_id": conversation.conversation_id,
                "title": conversation.title,
            },
            "messages": [message.model_dump(mode="json") for message in conversation.messages],
            "summaries": [summary.model_dump(mode="json") for summary in summaries],
            "uploaded_files": uploaded_files,
        }

    def import_conversation(self, bundle: Dict[str, Any], conversation_id: Optional[str] = None) -> str:
        """
        Restore a bundle made by export_conversation.

        An existing conversation with the same ID has its messages and
        summary log replaced.

        Args:
            bundle: Exported bundle
            conversation_id: Import under this ID instead of the exported one

        Returns:
            ID of the imported conversation

        Raises:
            ValueError: If the bundle is malformed or of an unknown version
        """
        if not isinstance(bundle, dict) or bundle.get("version") != EXPORT_VERSION:
            raise ValueError("Unsupported conversation export")

        try:
            meta = bundle["conversation"]
            messages = [ConversationMessage.model_validate(m) for m in bundle.get("messages", [])]
            summaries = [ConversationMessage.model_validate(s) for s in bundle.get("summaries", [])]
            uploaded_files = [TrackedFile.model_validate(f) for f in bundle.get("uploaded_files", [])]
            target_id = conversation_id or meta["conversation_id"]
        except (KeyError, TypeError, PydanticValidationError) as e:
            raise ValueError(f"Malformed conversation export: {e}") from e

        timestamps = [summary.timestamp for summary in summaries]
        if timestamps != sorted(timestamps):
            raise SummaryOrderError("Exported summary log is not in timestamp order")

        conn = self._get_connection()
        cursor = conn.cursor()
        now = datetime.now().isoformat()

        cursor.execute(
            """
            INSERT OR IGNORE INTO conversations (conversation_id, title, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (target_id, meta.get("title"), now, now)
        )
        cursor.execute("DELETE FROM messages WHERE conversation_id = ?", (target_id,))
        cursor.executemany(
            "INSERT INTO messages (conversation_id, position, timestamp, payload) VALUES (?, ?, ?, ?)",
            [
                (target_id, position, message.timestamp, message.model_dump_json())
                for position, message in enumerate(messages)
            ]
        )
        cursor.execute("DELETE FROM summaries WHERE conversation_id = ?", (target_id,))
        cursor.executemany(
            "INSERT INTO summaries (conversation_id, timestamp, payload) VALUES (?, ?, ?)",
            [(target_id, summary.timestamp, summary.model_dump_json()) for summary in summaries]
        )
        cursor.executemany(
            "INSERT OR REPLACE INTO uploaded_files (file_id, file_uri, upload_time) VALUES (?, ?, ?)",
            [(f.file_id, f.file_uri, f.upload_time) for f in uploaded_files]
        )
        cursor.execute(
            "UPDATE conversations SET updated_at = ? WHERE conversation_id = ?",
            (now, target_id)
        )

        conn.commit()
        conn.close()
        logger.info(
            f"Imported conversation {target_id}: {len(messages)} messages, "
            f"{len(summaries)} summaries, {len(uploaded_files)} uploads"
        )
        return target_id

    # Co-edited document

    def get_document(self, document_id: str = "default") -> str:
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT content FROM documents WHERE document_id = ?", (document_id,))
        row = cursor.fetchone()
        conn.close()
        return row["content"] if row else ""

    def set_document(self, content: str, document_id: str = "default"):
        conn = self._get_connection()
        cursor = conn.cursor()
        cursor.execute(
            """
            INSERT OR REPLACE INTO documents (document_id, content, updated_at)
            VALUES (?, ?, ?)
            """,
            (document_id, content, datetime.now().isoformat())
        )
        conn.commit()
        conn.close()
