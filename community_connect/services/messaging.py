from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Any, Dict, List, Tuple

from community_connect.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from community_connect.core.keying import new_id
from community_connect.core.time import utc_now_iso

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
  id              TEXT PRIMARY KEY,
  user_a          TEXT NOT NULL,       -- lexicographically smaller id
  user_b          TEXT NOT NULL,
  created_at      TEXT NOT NULL,
  last_message_at TEXT,
  UNIQUE (user_a, user_b)
);

CREATE TABLE IF NOT EXISTS messages (
  id              TEXT PRIMARY KEY,
  conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
  sender_id       TEXT NOT NULL,
  content         TEXT NOT NULL,
  is_read         INTEGER NOT NULL DEFAULT 0,
  created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at);
"""


def _pair(a: str, b: str) -> Tuple[str, str]:
    return (a, b) if a <= b else (b, a)


class ConversationStore:
    """Direct messages between two users. One conversation per unordered pair."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.Lock()

    def ensure_schema(self) -> None:
        self.conn.executescript(_SCHEMA_SQL)
        self.conn.commit()

    @staticmethod
    def _conversation(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "participants": [row["user_a"], row["user_b"]],
            "createdAt": row["created_at"],
            "lastMessageAt": row["last_message_at"],
        }

    @staticmethod
    def _message(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "conversationId": row["conversation_id"],
            "senderId": row["sender_id"],
            "content": row["content"],
            "isRead": bool(row["is_read"]),
            "createdAt": row["created_at"],
        }

    def _require_member(self, user_id: str, conversation_id: str) -> sqlite3.Row:
        row = self.conn.execute("SELECT * FROM conversations WHERE id=?;", (conversation_id,)).fetchone()
        if row is None:
            raise NotFoundError("Conversation not found", code="conversation_not_found")
        if user_id not in (row["user_a"], row["user_b"]):
            raise PermissionDeniedError("Not a member of this conversation", code="not_a_member")
        return row

    @staticmethod
    def other_participant(row: sqlite3.Row, user_id: str) -> str:
        return row["user_b"] if row["user_a"] == user_id else row["user_a"]

    # ──────────────────────────────────────────────────────────
    # Conversations
    # ──────────────────────────────────────────────────────────

    def get_or_create_conversation(self, user_id: str, other_user_id: str) -> Dict[str, Any]:
        if user_id == other_user_id:
            raise ValidationError("Cannot start a conversation with yourself", code="self_conversation")

        a, b = _pair(user_id, other_user_id)
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO conversations (id, user_a, user_b, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_a, user_b) DO NOTHING;
                """,
                (new_id(), a, b, utc_now_iso()),
            )
            self.conn.commit()
        row = self.conn.execute(
            "SELECT * FROM conversations WHERE user_a=? AND user_b=?;", (a, b)
        ).fetchone()
        return self._conversation(row)

    def list_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        """Conversations for a user, most recent activity first."""
        rows = self.conn.execute(
            """
            SELECT * FROM conversations
            WHERE user_a=? OR user_b=?
            ORDER BY COALESCE(last_message_at, created_at) DESC;
            """,
            (user_id, user_id),
        ).fetchall()

        out: List[Dict[str, Any]] = []
        for row in rows:
            conv = self._conversation(row)
            conv["otherUserId"] = self.other_participant(row, user_id)
            last = self.conn.execute(
                "SELECT * FROM messages WHERE conversation_id=? ORDER BY created_at DESC, rowid DESC LIMIT 1;",
                (row["id"],),
            ).fetchone()
            conv["lastMessage"] = self._message(last) if last else None
            conv["unreadCount"] = self._unread_in(row["id"], user_id)
            out.append(conv)
        return out

    # ──────────────────────────────────────────────────────────
    # Messages
    # ──────────────────────────────────────────────────────────

    def list_messages(self, user_id: str, conversation_id: str) -> List[Dict[str, Any]]:
        self._require_member(user_id, conversation_id)
        rows = self.conn.execute(
            "SELECT * FROM messages WHERE conversation_id=? ORDER BY created_at ASC, rowid ASC;",
            (conversation_id,),
        ).fetchall()
        return [self._message(r) for r in rows]

    def send_message(self, user_id: str, conversation_id: str, content: str) -> Tuple[Dict[str, Any], str]:
        """Returns (message, recipient_id)."""
        row = self._require_member(user_id, conversation_id)
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content is required", code="empty_message")
        if len(content) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message exceeds {MAX_MESSAGE_LENGTH} characters", code="message_too_long")

        mid = new_id()
        now = utc_now_iso()
        with self._lock:
            self.conn.execute(
                "INSERT INTO messages (id, conversation_id, sender_id, content, created_at) VALUES (?, ?, ?, ?, ?);",
                (mid, conversation_id, user_id, content, now),
            )
            self.conn.execute("UPDATE conversations SET last_message_at=? WHERE id=?;", (now, conversation_id))
            self.conn.commit()

        msg = self._message(self.conn.execute("SELECT * FROM messages WHERE id=?;", (mid,)).fetchone())
        return msg, self.other_participant(row, user_id)

    def mark_read(self, user_id: str, conversation_id: str) -> int:
        self._require_member(user_id, conversation_id)
        with self._lock:
            cur = self.conn.execute(
                "UPDATE messages SET is_read=1 WHERE conversation_id=? AND sender_id<>? AND is_read=0;",
                (conversation_id, user_id),
            )
            self.conn.commit()
        return cur.rowcount

    def _unread_in(self, conversation_id: str, user_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM messages WHERE conversation_id=? AND sender_id<>? AND is_read=0;",
            (conversation_id, user_id),
        ).fetchone()
        return int(row[0])

    def unread_count(self, user_id: str) -> int:
        row = self.conn.execute(
            """
            SELECT COUNT(*) FROM messages m
            JOIN conversations c ON c.id = m.conversation_id
            WHERE (c.user_a=? OR c.user_b=?) AND m.sender_id<>? AND m.is_read=0;
            """,
            (user_id, user_id, user_id),
        ).fetchone()
        return int(row[0])

