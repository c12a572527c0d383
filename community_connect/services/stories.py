from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from community_connect.core.errors import NotFoundError, ValidationError
from community_connect.core.keying import new_id
from community_connect.core.settings import settings
from community_connect.core.time import parse_iso, utc_now
from community_connect.services.users import UserStore, poster_name

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS stories (
  id         TEXT PRIMARY KEY,
  user_id    TEXT NOT NULL,
  content    TEXT,
  photo_url  TEXT,
  location   TEXT,
  created_at TEXT NOT NULL,
  expires_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_stories_expires ON stories(expires_at);

CREATE TABLE IF NOT EXISTS story_views (
  story_id  TEXT NOT NULL,
  viewer_id TEXT NOT NULL,
  viewed_at TEXT NOT NULL,
  PRIMARY KEY (story_id, viewer_id)
);
"""


class StoryStore:
    """Short-lived posts that disappear once `expiresAt` passes."""

    def __init__(self, conn: sqlite3.Connection, *, clock=utc_now):
        self.conn = conn
        self._clock = clock
        self._lock = threading.Lock()

    def ensure_schema(self) -> None:
        self.conn.executescript(_SCHEMA_SQL)
        self.conn.commit()

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "userId": row["user_id"],
            "content": row["content"],
            "photoUrl": row["photo_url"],
            "location": row["location"],
            "createdAt": row["created_at"],
            "expiresAt": row["expires_at"],
        }

    def _is_live(self, story: Dict[str, Any], now: Optional[datetime] = None) -> bool:
        expires = parse_iso(story["expiresAt"])
        return expires is not None and expires > (now or self._clock())

    def create_story(
        self,
        user_id: str,
        *,
        content: Optional[str] = None,
        photo_url: Optional[str] = None,
        location: Optional[str] = None,
    ) -> Dict[str, Any]:
        content = (content or "").strip() or None
        photo_url = (photo_url or "").strip() or None
        if not content and not photo_url:
            raise ValidationError("A story needs content or a photo", code="empty_story")

        created = self._clock()
        expires = created + timedelta(hours=settings.story_ttl_hours)
        sid = new_id()
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO stories (id, user_id, content, photo_url, location, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (sid, user_id, content, photo_url, location, created.isoformat(), expires.isoformat()),
            )
            self.conn.commit()
        row = self.conn.execute("SELECT * FROM stories WHERE id=?;", (sid,)).fetchone()
        return self._from_row(row)

    def active_stories(self, viewer_id: Optional[str], users: UserStore) -> List[Dict[str, Any]]:
        now = self._clock()
        rows = self.conn.execute("SELECT * FROM stories ORDER BY created_at DESC, rowid DESC;").fetchall()
        stories = [s for s in (self._from_row(r) for r in rows) if self._is_live(s, now)]

        authors = {u["id"]: u for u in users.get_many(s["userId"] for s in stories)}
        for story in stories:
            author = authors.get(story["userId"])
            story["userName"] = poster_name(author)
            story["userAvatar"] = (author or {}).get("avatarUrl")
            story["viewCount"] = self._view_count(story["id"])
            story["hasViewed"] = self._has_viewed(story["id"], viewer_id) if viewer_id else False
        return stories

    def mark_viewed(self, viewer_id: str, story_id: str) -> None:
        row = self.conn.execute("SELECT * FROM stories WHERE id=?;", (story_id,)).fetchone()
        if row is None or not self._is_live(self._from_row(row)):
            raise NotFoundError("Story not found or expired", code="story_not_found")
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO story_views (story_id, viewer_id, viewed_at) VALUES (?, ?, ?)
                ON CONFLICT(story_id, viewer_id) DO NOTHING;
                """,
                (story_id, viewer_id, self._clock().isoformat()),
            )
            self.conn.commit()

    def _view_count(self, story_id: str) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM story_views WHERE story_id=?;", (story_id,)).fetchone()
        return int(row[0])

    def _has_viewed(self, story_id: str, viewer_id: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM story_views WHERE story_id=? AND viewer_id=?;", (story_id, viewer_id)
        ).fetchone()
        return row is not None
