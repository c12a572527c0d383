"""
In-app notifications, the per-post delivery ledger, push tokens and the
broadcast logic that decides who hears about a post.

A post is any unified incident. Eligibility is driven by each user's
notification preferences: enabled flag, category list, radius around their
preferred location.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Literal, Optional

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from community_connect.core.contracts import UnifiedIncident
from community_connect.core.errors import NotFoundError
from community_connect.core.geo import calculate_distance
from community_connect.core.keying import new_id
from community_connect.core.settings import settings
from community_connect.core.time import parse_iso, utc_now, utc_now_iso
from community_connect.services.incident_store import IncidentStore
from community_connect.services.users import AGENCY_FOR_SOURCE, UserStore, parse_radius_km, poster_name

logger = logging.getLogger(__name__)

NotificationReason = Literal["new_post", "status_update", "severity_update", "backfill"]

# FCM caps a multicast at 500 registration tokens
MULTICAST_LIMIT = 500

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS notifications (
  id           TEXT PRIMARY KEY,
  user_id      TEXT NOT NULL,
  type         TEXT NOT NULL,      -- new_post|post_update|backfill|comment_reply|new_message
  title        TEXT NOT NULL,
  message      TEXT NOT NULL,
  entity_id    TEXT,
  entity_type  TEXT,
  from_user_id TEXT,
  is_read      INTEGER NOT NULL DEFAULT 0,
  created_at   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, created_at);

CREATE TABLE IF NOT EXISTS notification_deliveries (
  user_id    TEXT NOT NULL,
  post_id    TEXT NOT NULL,
  reason     TEXT NOT NULL,
  push_sent  INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  PRIMARY KEY (user_id, post_id)
);
"""

_PUSH_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS push_subscriptions (
  token      TEXT PRIMARY KEY,
  user_id    TEXT NOT NULL,
  platform   TEXT NOT NULL,
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_push_user ON push_subscriptions(user_id);
"""


# ──────────────────────────────────────────────────────────────
# Stores
# ──────────────────────────────────────────────────────────────

class NotificationStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.Lock()

    def ensure_schema(self) -> None:
        self.conn.executescript(_SCHEMA_SQL)
        self.conn.commit()

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "userId": row["user_id"],
            "type": row["type"],
            "title": row["title"],
            "message": row["message"],
            "entityId": row["entity_id"],
            "entityType": row["entity_type"],
            "fromUserId": row["from_user_id"],
            "isRead": bool(row["is_read"]),
            "createdAt": row["created_at"],
        }

    def create(
        self,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        from_user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        nid = new_id()
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO notifications (
                  id, user_id, type, title, message, entity_id, entity_type, from_user_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (nid, user_id, type, title, message, entity_id, entity_type, from_user_id, utc_now_iso()),
            )
            self.conn.commit()
        row = self.conn.execute("SELECT * FROM notifications WHERE id=?;", (nid,)).fetchone()
        return self._from_row(row)

    def list(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM notifications WHERE user_id=? ORDER BY created_at DESC, rowid DESC LIMIT ?;",
            (user_id, int(limit)),
        ).fetchall()
        return [self._from_row(r) for r in rows]

    def unread_count(self, user_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM notifications WHERE user_id=? AND is_read=0;", (user_id,)
        ).fetchone()
        return int(row[0])

    def mark_read(self, notification_id: str, user_id: str) -> None:
        with self._lock:
            cur = self.conn.execute(
                "UPDATE notifications SET is_read=1 WHERE id=? AND user_id=?;", (notification_id, user_id)
            )
            self.conn.commit()
        if cur.rowcount == 0:
            raise NotFoundError("Notification not found", code="notification_not_found")

    def mark_all_read(self, user_id: str) -> int:
        with self._lock:
            cur = self.conn.execute("UPDATE notifications SET is_read=1 WHERE user_id=? AND is_read=0;", (user_id,))
            self.conn.commit()
        return cur.rowcount

    # ── delivery ledger ──────────────────────────────────────

    def users_not_notified(self, post_id: str, user_ids: Iterable[str]) -> List[str]:
        ids = list(user_ids)
        if not ids:
            return []
        done = {
            r["user_id"]
            for r in self.conn.execute("SELECT user_id FROM notification_deliveries WHERE post_id=?;", (post_id,))
        }
        return [u for u in ids if u not in done]

    def record_delivery(self, user_id: str, post_id: str, reason: str, push_sent: bool = False) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO notification_deliveries (user_id, post_id, reason, push_sent, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, post_id) DO UPDATE SET
                  reason=excluded.reason,
                  push_sent=MAX(push_sent, excluded.push_sent);
                """,
                (user_id, post_id, reason, 1 if push_sent else 0, utc_now_iso()),
            )
            self.conn.commit()

    def has_been_notified(self, user_id: str, post_id: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM notification_deliveries WHERE user_id=? AND post_id=?;", (user_id, post_id)
        ).fetchone()
        return row is not None


class PushSubscriptionStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.Lock()

    def ensure_schema(self) -> None:
        self.conn.executescript(_PUSH_SCHEMA_SQL)
        self.conn.commit()

    def subscribe(self, user_id: str, token: str, platform: str = "web") -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO push_subscriptions (token, user_id, platform, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(token) DO UPDATE SET
                  user_id=excluded.user_id,
                  platform=excluded.platform;
                """,
                (token, user_id, platform, utc_now_iso()),
            )
            self.conn.commit()

    def unsubscribe(self, user_id: str, token: str) -> bool:
        with self._lock:
            cur = self.conn.execute("DELETE FROM push_subscriptions WHERE user_id=? AND token=?;", (user_id, token))
            self.conn.commit()
        return cur.rowcount > 0

    def remove(self, token: str) -> None:
        with self._lock:
            self.conn.execute("DELETE FROM push_subscriptions WHERE token=?;", (token,))
            self.conn.commit()

    def tokens_for_users(self, user_ids: Iterable[str]) -> List[str]:
        ids = list(user_ids)
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        rows = self.conn.execute(
            f"SELECT token FROM push_subscriptions WHERE user_id IN ({placeholders});", ids
        ).fetchall()
        return [r["token"] for r in rows]


# ──────────────────────────────────────────────────────────────
# Push (Firebase Cloud Messaging)
# ──────────────────────────────────────────────────────────────

class PushSender:
    def __init__(self, credentials_path: Optional[str] = None):
        self._credentials_path = credentials_path
        self._lock = threading.Lock()
        self._initialized = False
        self._enabled = False

    @property
    def enabled(self) -> bool:
        self._ensure_initialized()
        return self._enabled

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            path = (self._credentials_path if self._credentials_path is not None else settings.firebase_credentials_path).strip()
            if not path:
                self._initialized = True
                logger.info("[push] disabled: FIREBASE_CREDENTIALS_PATH not set")
                return
            try:
                cred = credentials.Certificate(path)
                if not firebase_admin._apps:  # pylint: disable=protected-access
                    firebase_admin.initialize_app(cred)
                self._enabled = True
                logger.info("[push] initialized")
            except (OSError, ValueError):
                logger.exception("[push] disabled: Firebase init failed")
            finally:
                self._initialized = True

    def send(self, tokens: List[str], title: str, body: str, data: Dict[str, str]) -> List[str]:
        """Multicast in FCM-sized slices. Returns the tokens that proved invalid."""
        self._ensure_initialized()
        if not self._enabled or not tokens:
            return []

        invalid: List[str] = []
        for start in range(0, len(tokens), MULTICAST_LIMIT):
            chunk = tokens[start:start + MULTICAST_LIMIT]
            try:
                batch = messaging.send_each_for_multicast(
                    messaging.MulticastMessage(
                        notification=messaging.Notification(title=title, body=body),
                        tokens=chunk,
                        data=data,
                    )
                )
            except (exceptions.FirebaseError, ValueError):
                logger.exception("[push] send failed for %d tokens", len(chunk))
                continue

            for idx, response in enumerate(batch.responses):
                if response.success:
                    continue
                error_text = str(response.exception).lower() if response.exception else ""
                if "registration token" in error_text or "invalid argument" in error_text or "not found" in error_text:
                    invalid.append(chunk[idx])
        return invalid


# ──────────────────────────────────────────────────────────────
# Eligibility
# ──────────────────────────────────────────────────────────────

_COMMUNITY_PREFS = ("safety", "community", "pets", "lostfound")


def matches_user_categories(prefs: List[str], source: Optional[str]) -> bool:
    if not prefs:
        return True
    for pref in prefs:
        if pref == "tmr" and source == "tmr":
            return True
        if pref == "emergency" and source == "emergency":
            return True
        if (not source or source == "user") and pref in _COMMUNITY_PREFS:
            return True
    return False


def eligible_users_for_post(
    post: UnifiedIncident,
    users: Iterable[Dict[str, Any]],
    default_radius: Optional[str] = None,
) -> List[str]:
    if post.centroidLat is None or post.centroidLng is None:
        logger.info("[notify] skipping post %s: no coordinates", post.id)
        return []

    default_radius = default_radius or settings.notification_default_radius
    out: List[str] = []
    for user in users:
        if user["id"] == post.userId:
            continue
        if not user.get("notificationsEnabled", True):
            continue
        lat, lng = user.get("preferredLocationLat"), user.get("preferredLocationLng")
        if lat is None or lng is None:
            continue
        if not matches_user_categories(user.get("notificationCategories") or [], post.source):
            continue
        radius_km = parse_radius_km(user.get("notificationRadius"), default_radius)
        if calculate_distance((lat, lng), (post.centroidLat, post.centroidLng)) > radius_km:
            continue
        out.append(user["id"])
    return out


def notification_title(source: Optional[str], reason: str) -> str:
    if reason in ("status_update", "severity_update"):
        return {"tmr": "Traffic Update", "emergency": "Emergency Update"}.get(source or "", "Post Updated")
    if reason == "backfill":
        return {"tmr": "Active Traffic Alert", "emergency": "Active Emergency"}.get(source or "", "Active Post Nearby")
    return {"tmr": "Traffic Alert", "emergency": "Emergency Alert"}.get(source or "", "New Post Nearby")


# ──────────────────────────────────────────────────────────────
# Broadcast
# ──────────────────────────────────────────────────────────────

class NotificationService:
    def __init__(
        self,
        *,
        notifications: NotificationStore,
        push_subscriptions: PushSubscriptionStore,
        users: UserStore,
        incidents: IncidentStore,
        push_sender: Optional[PushSender] = None,
    ):
        self.notifications = notifications
        self.push_subscriptions = push_subscriptions
        self.users = users
        self.incidents = incidents
        self.push_sender = push_sender or PushSender()

    def poster_name_for(self, post: UnifiedIncident) -> str:
        if post.userId:
            return poster_name(self.users.get(post.userId))
        if post.source in AGENCY_FOR_SOURCE:
            return poster_name(self.users.get(AGENCY_FOR_SOURCE[post.source]))
        return (post.properties or {}).get("reporterName") or "Unknown"

    def push(self, user_ids: List[str], title: str, body: str, data: Dict[str, str]) -> int:
        tokens = self.push_subscriptions.tokens_for_users(user_ids)
        if not tokens:
            return 0
        invalid = self.push_sender.send(tokens, title, body, data)
        for token in invalid:
            logger.info("[notify] removing invalid push token")
            self.push_subscriptions.remove(token)
        return len(tokens) - len(invalid) if self.push_sender.enabled else 0

    def notify(
        self,
        user_id: str,
        *,
        type: str,
        title: str,
        message: str,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        from_user_id: Optional[str] = None,
        url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """One in-app notification plus a best-effort push to the same user."""
        created = self.notifications.create(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            entity_id=entity_id,
            entity_type=entity_type,
            from_user_id=from_user_id,
        )
        data = {"notificationId": created["id"], "type": type}
        if url:
            data["url"] = url
        self.push([user_id], title, message, data)
        return created

    def broadcast_post(
        self,
        post: UnifiedIncident,
        poster: Optional[str] = None,
        reason: NotificationReason = "new_post",
    ) -> Dict[str, int]:
        poster = poster or self.poster_name_for(post)
        eligible = eligible_users_for_post(post, self.users.list_all())
        if not eligible:
            logger.info("[notify] no eligible users for %s (%s)", post.id, post.source)
            return {"inApp": 0, "push": 0}

        to_notify = self.notifications.users_not_notified(post.id, eligible)
        if not to_notify:
            logger.info("[notify] all %d eligible users already notified for %s", len(eligible), post.id)
            return {"inApp": 0, "push": 0}

        title = notification_title(post.source, reason)
        message = f"{poster}: {post.title}"
        for user_id in to_notify:
            self.notifications.create(
                user_id=user_id,
                type="new_post" if reason == "new_post" else "post_update",
                title=title,
                message=message,
                entity_id=post.id,
                entity_type="post",
                from_user_id=post.userId,
            )

        pushed = self.push(to_notify, title, message, {"incidentId": post.id, "url": f"/feed?highlight={post.id}"})
        for user_id in to_notify:
            self.notifications.record_delivery(user_id, post.id, reason, push_sent=pushed > 0)

        logger.info("[notify] %s for %s: %d in-app, %d push", reason, post.id, len(to_notify), pushed)
        return {"inApp": len(to_notify), "push": pushed}

    def backfill_for_user(
        self,
        user_id: str,
        lat: float,
        lng: float,
        radius_km: float,
        max_age_hours: Optional[int] = None,
    ) -> int:
        user = self.users.get(user_id)
        if not user or not user.get("notificationsEnabled", True):
            return 0

        hours = settings.notification_backfill_hours if max_age_hours is None else max_age_hours
        cutoff = utc_now() - timedelta(hours=hours)
        prefs = user.get("notificationCategories") or []
        count = 0

        for post in self.incidents.list_all():
            if post.status != "active" or post.userId == user_id:
                continue
            if post.centroidLat is None or post.centroidLng is None:
                continue
            updated = parse_iso(post.lastUpdated)
            if updated is None or updated < cutoff:
                continue
            if calculate_distance((lat, lng), (post.centroidLat, post.centroidLng)) > radius_km:
                continue
            if not matches_user_categories(prefs, post.source):
                continue
            if self.notifications.has_been_notified(user_id, post.id):
                continue

            self.notifications.create(
                user_id=user_id,
                type="backfill",
                title=notification_title(post.source, "backfill"),
                message=f"{self.poster_name_for(post)}: {post.title}",
                entity_id=post.id,
                entity_type="post",
                from_user_id=post.userId,
            )
            self.notifications.record_delivery(user_id, post.id, "backfill")
            count += 1

        if count:
            logger.info("[notify] backfilled %d notifications for %s", count, user_id)
        return count
