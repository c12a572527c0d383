# community_connect/services/incidents.py
"""
User-submitted reports and the social layer around every incident.

Reports are stored in the unified incident table (source "user"), so they
flow through the same feed, aging and clustering pipeline as the official
feeds. Comments, likes and follow-ups hang off the unified incident id and
work for official incidents too.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Any, Dict, List, Optional

from community_connect.core.contracts import (
    IncidentReportRequest,
    IncidentUpdateRequest,
    UnifiedIncident,
)
from community_connect.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from community_connect.core.keying import new_id
from community_connect.core.time import utc_now_iso
from community_connect.services.categories import (
    get_category_name,
    get_subcategory_name,
    is_known_category,
    is_known_subcategory,
)
from community_connect.services.geocoding import NominatimGeocoder
from community_connect.services.incident_store import IncidentStore, build_incident, derive_spatial_fields
from community_connect.services.notifications import NotificationService
from community_connect.services.users import poster_name

logger = logging.getLogger(__name__)

OFFICIAL_SOURCES = ("tmr", "emergency")

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS comments (
  id                TEXT PRIMARY KEY,
  incident_id       TEXT NOT NULL,
  user_id           TEXT NOT NULL,
  parent_comment_id TEXT,
  content           TEXT NOT NULL,
  created_at        TEXT NOT NULL,
  updated_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_comments_incident ON comments(incident_id, created_at);

CREATE TABLE IF NOT EXISTS likes (
  incident_id TEXT NOT NULL,
  user_id     TEXT NOT NULL,
  created_at  TEXT NOT NULL,
  PRIMARY KEY (incident_id, user_id)
);

CREATE TABLE IF NOT EXISTS follow_ups (
  id          TEXT PRIMARY KEY,
  incident_id TEXT NOT NULL,
  user_id     TEXT NOT NULL,
  status      TEXT NOT NULL,
  description TEXT NOT NULL,
  photo_url   TEXT,
  created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_follow_ups_incident ON follow_ups(incident_id, created_at);
"""


# ──────────────────────────────────────────────────────────────
# Social store
# ──────────────────────────────────────────────────────────────

class SocialStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.Lock()

    def ensure_schema(self) -> None:
        self.conn.executescript(_SCHEMA_SQL)
        self.conn.commit()

    @staticmethod
    def _comment(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "incidentId": row["incident_id"],
            "userId": row["user_id"],
            "parentCommentId": row["parent_comment_id"],
            "content": row["content"],
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }

    @staticmethod
    def _follow_up(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "incidentId": row["incident_id"],
            "userId": row["user_id"],
            "status": row["status"],
            "description": row["description"],
            "photoUrl": row["photo_url"],
            "createdAt": row["created_at"],
        }

    # ── comments ─────────────────────────────────────────────

    def list_comments(self, incident_id: str) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM comments WHERE incident_id=? ORDER BY created_at ASC, rowid ASC;", (incident_id,)
        ).fetchall()
        return [self._comment(r) for r in rows]

    def get_comment(self, comment_id: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM comments WHERE id=?;", (comment_id,)).fetchone()
        return self._comment(row) if row else None

    def insert_comment(self, incident_id: str, user_id: str, content: str, parent_id: Optional[str]) -> Dict[str, Any]:
        cid = new_id()
        now = utc_now_iso()
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO comments (id, incident_id, user_id, parent_comment_id, content, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (cid, incident_id, user_id, parent_id, content, now, now),
            )
            self.conn.commit()
        return self.get_comment(cid)

    def set_comment_content(self, comment_id: str, content: str) -> Dict[str, Any]:
        with self._lock:
            self.conn.execute(
                "UPDATE comments SET content=?, updated_at=? WHERE id=?;", (content, utc_now_iso(), comment_id)
            )
            self.conn.commit()
        return self.get_comment(comment_id)

    def delete_comment(self, comment_id: str) -> None:
        with self._lock:
            # replies go with their parent
            self.conn.execute("DELETE FROM comments WHERE id=? OR parent_comment_id=?;", (comment_id, comment_id))
            self.conn.commit()

    # ── likes ────────────────────────────────────────────────

    def toggle_like(self, incident_id: str, user_id: str) -> bool:
        """Returns True when the incident is now liked."""
        with self._lock:
            cur = self.conn.execute("DELETE FROM likes WHERE incident_id=? AND user_id=?;", (incident_id, user_id))
            liked = cur.rowcount == 0
            if liked:
                self.conn.execute(
                    "INSERT INTO likes (incident_id, user_id, created_at) VALUES (?, ?, ?);",
                    (incident_id, user_id, utc_now_iso()),
                )
            self.conn.commit()
        return liked

    def like_count(self, incident_id: str) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM likes WHERE incident_id=?;", (incident_id,)).fetchone()
        return int(row[0])

    def has_liked(self, incident_id: str, user_id: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM likes WHERE incident_id=? AND user_id=?;", (incident_id, user_id)
        ).fetchone()
        return row is not None

    # ── follow-ups ───────────────────────────────────────────

    def list_follow_ups(self, incident_id: str) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM follow_ups WHERE incident_id=? ORDER BY created_at ASC, rowid ASC;", (incident_id,)
        ).fetchall()
        return [self._follow_up(r) for r in rows]

    def insert_follow_up(
        self, incident_id: str, user_id: str, status: str, description: str, photo_url: Optional[str]
    ) -> Dict[str, Any]:
        fid = new_id()
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO follow_ups (id, incident_id, user_id, status, description, photo_url, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (fid, incident_id, user_id, status, description, photo_url, utc_now_iso()),
            )
            self.conn.commit()
        row = self.conn.execute("SELECT * FROM follow_ups WHERE id=?;", (fid,)).fetchone()
        return self._follow_up(row)

    def delete_for_incident(self, incident_id: str) -> None:
        with self._lock:
            self.conn.execute("DELETE FROM comments WHERE incident_id=?;", (incident_id,))
            self.conn.execute("DELETE FROM likes WHERE incident_id=?;", (incident_id,))
            self.conn.execute("DELETE FROM follow_ups WHERE incident_id=?;", (incident_id,))
            self.conn.commit()


# ──────────────────────────────────────────────────────────────
# Ownership
# ──────────────────────────────────────────────────────────────

def incident_owner(inc: UnifiedIncident) -> Optional[str]:
    return inc.userId or (inc.properties or {}).get("reporterId")


def check_user_incident_owner(inc: UnifiedIncident, user_id: str) -> None:
    if inc.source in OFFICIAL_SOURCES:
        raise PermissionDeniedError("Official incidents cannot be modified", code="official_incident")
    owner = incident_owner(inc)
    if not owner:
        raise PermissionDeniedError(
            "This report has no owner on record (corrupted ownership data)", code="ownership_missing"
        )
    if owner != user_id:
        raise PermissionDeniedError("You can only modify your own reports", code="not_owner")


# ──────────────────────────────────────────────────────────────
# Service
# ──────────────────────────────────────────────────────────────

class IncidentService:
    def __init__(
        self,
        *,
        store: IncidentStore,
        social: SocialStore,
        notifications: NotificationService,
        geocoder: Optional[NominatimGeocoder] = None,
    ):
        self.store = store
        self.social = social
        self.notifications = notifications
        self.geocoder = geocoder or NominatimGeocoder()

    def require_incident(self, incident_id: str) -> UnifiedIncident:
        inc = self.store.get(incident_id)
        if inc is None:
            raise NotFoundError("Incident not found", code="incident_not_found")
        return inc

    def _validate_categories(self, category_id: Optional[str], subcategory_id: Optional[str]) -> None:
        if category_id is not None and not is_known_category(category_id):
            raise ValidationError("Unknown category", code="unknown_category")
        if subcategory_id is not None and not is_known_subcategory(subcategory_id, category_id):
            raise ValidationError("Unknown subcategory for category", code="unknown_subcategory")

    async def _locate(self, location: str):
        geometry = await self.geocoder.geocode(self.geocoder.build_query(location))
        spatial = derive_spatial_fields(geometry, location) if geometry else None
        return geometry, spatial

    # ──────────────────────────────────────────────────────────
    # Reports
    # ──────────────────────────────────────────────────────────

    async def report_incident(self, user: Dict[str, Any], req: IncidentReportRequest) -> UnifiedIncident:
        self._validate_categories(req.categoryId, req.subcategoryId)

        geometry, spatial = await self._locate(req.location)
        if geometry is None:
            logger.info("[incidents] geocoding failed for report by %s; storing without geometry", user["id"])
        lat, lng, region_ids, geocell = spatial if spatial else (None, None, [], None)

        now = utc_now_iso()
        inc = build_incident(
            source="user",
            source_id=new_id(),
            title=req.title.strip(),
            description=req.description,
            location=req.location.strip(),
            category=get_category_name(req.categoryId),
            subcategory=get_subcategory_name(req.subcategoryId),
            categoryId=req.categoryId,
            subcategoryId=req.subcategoryId,
            severity="medium",
            status="active",
            geometry=geometry,
            centroidLat=lat,
            centroidLng=lng,
            regionIds=region_ids,
            geocell=geocell,
            incidentTime=now,
            lastUpdated=now,
            publishedAt=now,
            userId=user["id"],
            photoUrl=req.photoUrl,
            policeNotified=req.policeNotified,
            properties={
                "userReported": True,
                "reporterId": user["id"],
                "reporterName": poster_name(user),
                "timeReported": now,
            },
        )
        stored = self.store.upsert(inc)
        logger.info("[incidents] report created id=%s", stored.id)

        self.notifications.broadcast_post(stored, poster_name(user), "new_post")
        return stored

    async def update_user_incident(
        self, user_id: str, incident_id: str, req: IncidentUpdateRequest
    ) -> UnifiedIncident:
        inc = self.require_incident(incident_id)
        check_user_incident_owner(inc, user_id)

        fields = req.model_dump(exclude_unset=True, exclude_none=True)
        if not fields:
            raise ValidationError("No fields to update", code="empty_update")

        if "categoryId" in fields or "subcategoryId" in fields:
            category_id = fields.get("categoryId", inc.categoryId)
            subcategory_id = fields.get("subcategoryId", inc.subcategoryId)
            self._validate_categories(category_id, subcategory_id)
            fields["category"] = get_category_name(category_id)
            fields["subcategory"] = get_subcategory_name(subcategory_id)

        if "location" in fields and fields["location"] != inc.location:
            geometry, spatial = await self._locate(fields["location"])
            if spatial is not None:
                lat, lng, region_ids, geocell = spatial
                fields.update(
                    geometry=geometry, centroidLat=lat, centroidLng=lng, regionIds=region_ids, geocell=geocell
                )

        updated = self.store.update(incident_id, fields)
        if updated is None:
            raise NotFoundError("Incident not found", code="incident_not_found")

        if "severity" in fields and fields["severity"] != inc.severity:
            self.notifications.broadcast_post(updated, reason="severity_update")
        return updated

    def delete_user_incident(self, user_id: str, incident_id: str) -> None:
        inc = self.require_incident(incident_id)
        check_user_incident_owner(inc, user_id)
        self.store.delete(incident_id)
        self.social.delete_for_incident(incident_id)
        logger.info("[incidents] report deleted id=%s", incident_id)

    def update_status(self, user_id: str, incident_id: str, status: str) -> UnifiedIncident:
        if status not in ("active", "completed"):
            raise ValidationError("Status must be active or completed", code="invalid_status")
        inc = self.require_incident(incident_id)
        if inc.source in OFFICIAL_SOURCES:
            raise PermissionDeniedError("Official incidents cannot be modified", code="official_incident")
        if incident_owner(inc) != user_id:
            raise PermissionDeniedError("Only the creator can change the status", code="not_owner")

        updated = self.store.update(incident_id, {"status": status})
        if updated is None:
            raise NotFoundError("Incident not found", code="incident_not_found")
        self.notifications.broadcast_post(updated, reason="status_update")
        return updated

    # ──────────────────────────────────────────────────────────
    # Comments
    # ──────────────────────────────────────────────────────────

    def list_comments(self, incident_id: str) -> List[Dict[str, Any]]:
        return self.social.list_comments(incident_id)

    def create_comment(
        self,
        user: Dict[str, Any],
        incident_id: str,
        content: str,
        parent_comment_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.require_incident(incident_id)
        content = (content or "").strip()
        if not content:
            raise ValidationError("Comment content is required", code="empty_comment")

        parent = None
        if parent_comment_id:
            parent = self.social.get_comment(parent_comment_id)
            if parent is None or parent["incidentId"] != incident_id:
                raise NotFoundError("Parent comment not found", code="comment_not_found")

        comment = self.social.insert_comment(incident_id, user["id"], content, parent_comment_id)

        if parent is not None and parent["userId"] != user["id"]:
            self.notifications.notify(
                parent["userId"],
                type="comment_reply",
                title="New Reply",
                message=f"{poster_name(user)} replied to your comment",
                entity_id=incident_id,
                entity_type="post",
                from_user_id=user["id"],
                url=f"/feed?highlight={incident_id}",
            )
        return comment

    def _owned_comment(self, user_id: str, comment_id: str) -> Dict[str, Any]:
        comment = self.social.get_comment(comment_id)
        if comment is None:
            raise NotFoundError("Comment not found", code="comment_not_found")
        if comment["userId"] != user_id:
            raise PermissionDeniedError("You can only modify your own comments", code="not_owner")
        return comment

    def update_comment(self, user_id: str, comment_id: str, content: str) -> Dict[str, Any]:
        self._owned_comment(user_id, comment_id)
        content = (content or "").strip()
        if not content:
            raise ValidationError("Comment content is required", code="empty_comment")
        return self.social.set_comment_content(comment_id, content)

    def delete_comment(self, user_id: str, comment_id: str) -> None:
        self._owned_comment(user_id, comment_id)
        self.social.delete_comment(comment_id)

    # ──────────────────────────────────────────────────────────
    # Likes & follow-ups
    # ──────────────────────────────────────────────────────────

    def toggle_like(self, user_id: str, incident_id: str) -> Dict[str, Any]:
        self.require_incident(incident_id)
        liked = self.social.toggle_like(incident_id, user_id)
        return {"liked": liked, "count": self.social.like_count(incident_id)}

    def likes(self, incident_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        return {
            "count": self.social.like_count(incident_id),
            "liked": self.social.has_liked(incident_id, user_id) if user_id else False,
        }

    def list_follow_ups(self, incident_id: str) -> List[Dict[str, Any]]:
        return self.social.list_follow_ups(incident_id)

    def create_follow_up(
        self,
        user_id: str,
        incident_id: str,
        status: str,
        description: str,
        photo_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.require_incident(incident_id)
        if not (status or "").strip() or not (description or "").strip():
            raise ValidationError("Status and description are required", code="follow_up_incomplete")
        return self.social.insert_follow_up(incident_id, user_id, status.strip(), description.strip(), photo_url)
