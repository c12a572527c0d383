from __future__ import annotations

import logging
import random
import re
import sqlite3
import threading
from datetime import timezone
from typing import Any, Dict, List, Optional

from community_connect.core.contracts import AdCreateRequest
from community_connect.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from community_connect.core.keying import new_id
from community_connect.core.settings import settings
from community_connect.core.storage import dumps_json, loads_json
from community_connect.core.time import parse_iso, utc_now, utc_now_iso

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS ad_campaigns (
  id                TEXT PRIMARY KEY,
  user_id           TEXT NOT NULL,
  business_name     TEXT NOT NULL,
  title             TEXT NOT NULL,
  content           TEXT NOT NULL,
  image_url         TEXT,
  website_url       TEXT,
  address           TEXT,
  phone             TEXT,
  suburb            TEXT NOT NULL,
  call_to_action    TEXT NOT NULL,
  target_suburbs_json BLOB NOT NULL,
  daily_budget      REAL NOT NULL,
  total_budget      REAL NOT NULL,
  cpm_rate          TEXT NOT NULL,
  status            TEXT NOT NULL,     -- pending|active|paused|rejected
  rejection_reason  TEXT,
  created_at        TEXT NOT NULL,
  updated_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_ads_status ON ad_campaigns(status);
CREATE INDEX IF NOT EXISTS idx_ads_user ON ad_campaigns(user_id);

CREATE TABLE IF NOT EXISTS ad_views (
  id          TEXT PRIMARY KEY,
  ad_id       TEXT NOT NULL,
  user_id     TEXT NOT NULL,
  viewed_at   TEXT NOT NULL,
  view_date   TEXT NOT NULL,       -- YYYY-MM-DD (UTC)
  duration_ms INTEGER NOT NULL,
  user_suburb TEXT
);

CREATE INDEX IF NOT EXISTS idx_ad_views_daily ON ad_views(ad_id, user_id, view_date);

CREATE TABLE IF NOT EXISTS ad_clicks (
  id         TEXT PRIMARY KEY,
  ad_id      TEXT NOT NULL,
  user_id    TEXT NOT NULL,
  clicked_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_ad_clicks_ad ON ad_clicks(ad_id);
"""

_UPDATE_COLUMNS: Dict[str, str] = {
    "businessName": "business_name",
    "title": "title",
    "content": "content",
    "logoUrl": "image_url",
    "websiteUrl": "website_url",
    "address": "address",
    "phone": "phone",
    "suburb": "suburb",
    "callToAction": "call_to_action",
    "dailyBudget": "daily_budget",
    "totalBudget": "total_budget",
}

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_website(url: Optional[str]) -> Optional[str]:
    url = (url or "").strip()
    if not url:
        return None
    return url if _SCHEME_RE.match(url) else f"https://{url}"


def require_business(user: Dict[str, Any]) -> None:
    if (user or {}).get("accountType") != "business":
        raise PermissionDeniedError(
            "Only business accounts can manage advertisements. Please upgrade to a business account.",
            code="business_required",
        )


class AdStore:
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
            "businessName": row["business_name"],
            "title": row["title"],
            "content": row["content"],
            "imageUrl": row["image_url"],
            "websiteUrl": row["website_url"],
            "address": row["address"],
            "phone": row["phone"],
            "suburb": row["suburb"],
            "callToAction": row["call_to_action"],
            "targetSuburbs": loads_json(row["target_suburbs_json"], []),
            "dailyBudget": row["daily_budget"],
            "totalBudget": row["total_budget"],
            "cpmRate": row["cpm_rate"],
            "status": row["status"],
            "rejectionReason": row["rejection_reason"],
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }

    # ──────────────────────────────────────────────────────────
    # Campaigns
    # ──────────────────────────────────────────────────────────

    def create_campaign(self, user: Dict[str, Any], req: AdCreateRequest) -> Dict[str, Any]:
        require_business(user)

        targets = [s.strip() for s in (req.targetSuburbs or []) if s and s.strip()] or [req.suburb.strip()]
        total = req.totalBudget if req.totalBudget is not None else req.dailyBudget * 30
        ad_id = new_id()
        now = utc_now_iso()

        with self._lock:
            self.conn.execute(
                """
                INSERT INTO ad_campaigns (
                  id, user_id, business_name, title, content, image_url, website_url, address, phone,
                  suburb, call_to_action, target_suburbs_json, daily_budget, total_budget, cpm_rate,
                  status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?);
                """,
                (
                    ad_id, user["id"], req.businessName.strip(), req.title.strip(), req.content.strip(),
                    req.logoUrl, normalize_website(req.websiteUrl), req.address, req.phone,
                    req.suburb.strip(), req.callToAction, dumps_json(targets), float(req.dailyBudget),
                    float(total), settings.ad_cpm_rate, now, now,
                ),
            )
            self.conn.commit()

        logger.info("[ads] campaign created id=%s business=%s", ad_id, req.businessName)
        return self.require(ad_id)

    def get(self, ad_id: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM ad_campaigns WHERE id=?;", (ad_id,)).fetchone()
        return self._from_row(row) if row else None

    def require(self, ad_id: str) -> Dict[str, Any]:
        ad = self.get(ad_id)
        if ad is None:
            raise NotFoundError("Ad not found", code="ad_not_found")
        return ad

    def get_for_owner(self, user: Dict[str, Any], ad_id: str) -> Dict[str, Any]:
        ad = self.require(ad_id)
        if ad["userId"] != user["id"] and user.get("role") != "admin":
            raise PermissionDeniedError("You can only view your own ads", code="not_owner")
        return ad

    def _set(self, ad_id: str, columns: Dict[str, Any]) -> Dict[str, Any]:
        columns = dict(columns)
        columns["updated_at"] = utc_now_iso()
        assignments = ", ".join(f"{c}=?" for c in columns)
        with self._lock:
            cur = self.conn.execute(f"UPDATE ad_campaigns SET {assignments} WHERE id=?;", (*columns.values(), ad_id))
            self.conn.commit()
        if cur.rowcount == 0:
            raise NotFoundError("Ad not found", code="ad_not_found")
        return self.require(ad_id)

    def update(self, user: Dict[str, Any], ad_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        require_business(user)
        ad = self.require(ad_id)
        if ad["userId"] != user["id"]:
            raise PermissionDeniedError("You can only edit your own ads", code="not_owner")

        columns = {_UPDATE_COLUMNS[k]: v for k, v in fields.items() if k in _UPDATE_COLUMNS and v is not None}
        if "website_url" in columns:
            columns["website_url"] = normalize_website(columns["website_url"])
        if "daily_budget" in columns and float(columns["daily_budget"]) <= 0:
            raise ValidationError("Daily budget must be positive", code="invalid_budget")
        if fields.get("targetSuburbs") is not None:
            suburb = columns.get("suburb", ad["suburb"])
            targets = [s.strip() for s in fields["targetSuburbs"] if s and s.strip()] or [suburb]
            columns["target_suburbs_json"] = dumps_json(targets)
        if not columns:
            raise ValidationError("No fields to update", code="empty_update")

        # edits go back through review
        if ad["status"] in ("active", "rejected"):
            columns["status"] = "pending"
            columns["rejection_reason"] = None
        return self._set(ad_id, columns)

    def active_ads_for_suburb(self, suburb: str, limit: int = 3) -> List[Dict[str, Any]]:
        wanted = (suburb or "").strip().lower()
        rows = self.conn.execute("SELECT * FROM ad_campaigns WHERE status='active';").fetchall()
        ads = [self._from_row(r) for r in rows]
        matching = [
            a for a in ads
            if a["suburb"].lower() == wanted or wanted in [t.lower() for t in a["targetSuburbs"]]
        ]
        random.shuffle(matching)
        return matching[: max(0, int(limit))]

    def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM ad_campaigns WHERE user_id=? ORDER BY created_at DESC;", (user_id,)
        ).fetchall()
        return [self._from_row(r) for r in rows]

    # ──────────────────────────────────────────────────────────
    # Tracking
    # ──────────────────────────────────────────────────────────

    def track_view(
        self,
        ad_id: str,
        user_id: Optional[str],
        duration_ms: int,
        user_suburb: Optional[str],
        timestamp: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.require(ad_id)
        user_id = user_id or "anonymous"
        viewed = parse_iso(timestamp) or utc_now()
        day = viewed.astimezone(timezone.utc).date().isoformat()

        with self._lock:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM ad_views WHERE ad_id=? AND user_id=? AND view_date=?;",
                (ad_id, user_id, day),
            ).fetchone()
            if int(row[0]) >= settings.ad_max_daily_views:
                return {"recorded": False, "message": "View limit reached"}

            self.conn.execute(
                """
                INSERT INTO ad_views (id, ad_id, user_id, viewed_at, view_date, duration_ms, user_suburb)
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (new_id(), ad_id, user_id, viewed.isoformat(), day, int(duration_ms or 0), user_suburb),
            )
            self.conn.commit()
        return {"recorded": True, "message": "View recorded"}

    def track_click(self, ad_id: str, user_id: Optional[str], timestamp: Optional[str] = None) -> Dict[str, Any]:
        self.require(ad_id)
        clicked = parse_iso(timestamp) or utc_now()
        with self._lock:
            self.conn.execute(
                "INSERT INTO ad_clicks (id, ad_id, user_id, clicked_at) VALUES (?, ?, ?, ?);",
                (new_id(), ad_id, user_id or "anonymous", clicked.isoformat()),
            )
            self.conn.commit()
        return {"recorded": True, "message": "Click recorded"}

    def _counts(self, ad_id: str) -> Dict[str, int]:
        views = self.conn.execute("SELECT COUNT(*) FROM ad_views WHERE ad_id=?;", (ad_id,)).fetchone()
        clicks = self.conn.execute("SELECT COUNT(*) FROM ad_clicks WHERE ad_id=?;", (ad_id,)).fetchone()
        return {"views": int(views[0]), "clicks": int(clicks[0])}

    def my_campaigns(self, user: Dict[str, Any]) -> List[Dict[str, Any]]:
        require_business(user)
        out = []
        for ad in self.list_for_user(user["id"]):
            ad.update(self._counts(ad["id"]))
            out.append(ad)
        return out

    def analytics(self, user: Dict[str, Any]) -> Dict[str, Any]:
        campaigns = self.my_campaigns(user)
        views = sum(c["views"] for c in campaigns)
        clicks = sum(c["clicks"] for c in campaigns)
        cpm = float(settings.ad_cpm_rate)
        return {
            "totalCampaigns": len(campaigns),
            "activeCampaigns": sum(1 for c in campaigns if c["status"] == "active"),
            "totalViews": views,
            "totalClicks": clicks,
            "ctr": round(clicks / views * 100.0, 2) if views else 0.0,
            "estimatedSpend": round(views / 1000.0 * cpm, 2),
        }

    # ──────────────────────────────────────────────────────────
    # Review (admin)
    # ──────────────────────────────────────────────────────────

    def pending(self) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM ad_campaigns WHERE status='pending' ORDER BY created_at ASC;"
        ).fetchall()
        return [self._from_row(r) for r in rows]

    def approve(self, ad_id: str) -> Dict[str, Any]:
        ad = self._set(ad_id, {"status": "active", "rejection_reason": None})
        logger.info("[ads] approved id=%s", ad_id)
        return ad

    def reject(self, ad_id: str, reason: Optional[str]) -> Dict[str, Any]:
        ad = self._set(ad_id, {"status": "rejected", "rejection_reason": (reason or "").strip() or "Does not meet guidelines"})
        logger.info("[ads] rejected id=%s", ad_id)
        return ad
