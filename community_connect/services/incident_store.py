from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

import orjson

from community_connect.core.contracts import UnifiedIncident
from community_connect.core.geo import compute_centroid, generate_geocell
from community_connect.core.keying import unified_incident_id
from community_connect.core.regions import get_region_from_coordinates
from community_connect.core.time import utc_now_iso

logger = logging.getLogger(__name__)


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS unified_incidents (
  id            TEXT PRIMARY KEY,          -- '{source}:{sourceId}'
  source        TEXT NOT NULL,             -- 'tmr'|'emergency'|'user'
  source_id     TEXT NOT NULL,
  title         TEXT NOT NULL,
  description   TEXT,
  location      TEXT,
  category      TEXT,
  subcategory   TEXT,
  category_id   TEXT,
  subcategory_id TEXT,
  severity      TEXT NOT NULL,
  status        TEXT NOT NULL,
  geometry_json BLOB,
  centroid_lat  REAL,
  centroid_lng  REAL,
  region_ids_json BLOB NOT NULL,
  geocell       TEXT,
  incident_time TEXT,
  last_updated  TEXT NOT NULL,
  published_at  TEXT,
  created_at    TEXT NOT NULL,
  user_id       TEXT,
  photo_url     TEXT,
  police_notified TEXT,
  properties_json BLOB NOT NULL,
  UNIQUE (source, source_id)
);

CREATE INDEX IF NOT EXISTS idx_unified_source ON unified_incidents(source);
CREATE INDEX IF NOT EXISTS idx_unified_geocell ON unified_incidents(geocell);
CREATE INDEX IF NOT EXISTS idx_unified_last_updated ON unified_incidents(last_updated);
CREATE INDEX IF NOT EXISTS idx_unified_user ON unified_incidents(user_id);
"""

_COLUMNS = (
    "id", "source", "source_id", "title", "description", "location",
    "category", "subcategory", "category_id", "subcategory_id",
    "severity", "status", "geometry_json", "centroid_lat", "centroid_lng",
    "region_ids_json", "geocell", "incident_time", "last_updated",
    "published_at", "created_at", "user_id", "photo_url", "police_notified",
    "properties_json",
)

# model field -> column, for partial updates
_FIELD_COLUMNS: Dict[str, str] = {
    "title": "title",
    "description": "description",
    "location": "location",
    "category": "category",
    "subcategory": "subcategory",
    "categoryId": "category_id",
    "subcategoryId": "subcategory_id",
    "severity": "severity",
    "status": "status",
    "geometry": "geometry_json",
    "centroidLat": "centroid_lat",
    "centroidLng": "centroid_lng",
    "regionIds": "region_ids_json",
    "geocell": "geocell",
    "incidentTime": "incident_time",
    "lastUpdated": "last_updated",
    "userId": "user_id",
    "photoUrl": "photo_url",
    "policeNotified": "police_notified",
    "properties": "properties_json",
}

_JSON_COLUMNS = {"geometry_json", "region_ids_json", "properties_json"}


# ──────────────────────────────────────────────────────────────
# Spatial derivation (shared by every normaliser)
# ──────────────────────────────────────────────────────────────

def derive_spatial_fields(
    geometry: Optional[Dict[str, Any]],
    text_fallback: Optional[str] = None,
) -> Optional[Tuple[float, float, List[str], str]]:
    """(centroidLat, centroidLng, regionIds, geocell), or None without a usable centroid."""
    c = compute_centroid(geometry)
    if c is None:
        return None
    lat, lng = c
    region = get_region_from_coordinates(lat, lng, text_fallback)
    return lat, lng, ([region.id] if region else []), generate_geocell(lat, lng)


def build_incident(*, source: str, source_id: str, **fields: Any) -> UnifiedIncident:
    return UnifiedIncident(id=unified_incident_id(source, source_id), source=source, sourceId=source_id, **fields)


# ──────────────────────────────────────────────────────────────
# Store
# ──────────────────────────────────────────────────────────────

class IncidentStore:
    """
    SQLite persistence for unified incidents.
      - upsert keyed by (source, sourceId)
      - JSON columns are orjson blobs
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.Lock()

    def ensure_schema(self) -> None:
        self.conn.executescript(_SCHEMA_SQL)
        self.conn.commit()

    # ──────────────────────────────────────────────────────────
    # Row mapping
    # ──────────────────────────────────────────────────────────

    def _to_row(self, inc: UnifiedIncident, created_at: str) -> tuple:
        return (
            inc.id,
            inc.source,
            inc.sourceId,
            inc.title,
            inc.description,
            inc.location,
            inc.category,
            inc.subcategory,
            inc.categoryId,
            inc.subcategoryId,
            inc.severity,
            inc.status,
            orjson.dumps(inc.geometry) if inc.geometry is not None else None,
            inc.centroidLat,
            inc.centroidLng,
            orjson.dumps(inc.regionIds or []),
            inc.geocell,
            inc.incidentTime,
            inc.lastUpdated,
            inc.publishedAt,
            created_at,
            inc.userId,
            inc.photoUrl,
            inc.policeNotified,
            orjson.dumps(inc.properties or {}),
        )

    def _from_row(self, row: sqlite3.Row) -> UnifiedIncident:
        return UnifiedIncident(
            id=row["id"],
            source=row["source"],
            sourceId=row["source_id"],
            title=row["title"],
            description=row["description"],
            location=row["location"],
            category=row["category"],
            subcategory=row["subcategory"],
            categoryId=row["category_id"],
            subcategoryId=row["subcategory_id"],
            severity=row["severity"],
            status=row["status"],
            geometry=orjson.loads(row["geometry_json"]) if row["geometry_json"] is not None else None,
            centroidLat=row["centroid_lat"],
            centroidLng=row["centroid_lng"],
            regionIds=orjson.loads(row["region_ids_json"]) if row["region_ids_json"] else [],
            geocell=row["geocell"],
            incidentTime=row["incident_time"],
            lastUpdated=row["last_updated"],
            publishedAt=row["published_at"],
            createdAt=row["created_at"],
            userId=row["user_id"],
            photoUrl=row["photo_url"],
            policeNotified=row["police_notified"],
            properties=orjson.loads(row["properties_json"]) if row["properties_json"] else {},
        )

    # ──────────────────────────────────────────────────────────
    # Writes
    # ──────────────────────────────────────────────────────────

    def upsert(self, inc: UnifiedIncident) -> UnifiedIncident:
        created_at = inc.createdAt or utc_now_iso()
        placeholders = ",".join("?" for _ in _COLUMNS)
        updates = ",\n              ".join(
            f"{c}=excluded.{c}" for c in _COLUMNS if c not in ("id", "source", "source_id", "created_at")
        )
        sql = f"""
            INSERT INTO unified_incidents ({",".join(_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(source, source_id) DO UPDATE SET
              {updates};
        """
        with self._lock:
            self.conn.execute(sql, self._to_row(inc, created_at))
            self.conn.commit()
        stored = self.get_by_source_id(inc.source, inc.sourceId)
        return stored if stored is not None else inc

    def upsert_many(self, incidents: Iterable[UnifiedIncident]) -> Tuple[int, int]:
        """Returns (ok, failed); one bad record never aborts the batch."""
        ok = 0
        failed = 0
        for inc in incidents:
            try:
                self.upsert(inc)
                ok += 1
            except sqlite3.Error as e:
                failed += 1
                logger.warning("[incidents] upsert failed for %s: %s", inc.id, e)
        return ok, failed

    def update(self, incident_id: str, fields: Dict[str, Any]) -> Optional[UnifiedIncident]:
        sets: List[str] = []
        params: List[Any] = []
        for key, value in fields.items():
            col = _FIELD_COLUMNS.get(key)
            if not col:
                continue
            sets.append(f"{col}=?")
            if col in _JSON_COLUMNS:
                params.append(orjson.dumps(value) if value is not None else None)
            else:
                params.append(value)

        if "lastUpdated" not in fields:
            sets.append("last_updated=?")
            params.append(utc_now_iso())

        params.append(incident_id)
        with self._lock:
            cur = self.conn.execute(f"UPDATE unified_incidents SET {', '.join(sets)} WHERE id=?;", params)
            self.conn.commit()
        if cur.rowcount == 0:
            return None
        return self.get(incident_id)

    def delete(self, incident_id: str) -> bool:
        with self._lock:
            cur = self.conn.execute("DELETE FROM unified_incidents WHERE id=?;", (incident_id,))
            self.conn.commit()
        return cur.rowcount > 0

    # ──────────────────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────────────────

    def get(self, incident_id: str) -> Optional[UnifiedIncident]:
        row = self.conn.execute("SELECT * FROM unified_incidents WHERE id=?;", (incident_id,)).fetchone()
        return self._from_row(row) if row else None

    def get_by_source_id(self, source: str, source_id: str) -> Optional[UnifiedIncident]:
        row = self.conn.execute(
            "SELECT * FROM unified_incidents WHERE source=? AND source_id=?;", (source, source_id)
        ).fetchone()
        return self._from_row(row) if row else None

    def list_all(self) -> List[UnifiedIncident]:
        rows = self.conn.execute("SELECT * FROM unified_incidents ORDER BY last_updated DESC;").fetchall()
        return [self._from_row(r) for r in rows]

    def list_by_source(self, source: str) -> List[UnifiedIncident]:
        rows = self.conn.execute(
            "SELECT * FROM unified_incidents WHERE source=? ORDER BY last_updated DESC;", (source,)
        ).fetchall()
        return [self._from_row(r) for r in rows]

    def list_by_region(self, region_id: str) -> List[UnifiedIncident]:
        # region ids live in a JSON blob
        return [i for i in self.list_all() if region_id in (i.regionIds or [])]

    def count(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM unified_incidents;").fetchone()
        return int(row[0]) if row else 0


# ──────────────────────────────────────────────────────────────
# GeoJSON projection
# ──────────────────────────────────────────────────────────────

def to_feature(inc: UnifiedIncident) -> Dict[str, Any]:
    props = dict(inc.properties or {})
    props.update(inc.model_dump(exclude={"geometry", "properties"}))
    return {
        "type": "Feature",
        "id": inc.id,
        "geometry": inc.geometry,
        "properties": props,
    }


def as_feature_collection(incidents: Iterable[UnifiedIncident]) -> Dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [to_feature(i) for i in incidents],
    }
