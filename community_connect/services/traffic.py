# community_connect/services/traffic.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx
import orjson

from community_connect.core.contracts import UnifiedIncident
from community_connect.core.keying import stable_id
from community_connect.core.settings import settings
from community_connect.core.time import parse_iso, to_iso, utc_now
from community_connect.services.categories import map_tmr_category, map_tmr_subcategory
from community_connect.services.incident_store import build_incident, derive_spatial_fields

logger = logging.getLogger(__name__)


def _append_query_params(url: str, params: Dict[str, str]) -> str:
    if not params:
        return url
    if "?" in url:
        return url + "&" + "&".join([f"{k}={v}" for k, v in params.items()])
    return url + "?" + "&".join([f"{k}={v}" for k, v in params.items()])


def is_recent_event(feature: Dict[str, Any], now: Optional[datetime] = None, days: Optional[int] = None) -> bool:
    """
    Keep events published within the last `days` days.
    Undated or unparseable events are kept.
    """
    props = feature.get("properties") or {}
    if not isinstance(props, dict):
        return True
    published = props.get("published") or props.get("CreateDate") or props.get("reportedAt")
    if not published:
        return True
    dt = parse_iso(published)
    if dt is None:
        return True
    window = timedelta(days=settings.ingestion_recent_days if days is None else days)
    return ((now or utc_now()) - dt) <= window


# ──────────────────────────────────────────────────────────────
# Classification
# ──────────────────────────────────────────────────────────────

def tmr_subcategory(props: Dict[str, Any]) -> str:
    impact = str(props.get("impact") or "").lower()
    etype = str(props.get("event_type") or "").lower()

    if "blocked" in impact or "closed" in impact:
        return "road-closure"
    if "congestion" in impact or "delays" in impact:
        return "congestion"
    if "accident" in etype or "crash" in etype:
        return "accident"
    if "roadwork" in etype or "construction" in etype:
        return "roadwork"
    return "other"


def tmr_severity(props: Dict[str, Any]) -> str:
    impact = str(props.get("impact") or "").lower()

    if "blocked" in impact or "closed" in impact:
        return "critical"
    if "major" in impact or "severe" in impact:
        return "high"
    if "minor" in impact or "light" in impact:
        return "low"
    return "medium"


def _flatten_impact(props: Dict[str, Any]) -> None:
    # v2 nests impact as {"impact_type": ..., "impact_subtype": ...}
    impact = props.get("impact")
    if isinstance(impact, dict):
        props["impact"] = " ".join(str(v) for v in impact.values() if v)
        if impact.get("impact_type") and "impact_type" not in props:
            props["impact_type"] = str(impact["impact_type"]).lower()


def _source_id(feature: Dict[str, Any], props: Dict[str, Any]) -> str:
    fid = feature.get("id") or props.get("id") or props.get("event_id") or props.get("eventId")
    if fid is not None and str(fid).strip():
        return str(fid).strip()
    # No upstream id: fall back to a geometry + payload signature
    return "tmr-" + stable_id(
        [
            orjson.dumps(feature.get("geometry"), option=orjson.OPT_SORT_KEYS).decode("utf-8")[:600],
            str(props.get("published") or ""),
            str(props.get("event_type") or ""),
        ]
    )


def _location(props: Dict[str, Any]) -> str:
    road = props.get("road_summary")
    if isinstance(road, dict) and road:
        return f"{road.get('road_name')}, {road.get('locality')}"
    return "Queensland"


def _extract_features(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    if data.get("type") == "FeatureCollection" and isinstance(data.get("features"), list):
        return [f for f in data["features"] if isinstance(f, dict)]
    if isinstance(data.get("events"), list):
        return [
            {"type": "Feature", "id": e.get("id"), "geometry": e.get("geometry"), "properties": e}
            for e in data["events"]
            if isinstance(e, dict)
        ]
    return []


def normalize_tmr_events(data: Dict[str, Any], now: Optional[datetime] = None) -> List[UnifiedIncident]:
    now = now or utc_now()
    features = _extract_features(data if isinstance(data, dict) else {})
    if not features:
        logger.info("[tmr] no events in payload (keys=%s)", list(data.keys()) if isinstance(data, dict) else "?")
        return []

    category = map_tmr_category("traffic")
    out: List[UnifiedIncident] = []

    for feature in features:
        if not is_recent_event(feature, now):
            continue

        props = dict(feature.get("properties") or {})
        _flatten_impact(props)
        geometry = feature.get("geometry") if isinstance(feature.get("geometry"), dict) else None

        spatial = derive_spatial_fields(geometry, props.get("location") or props.get("Locality"))
        if spatial is None:
            continue
        lat, lng, region_ids, geocell = spatial

        sub = tmr_subcategory(props)
        description = ". ".join(
            str(v) for v in (props.get("description"), props.get("advice"), props.get("information")) if v
        )
        published = parse_iso(props.get("published"))
        updated = parse_iso(props.get("last_updated"))

        out.append(
            build_incident(
                source="tmr",
                source_id=_source_id(feature, props),
                title=f"{props.get('event_type') or 'Traffic'} - {props.get('event_subtype') or 'Event'}",
                description=description,
                location=_location(props),
                category="traffic",
                subcategory=sub,
                categoryId=category["uuid"],
                subcategoryId=map_tmr_subcategory(sub)["uuid"],
                severity=tmr_severity(props),
                status="active" if props.get("status") == "Published" else "resolved",
                geometry=geometry,
                centroidLat=lat,
                centroidLng=lng,
                regionIds=region_ids,
                geocell=geocell,
                incidentTime=to_iso(published or now),
                lastUpdated=to_iso(updated or now),
                publishedAt=to_iso(now),
                properties=props,
            )
        )

    logger.info("[tmr] normalized %d of %d events", len(out), len(features))
    return out


# ──────────────────────────────────────────────────────────────
# Fetch
# ──────────────────────────────────────────────────────────────

class QldTrafficFeed:
    """Official QLD Traffic v2 events (GeoJSON)."""

    source_id = "tmr-traffic"
    name = "TMR Traffic Events"
    type = "tmr"

    def __init__(self, *, events_url: Optional[str] = None, api_key: Optional[str] = None):
        self.events_url = (events_url or settings.qldtraffic_events_url).strip()
        key = api_key if api_key is not None else settings.qldtraffic_api_key
        self.api_key = key.strip() if isinstance(key, str) and key.strip() else None

    def url(self) -> str:
        params = {"f": "geojson"}
        if self.api_key:
            params = {"apikey": self.api_key, **params}
        return _append_query_params(self.events_url, params)

    async def fetch(self, client: httpx.AsyncClient) -> Dict[str, Any]:
        r = await client.get(self.url(), headers={"User-Agent": "community-connect/traffic"})
        r.raise_for_status()
        data = r.json()
        return data if isinstance(data, dict) else {}

    def normalize(self, data: Dict[str, Any], now: Optional[datetime] = None) -> List[UnifiedIncident]:
        return normalize_tmr_events(data, now)
