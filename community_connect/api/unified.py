from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, Query

from community_connect.api.deps import admin_user, current_user
from community_connect.core.contracts import IncidentUpdateRequest, UnifiedIncident
from community_connect.core.errors import bad_request, not_found
from community_connect.core.time import parse_iso, utc_now_iso
from community_connect.services.incident_store import IncidentStore, to_feature
from community_connect.services.incidents import IncidentService
from community_connect.services.ingestion import UnifiedIngestionEngine
from community_connect.services.spatial import BoundingBox, SpatialLookup, SpatialQuery

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

_SOURCES = ["tmr", "emergency", "user"]


def get_incident_store() -> IncidentStore:
    raise RuntimeError("IncidentStore must be provided by app dependency override")


def get_spatial() -> SpatialLookup:
    raise RuntimeError("SpatialLookup must be provided by app dependency override")


def get_ingestion() -> UnifiedIngestionEngine:
    raise RuntimeError("UnifiedIngestionEngine must be provided by app dependency override")


def get_incident_service() -> IncidentService:
    raise RuntimeError("IncidentService must be provided by app dependency override")


def _parse_latlng(value: str, name: str) -> Tuple[float, float]:
    try:
        lat_s, lng_s = value.split(",")
        return float(lat_s), float(lng_s)
    except ValueError:
        bad_request("bad_bounds", f"{name} must be 'lat,lng'")


# ──────────────────────────────────────────────────────────────
# /api/unified
# ──────────────────────────────────────────────────────────────

@router.get("/unified")
def unified_incidents(
    region: Optional[str] = None,
    category: Optional[str] = None,
    source: Optional[str] = None,
    status: Optional[str] = None,
    southwest: Optional[str] = None,
    northeast: Optional[str] = None,
    since: Optional[str] = None,
    store: IncidentStore = Depends(get_incident_store),
    spatial: SpatialLookup = Depends(get_spatial),
) -> Dict[str, Any]:
    bbox: Optional[BoundingBox] = None
    if southwest and northeast:
        sw = _parse_latlng(southwest, "southwest")
        ne = _parse_latlng(northeast, "northeast")
        bbox = BoundingBox(
            southWest=(min(sw[0], ne[0]), min(sw[1], ne[1])),
            northEast=(max(sw[0], ne[0]), max(sw[1], ne[1])),
        )

    since_dt = None
    if since:
        since_dt = parse_iso(since)
        if since_dt is None:
            bad_request("bad_since", "since must be an ISO timestamp")

    # no-op when the stored set is unchanged
    spatial.load_incidents(store.list_all())
    result = spatial.query(
        SpatialQuery(bounding_box=bbox, region_id=region, category=category, source=source, since=since_dt)
    )
    incidents = result.incidents
    if status:
        incidents = [i for i in incidents if i.status == status]

    features = [to_feature(i) for i in incidents]
    return {
        "type": "FeatureCollection",
        "features": features,
        "metadata": {
            "totalFeatures": len(features),
            "sources": _SOURCES,
            "lastUpdated": utc_now_iso(),
            "cached": bool(result.stats.get("cacheHit")),
            "filters": {
                "region": region,
                "category": category,
                "source": source,
                "status": status,
                "since": since,
            },
            "spatialBounds": {"southwest": southwest, "northeast": northeast} if bbox else None,
            "query": result.stats,
        },
    }


@router.get("/unified/stats")
def unified_stats(engine: UnifiedIngestionEngine = Depends(get_ingestion)) -> Dict[str, Any]:
    return engine.get_ingestion_stats()


@router.post("/unified/ingest")
async def unified_force_ingest(
    source: Optional[str] = Query(default=None),
    engine: UnifiedIngestionEngine = Depends(get_ingestion),
    admin: Dict[str, Any] = Depends(admin_user),
) -> Dict[str, Any]:
    logger.info("[unified] forced ingestion by %s source=%s", admin["id"], source or "all")
    try:
        stored = await engine.force_ingestion(source)
    except KeyError:
        not_found("unknown_source", f"no ingestion source {source}")
    return {"success": True, "stored": stored, "stats": engine.get_ingestion_stats()}


# ──────────────────────────────────────────────────────────────
# /api/unified-incidents/{id}
# ──────────────────────────────────────────────────────────────

@router.put("/unified-incidents/{incident_id}", response_model=UnifiedIncident)
async def update_unified_incident(
    incident_id: str,
    req: IncidentUpdateRequest,
    svc: IncidentService = Depends(get_incident_service),
    user: Dict[str, Any] = Depends(current_user),
) -> UnifiedIncident:
    return await svc.update_user_incident(user["id"], incident_id, req)


@router.delete("/unified-incidents/{incident_id}")
def delete_unified_incident(
    incident_id: str,
    svc: IncidentService = Depends(get_incident_service),
    user: Dict[str, Any] = Depends(current_user),
):
    svc.delete_user_incident(user["id"], incident_id)
    return {"success": True, "message": "Incident deleted successfully"}
