# community_connect/services/emergency.py
"""
Queensland emergency services feed (ESCAD current incidents, ArcGIS GeoJSON).

Covers fire, ambulance, police and SES dispatches. Each feature is mapped to a
unified incident with a coarse category and a severity derived from vehicle
counts and dispatch status.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from community_connect.core.contracts import UnifiedIncident
from community_connect.core.keying import stable_id
from community_connect.core.settings import settings
from community_connect.core.time import parse_iso, to_iso, utc_now
from community_connect.services.categories import map_emergency_category, map_emergency_subcategory
from community_connect.services.incident_store import build_incident, derive_spatial_fields
from community_connect.services.traffic import is_recent_event

logger = logging.getLogger(__name__)


def _lower(v: Any) -> str:
    return str(v or "").lower()


def _int(v: Any) -> int:
    try:
        return int(float(v))
    except (TypeError, ValueError, OverflowError):
        return 0


def emergency_category(props: Dict[str, Any]) -> str:
    jurisdiction = _lower(props.get("Jurisdiction"))
    number = _lower(props.get("Master_Incident_Number"))
    grouped = _lower(props.get("GroupedType"))

    if "fire" in jurisdiction or "qf" in number or "fire" in grouped:
        return "fire"
    if "ambulance" in jurisdiction or "qa" in number or "medical" in grouped:
        return "medical"
    if "police" in jurisdiction or "qp" in number or "police" in grouped:
        return "crime"
    if "ses" in jurisdiction or "rescue" in jurisdiction or "rescue" in grouped:
        return "rescue"
    return "emergency"


def emergency_severity(props: Dict[str, Any]) -> str:
    status = _lower(props.get("CurrentStatus"))
    jurisdiction = _lower(props.get("Jurisdiction"))
    on_scene = _int(props.get("VehiclesOnScene"))
    on_route = _int(props.get("VehiclesOnRoute"))

    if on_scene >= 3 or on_route >= 3:
        return "critical"
    if on_scene >= 2 or on_route >= 2:
        return "high"

    if "going" in status or "responding" in status:
        return "high"
    if "arrived" in status or "onscene" in status:
        return "critical"
    if "returning" in status or "finished" in status:
        return "low"

    if "fire" in jurisdiction:
        return "high"
    return "medium"


def _source_id(feature: Dict[str, Any], props: Dict[str, Any]) -> str:
    fid = feature.get("id")
    if fid is None:
        fid = props.get("OBJECTID")
    if fid is not None and str(fid).strip():
        return str(fid).strip()
    return "emg-" + stable_id(
        [str(props.get("Master_Incident_Number") or ""), str(props.get("Response_Date") or "")]
    )


def normalize_emergency_incidents(data: Dict[str, Any], now: Optional[datetime] = None) -> List[UnifiedIncident]:
    now = now or utc_now()
    features = data.get("features") if isinstance(data, dict) else None
    if not isinstance(features, list):
        return []

    category = map_emergency_category("emergency")
    out: List[UnifiedIncident] = []

    for feature in features:
        if not isinstance(feature, dict) or not is_recent_event(feature, now):
            continue

        props = dict(feature.get("properties") or {})
        geometry = feature.get("geometry") if isinstance(feature.get("geometry"), dict) else None

        spatial = derive_spatial_fields(geometry, props.get("location") or props.get("Locality"))
        if spatial is None:
            continue
        lat, lng, region_ids, geocell = spatial

        locality = props.get("Locality")
        place = props.get("Location")
        subcategory = props.get("Incident_Type") or props.get("Type") or "emergency"
        current_status = props.get("CurrentStatus")

        description = (
            f"{props.get('GroupedType') or 'Emergency incident'} in {locality or place or 'Queensland'}. "
            f"Status: {current_status or 'Active'}. "
            f"Vehicles: {props.get('VehiclesOnScene') or 0} on scene, {props.get('VehiclesOnRoute') or 0} en route."
        )

        out.append(
            build_incident(
                source="emergency",
                source_id=_source_id(feature, props),
                title=str(props.get("Master_Incident_Number") or props.get("Incident_Number") or "Emergency Incident"),
                description=description,
                location=f"{place}, {locality}" if locality else (place or "Queensland"),
                category=emergency_category(props),
                subcategory=str(subcategory),
                categoryId=category["uuid"],
                subcategoryId=map_emergency_subcategory(
                    f"{props.get('GroupedType') or ''} {subcategory}"
                )["uuid"],
                severity=emergency_severity(props),
                status="resolved" if current_status in ("Closed", "Resolved") else "active",
                geometry=geometry,
                centroidLat=lat,
                centroidLng=lng,
                regionIds=region_ids,
                geocell=geocell,
                incidentTime=to_iso(parse_iso(props.get("Response_Date")) or now),
                lastUpdated=to_iso(parse_iso(props.get("LastUpdate")) or now),
                publishedAt=to_iso(now),
                properties=props,
            )
        )

    logger.info("[emergency] normalized %d of %d incidents", len(out), len(features))
    return out


class EmergencyFeed:
    source_id = "emergency-incidents"
    name = "Emergency Services"
    type = "emergency"

    def __init__(self, *, url: Optional[str] = None):
        self.url = (url or settings.emergency_incidents_url).strip()

    async def fetch(self, client: httpx.AsyncClient) -> Dict[str, Any]:
        r = await client.get(self.url, headers={"User-Agent": "community-connect/emergency"})
        r.raise_for_status()
        data = r.json()
        return data if isinstance(data, dict) else {}

    def normalize(self, data: Dict[str, Any], now: Optional[datetime] = None) -> List[UnifiedIncident]:
        return normalize_emergency_incidents(data, now)
