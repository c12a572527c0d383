# community_connect/services/feed.py
"""
Feed pipeline: unified incidents -> filtered, aged GeoJSON features + sidebar counts.

    region filter -> proximity filter -> aging -> feed flags -> counts

Everything here is a pure function over lists; nothing is cached. Map
clustering consumes the same features through `build_markers`.
"""
from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from community_connect.core.contracts import FeedCounts, FeedFilters, UnifiedIncident
from community_connect.core.geo import create_expanded_bounding_box, filter_locations_by_proximity
from community_connect.core.time import parse_iso_to_epoch, utc_now
from community_connect.services.aging import calculate_incident_aging, get_aged_color, get_aging_summary
from community_connect.services.categories import incident_type_for_category, preference_bucket_for_category
from community_connect.services.clustering import ClusterIndex, MarkerData
from community_connect.services.incident_store import to_feature

COMPLETED_GREY = "#9ca3af"
DEFAULT_MARKER_COLOR = "#6b7280"

MARKER_COLORS: Dict[str, str] = {
    "traffic": "#f97316",
    "crime": "#9333ea",
    "pets": "#e11d48",
    "emergency": "#4f46e5",
    "fire": "#dc2626",
    "rescue": "#f97316",
    "medical": "#16a34a",
    "hazmat": "#eab308",
    "wildlife": "#16a34a",
    "community": "#0d9488",
    "lostfound": "#d97706",
}

_DONE_STATUSES = ("completed", "closed", "resolved", "cleared", "patrolled")
_QFES_WORDS = ("fire", "smoke", "chemical", "hazmat")


# ──────────────────────────────────────────────────────────────
# Classification
# ──────────────────────────────────────────────────────────────

def _props(feature: Dict[str, Any]) -> Dict[str, Any]:
    p = feature.get("properties")
    return p if isinstance(p, dict) else {}


def is_qfes_incident(feature: Dict[str, Any]) -> bool:
    props = _props(feature)
    incident_type = str(props.get("incidentType") or "").lower()
    grouped = str(props.get("GroupedType") or "").lower()
    description = str(props.get("description") or "").lower()

    if any(w in incident_type or w in grouped for w in _QFES_WORDS):
        return True
    return "fire" in description or "smoke" in description


def marker_type_for(inc: UnifiedIncident) -> str:
    if inc.source == "tmr":
        return "traffic"
    if inc.source == "emergency":
        return inc.category or "emergency"
    bucket = preference_bucket_for_category(inc.categoryId)
    if bucket in ("pets", "lostfound"):
        return bucket
    kind = incident_type_for_category(inc.categoryId)
    return kind if kind != "other" else "community"


def marker_color(marker_type: str, status: Optional[str] = None) -> str:
    if str(status or "").lower() in _DONE_STATUSES:
        return COMPLETED_GREY
    return MARKER_COLORS.get(marker_type.lower(), DEFAULT_MARKER_COLOR)


def to_feed_feature(inc: UnifiedIncident) -> Dict[str, Any]:
    feature = to_feature(inc)
    props = feature["properties"]
    props["userReported"] = inc.source == "user"
    props["incidentType"] = incident_type_for_category(inc.categoryId)
    props["markerType"] = marker_type_for(inc)
    props["color"] = marker_color(props["markerType"], inc.status)
    return feature


# ──────────────────────────────────────────────────────────────
# Counts and flags
# ──────────────────────────────────────────────────────────────

def compute_counts(local_events: List[Dict[str, Any]], local_incidents: List[Dict[str, Any]]) -> FeedCounts:
    counts = FeedCounts(tmr=len(local_events))
    for inc in local_incidents:
        props = _props(inc)
        if props.get("userReported"):
            kind = props.get("incidentType")
            if kind == "crime":
                counts.userSafetyCrime += 1
            elif kind == "wildlife":
                counts.userWildlife += 1
            elif kind == "traffic":
                counts.userTraffic += 1
            else:
                counts.userCommunity += 1
        elif is_qfes_incident(inc):
            counts.qfes += 1
        else:
            counts.esq += 1
    return counts


def filter_events(events: List[Dict[str, Any]], filters: FeedFilters) -> List[Dict[str, Any]]:
    return list(events) if filters.showTrafficEvents else []


def _incident_visible(incident: Dict[str, Any], filters: FeedFilters) -> bool:
    props = _props(incident)
    if props.get("userReported"):
        kind = props.get("incidentType")
        if kind == "crime":
            return filters.showUserSafetyCrime
        if kind == "wildlife":
            return filters.showUserWildlife
        if kind == "traffic":
            return filters.showUserTraffic
        return filters.showUserCommunity
    if is_qfes_incident(incident):
        return filters.showQFES
    return filters.showIncidents


def filter_incidents(incidents: List[Dict[str, Any]], filters: FeedFilters) -> List[Dict[str, Any]]:
    return [i for i in incidents if _incident_visible(i, filters)]


def process_feed(
    events: List[Dict[str, Any]],
    incidents: List[Dict[str, Any]],
    filters: FeedFilters,
    local_events: Optional[List[Dict[str, Any]]] = None,
    local_incidents: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Counts come from the local lists (defaulting to the full ones); display lists are flag-filtered."""
    counts = compute_counts(
        events if local_events is None else local_events,
        incidents if local_incidents is None else local_incidents,
    )
    return {
        "events": events,
        "incidents": incidents,
        "counts": counts.model_dump(),
        "filteredEvents": filter_events(events, filters),
        "filteredIncidents": filter_incidents(incidents, filters),
    }


# ──────────────────────────────────────────────────────────────
# Pipeline
# ──────────────────────────────────────────────────────────────

def _attach_aging(
    feature: Dict[str, Any],
    inc: UnifiedIncident,
    aging_sensitivity: str,
    show_expired: bool,
    now: datetime,
) -> bool:
    aging = calculate_incident_aging(inc, aging_sensitivity, show_expired, now)
    props = feature["properties"]
    props["aging"] = {
        "agePercentage": aging.agePercentage,
        "isVisible": aging.isVisible,
        "timeRemaining": None if math.isinf(aging.timeRemaining) else aging.timeRemaining,
        "shouldAutoHide": aging.shouldAutoHide,
        "summary": get_aging_summary(aging),
    }
    props["agedColor"] = get_aged_color(props["color"], aging.agePercentage)
    return aging.isVisible


def build_feed(
    incidents: Iterable[UnifiedIncident],
    filters: Optional[FeedFilters] = None,
    *,
    region_id: Optional[str] = None,
    aging_sensitivity: str = "normal",
    show_expired: bool = False,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    filters = filters or FeedFilters()
    now = now or utc_now()

    selected = [i for i in incidents if not region_id or region_id in (i.regionIds or [])]
    by_id = {i.id: i for i in selected}
    features = [to_feed_feature(i) for i in selected]

    home = filters.homeLocation
    if home is not None:
        box = create_expanded_bounding_box((home.lat, home.lng), home.radiusKm)
        features = filter_locations_by_proximity(
            features,
            (home.lat, home.lng),
            [box["minLat"], box["maxLat"], box["minLng"], box["maxLng"]],
            home.radiusKm,
        )

    visible = [
        f for f in features
        if _attach_aging(f, by_id[f["id"]], aging_sensitivity, show_expired, now)
    ]

    events = [f for f in visible if f["properties"].get("source") == "tmr"]
    others = [f for f in visible if f["properties"].get("source") != "tmr"]
    result = process_feed(events, others, filters)
    result["totalFeatures"] = len(visible)
    result["generatedAt"] = now.isoformat()
    return result


# ──────────────────────────────────────────────────────────────
# Clustering input
# ──────────────────────────────────────────────────────────────

def build_markers(features: Iterable[Dict[str, Any]]) -> List[MarkerData]:
    markers: List[MarkerData] = []
    for f in features:
        props = _props(f)
        lat, lng = props.get("centroidLat"), props.get("centroidLng")
        if lat is None or lng is None:
            continue
        markers.append(
            MarkerData(
                id=str(f.get("id") or props.get("id")),
                lat=float(lat),
                lng=float(lng),
                markerType=str(props.get("markerType") or "traffic"),
                color=str(props.get("agedColor") or props.get("color") or DEFAULT_MARKER_COLOR),
                feature=f,
                timestamp=(parse_iso_to_epoch(props.get("lastUpdated")) or 0.0) * 1000.0,
            )
        )
    return markers


def build_cluster_index(features: Iterable[Dict[str, Any]], **options: Any) -> ClusterIndex:
    return ClusterIndex(**options).load(build_markers(features))
