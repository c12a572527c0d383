from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from community_connect.core.contracts import AgingSensitivity, FeedFilters, HomeLocation
from community_connect.core.errors import bad_request
from community_connect.services.feed import build_cluster_index, build_feed
from community_connect.services.incident_store import IncidentStore

router = APIRouter(prefix="/api/feed")


def get_incident_store() -> IncidentStore:
    raise RuntimeError("IncidentStore must be provided by app dependency override")


def feed_filters(
    showTrafficEvents: bool = True,
    showIncidents: bool = True,
    showQFES: bool = True,
    showUserSafetyCrime: bool = True,
    showUserWildlife: bool = True,
    showUserCommunity: bool = True,
    showUserTraffic: bool = True,
    homeLat: Optional[float] = None,
    homeLng: Optional[float] = None,
    radiusKm: float = Query(default=15.0, gt=0),
) -> FeedFilters:
    if (homeLat is None) != (homeLng is None):
        bad_request("bad_home_location", "homeLat and homeLng must be given together")
    home = HomeLocation(lat=homeLat, lng=homeLng, radiusKm=radiusKm) if homeLat is not None else None
    return FeedFilters(
        showTrafficEvents=showTrafficEvents,
        showIncidents=showIncidents,
        showQFES=showQFES,
        showUserSafetyCrime=showUserSafetyCrime,
        showUserWildlife=showUserWildlife,
        showUserCommunity=showUserCommunity,
        showUserTraffic=showUserTraffic,
        homeLocation=home,
    )


def _feed(
    store: IncidentStore,
    filters: FeedFilters,
    region: Optional[str],
    aging_sensitivity: str,
    show_expired: bool,
) -> Dict[str, Any]:
    return build_feed(
        store.list_all(),
        filters,
        region_id=region,
        aging_sensitivity=aging_sensitivity,
        show_expired=show_expired,
    )


def _displayed(feed: Dict[str, Any]) -> List[Dict[str, Any]]:
    return feed["filteredEvents"] + feed["filteredIncidents"]


@router.get("")
def get_feed(
    region: Optional[str] = None,
    agingSensitivity: AgingSensitivity = "normal",
    showExpired: bool = False,
    filters: FeedFilters = Depends(feed_filters),
    store: IncidentStore = Depends(get_incident_store),
) -> Dict[str, Any]:
    return _feed(store, filters, region, agingSensitivity, showExpired)


# ──────────────────────────────────────────────────────────────
# Clusters (index is rebuilt per request from the same feed inputs)
# ──────────────────────────────────────────────────────────────

@router.get("/clusters")
def get_clusters(
    west: float = Query(ge=-360, le=360),
    south: float = Query(ge=-90, le=90),
    east: float = Query(ge=-360, le=360),
    north: float = Query(ge=-90, le=90),
    zoom: float = Query(ge=0, le=24),
    region: Optional[str] = None,
    agingSensitivity: AgingSensitivity = "normal",
    showExpired: bool = False,
    filters: FeedFilters = Depends(feed_filters),
    store: IncidentStore = Depends(get_incident_store),
) -> Dict[str, Any]:
    index = build_cluster_index(_displayed(_feed(store, filters, region, agingSensitivity, showExpired)))
    clusters = index.get_clusters({"west": west, "south": south, "east": east, "north": north}, zoom)
    return {
        "type": "FeatureCollection",
        "features": clusters,
        "zoom": zoom,
        "totalPoints": index.point_count,
    }


@router.get("/clusters/{cluster_id}/leaves")
def get_cluster_leaves(
    cluster_id: int,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    region: Optional[str] = None,
    agingSensitivity: AgingSensitivity = "normal",
    showExpired: bool = False,
    filters: FeedFilters = Depends(feed_filters),
    store: IncidentStore = Depends(get_incident_store),
) -> Dict[str, Any]:
    index = build_cluster_index(_displayed(_feed(store, filters, region, agingSensitivity, showExpired)))
    return {"clusterId": cluster_id, "leaves": index.get_cluster_leaves(cluster_id, limit, offset)}


@router.get("/clusters/{cluster_id}/expansion-zoom")
def get_cluster_expansion_zoom(
    cluster_id: int,
    region: Optional[str] = None,
    agingSensitivity: AgingSensitivity = "normal",
    showExpired: bool = False,
    filters: FeedFilters = Depends(feed_filters),
    store: IncidentStore = Depends(get_incident_store),
) -> Dict[str, Any]:
    index = build_cluster_index(_displayed(_feed(store, filters, region, agingSensitivity, showExpired)))
    return {"clusterId": cluster_id, "zoom": index.get_cluster_expansion_zoom(cluster_id)}
