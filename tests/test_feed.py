from datetime import datetime, timedelta, timezone

from community_connect.core.contracts import FeedFilters, HomeLocation
from community_connect.services.categories import CATEGORY_UUIDS
from community_connect.services.feed import (
    COMPLETED_GREY,
    MARKER_COLORS,
    build_cluster_index,
    build_feed,
    is_qfes_incident,
    marker_color,
    to_feed_feature,
)
from community_connect.services.incident_store import build_incident, derive_spatial_fields

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
BRISBANE = (-27.4698, 153.0251)


def _incident(source, source_id, lat, lng, *, hours_ago=1, **fields):
    geometry = {"type": "Point", "coordinates": [lng, lat]}
    clat, clng, region_ids, geocell = derive_spatial_fields(geometry)
    stamp = (NOW - timedelta(hours=hours_ago)).isoformat()
    return build_incident(
        source=source,
        source_id=source_id,
        title=f"{source} {source_id}",
        geometry=geometry,
        centroidLat=clat,
        centroidLng=clng,
        regionIds=region_ids,
        geocell=geocell,
        incidentTime=stamp,
        lastUpdated=stamp,
        **fields,
    )


def _sample():
    return [
        _incident("tmr", "t1", -27.47, 153.02, category="traffic"),
        _incident("emergency", "e1", -27.48, 153.03, category="fire", properties={"GroupedType": "Fire"}),
        _incident("emergency", "e2", -27.46, 153.01, category="medical", properties={"GroupedType": "Medical"}),
        _incident("user", "u1", -27.47, 153.03, categoryId=CATEGORY_UUIDS["SAFETY_CRIME"]),
        _incident("user", "u2", -27.47, 153.04, categoryId=CATEGORY_UUIDS["WILDLIFE"]),
        _incident("user", "u3", -27.47, 153.05, categoryId=CATEGORY_UUIDS["PETS"]),
        _incident("user", "gc", -28.0, 153.43, categoryId=CATEGORY_UUIDS["COMMUNITY"]),
    ]


def test_feature_classification():
    crime = to_feed_feature(_incident("user", "u1", -27.47, 153.03, categoryId=CATEGORY_UUIDS["SAFETY_CRIME"]))
    props = crime["properties"]
    assert props["userReported"] is True
    assert props["incidentType"] == "crime"
    assert props["markerType"] == "crime"
    assert props["color"] == MARKER_COLORS["crime"]

    pets = to_feed_feature(_incident("user", "u3", -27.47, 153.05, categoryId=CATEGORY_UUIDS["PETS"]))
    assert pets["properties"]["markerType"] == "pets"

    tmr = to_feed_feature(_incident("tmr", "t1", -27.47, 153.02))
    assert tmr["properties"]["markerType"] == "traffic"
    assert tmr["properties"]["userReported"] is False

    assert marker_color("fire", "resolved") == COMPLETED_GREY
    assert marker_color("unknown") == "#6b7280"


def test_qfes_detection():
    assert is_qfes_incident({"properties": {"GroupedType": "Fire"}})
    assert is_qfes_incident({"properties": {"incidentType": "Chemical spill"}})
    assert is_qfes_incident({"properties": {"description": "Smoke reported"}})
    assert not is_qfes_incident({"properties": {"GroupedType": "Medical", "description": "Patient"}})
    assert not is_qfes_incident({})


def test_counts_and_partitions():
    feed = build_feed(_sample(), now=NOW)
    assert feed["totalFeatures"] == 7
    assert len(feed["events"]) == 1
    assert len(feed["incidents"]) == 6
    assert feed["counts"] == {
        "tmr": 1,
        "esq": 1,
        "qfes": 1,
        "userSafetyCrime": 1,
        "userWildlife": 1,
        "userCommunity": 2,
        "userTraffic": 0,
    }


def test_flags_filter_display_lists_but_not_counts():
    filters = FeedFilters(showTrafficEvents=False, showQFES=False, showUserWildlife=False)
    feed = build_feed(_sample(), filters, now=NOW)
    assert feed["filteredEvents"] == []
    shown = {f["properties"]["sourceId"] for f in feed["filteredIncidents"]}
    assert shown == {"e2", "u1", "u3", "gc"}
    assert feed["counts"]["tmr"] == 1
    assert feed["counts"]["qfes"] == 1


def test_region_and_proximity_filters():
    by_region = build_feed(_sample(), region_id="gold-coast", now=NOW)
    assert by_region["totalFeatures"] == 1

    near = FeedFilters(homeLocation=HomeLocation(lat=BRISBANE[0], lng=BRISBANE[1], radiusKm=10))
    feed = build_feed(_sample(), near, now=NOW)
    assert feed["totalFeatures"] == 6
    assert feed["counts"]["userCommunity"] == 1


def test_aging_hides_expired_and_attaches_summary():
    incidents = [
        _incident("user", "fresh", -27.47, 153.03, hours_ago=1, categoryId=CATEGORY_UUIDS["COMMUNITY"]),
        _incident("user", "stale", -27.47, 153.03, hours_ago=20, categoryId=CATEGORY_UUIDS["COMMUNITY"]),
    ]
    feed = build_feed(incidents, now=NOW)
    assert [f["properties"]["sourceId"] for f in feed["incidents"]] == ["fresh"]
    aging = feed["incidents"][0]["properties"]["aging"]
    assert aging["isVisible"]
    assert aging["summary"] == "11h remaining"
    assert feed["incidents"][0]["properties"]["agedColor"].startswith("#")

    shown = build_feed(incidents, show_expired=True, now=NOW)
    assert shown["totalFeatures"] == 2

    forever = build_feed(incidents, aging_sensitivity="disabled", now=NOW)
    assert forever["incidents"][1]["properties"]["aging"]["timeRemaining"] is None


def test_cluster_index_from_feed():
    feed = build_feed(_sample(), now=NOW)
    index = build_cluster_index(feed["filteredEvents"] + feed["filteredIncidents"])
    assert index.point_count == 7
    (cluster,) = index.get_clusters({"west": -180, "south": -85, "east": 180, "north": 85}, 0)
    assert cluster["properties"]["point_count"] == 7
