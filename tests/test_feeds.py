from datetime import datetime, timedelta, timezone

from community_connect.services.emergency import (
    EmergencyFeed,
    emergency_category,
    emergency_severity,
    normalize_emergency_incidents,
)
from community_connect.services.traffic import (
    QldTrafficFeed,
    is_recent_event,
    normalize_tmr_events,
    tmr_severity,
    tmr_subcategory,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _tmr_feature(fid, **props):
    base = {
        "status": "Published",
        "event_type": "Crash",
        "event_subtype": "Multi-vehicle",
        "impact": "Lanes blocked",
        "description": "Two cars",
        "advice": "Avoid the area",
        "published": (NOW - timedelta(hours=1)).isoformat(),
        "last_updated": (NOW - timedelta(minutes=10)).isoformat(),
        "road_summary": {"road_name": "Gold Coast Highway", "locality": "Surfers Paradise"},
    }
    base.update(props)
    return {
        "type": "Feature",
        "id": fid,
        "geometry": {"type": "Point", "coordinates": [153.4145, -28.0023]},
        "properties": base,
    }


def test_tmr_classification():
    assert tmr_severity({"impact": "Road closed"}) == "critical"
    assert tmr_severity({"impact": "Major delays"}) == "high"
    assert tmr_severity({"impact": "Minor"}) == "low"
    assert tmr_severity({}) == "medium"

    assert tmr_subcategory({"impact": "All lanes blocked"}) == "road-closure"
    assert tmr_subcategory({"impact": "Congestion"}) == "congestion"
    assert tmr_subcategory({"event_type": "Crash"}) == "accident"
    assert tmr_subcategory({"event_type": "Roadworks"}) == "roadwork"
    assert tmr_subcategory({"event_type": "Special event"}) == "other"


def test_recent_event_window():
    assert is_recent_event({"properties": {}}, NOW)
    assert is_recent_event({"properties": {"published": "garbage"}}, NOW)
    assert is_recent_event({"properties": {"published": (NOW - timedelta(days=6)).isoformat()}}, NOW)
    assert not is_recent_event({"properties": {"published": (NOW - timedelta(days=8)).isoformat()}}, NOW)


def test_normalize_tmr_feature_collection():
    data = {
        "type": "FeatureCollection",
        "features": [
            _tmr_feature(101),
            _tmr_feature(102, status="Closed", impact={"impact_type": "Major", "impact_subtype": "Delays"}),
            _tmr_feature(103, published=(NOW - timedelta(days=30)).isoformat()),
            {"type": "Feature", "id": 104, "geometry": None, "properties": {"status": "Published"}},
        ],
    }
    incidents = normalize_tmr_events(data, NOW)
    assert [i.sourceId for i in incidents] == ["101", "102"]

    first, second = incidents
    assert first.id == "tmr:101"
    assert first.source == "tmr"
    assert first.title == "Crash - Multi-vehicle"
    assert first.description == "Two cars. Avoid the area"
    assert first.location == "Gold Coast Highway, Surfers Paradise"
    assert first.severity == "critical"
    assert first.subcategory == "road-closure"
    assert first.status == "active"
    assert first.regionIds == ["gold-coast"]
    assert first.geocell.startswith("3_")
    assert abs(first.centroidLat + 28.0023) < 1e-9

    assert second.status == "resolved"
    assert second.properties["impact"] == "Major Delays"
    assert second.properties["impact_type"] == "major"
    assert second.severity == "high"


def test_normalize_tmr_events_shape_and_fallback_id():
    event = _tmr_feature(None)["properties"]
    event["geometry"] = {"type": "Point", "coordinates": [153.0251, -27.4698]}
    incidents = normalize_tmr_events({"events": [event]}, NOW)
    assert len(incidents) == 1
    assert incidents[0].sourceId.startswith("tmr-")
    again = normalize_tmr_events({"events": [dict(event)]}, NOW)
    assert again[0].id == incidents[0].id

    assert normalize_tmr_events({"unexpected": True}, NOW) == []


def test_tmr_feed_url_includes_api_key():
    feed = QldTrafficFeed(events_url="https://example.test/v2/events", api_key="abc")
    assert feed.url() == "https://example.test/v2/events?apikey=abc&f=geojson"
    assert QldTrafficFeed(events_url="https://example.test/v2/events", api_key="").url().endswith("?f=geojson")


def _emergency_feature(oid, **props):
    base = {
        "OBJECTID": oid,
        "Master_Incident_Number": "QF-1234",
        "Jurisdiction": "Fire",
        "GroupedType": "Fire",
        "Incident_Type": "Grass fire",
        "CurrentStatus": "Going",
        "VehiclesOnScene": 1,
        "VehiclesOnRoute": 0,
        "Locality": "Mooloolaba",
        "Location": "Parkyn Pde",
        "Response_Date": (NOW - timedelta(minutes=30)).isoformat(),
    }
    base.update(props)
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [153.119, -26.682]},
        "properties": base,
    }


def test_emergency_classification():
    assert emergency_category({"Jurisdiction": "Fire"}) == "fire"
    assert emergency_category({"Jurisdiction": "Ambulance"}) == "medical"
    assert emergency_category({"Master_Incident_Number": "QP123"}) == "crime"
    assert emergency_category({"Jurisdiction": "SES"}) == "rescue"
    assert emergency_category({}) == "emergency"

    assert emergency_severity({"VehiclesOnScene": 3}) == "critical"
    assert emergency_severity({"VehiclesOnRoute": "2"}) == "high"
    assert emergency_severity({"CurrentStatus": "Going"}) == "high"
    assert emergency_severity({"CurrentStatus": "Arrived"}) == "critical"
    assert emergency_severity({"CurrentStatus": "Returning"}) == "low"
    assert emergency_severity({"Jurisdiction": "Fire"}) == "high"
    assert emergency_severity({}) == "medium"
    assert emergency_severity({"VehiclesOnScene": "inf", "VehiclesOnRoute": "nan"}) == "medium"


def test_normalize_emergency_incidents():
    data = {
        "type": "FeatureCollection",
        "features": [
            _emergency_feature(7),
            _emergency_feature(
                8,
                Master_Incident_Number="QA-5678",
                CurrentStatus="Closed",
                Jurisdiction="Ambulance",
                GroupedType="Medical",
            ),
            {"type": "Feature", "geometry": None, "properties": {"OBJECTID": 9}},
        ],
    }
    incidents = normalize_emergency_incidents(data, NOW)
    assert [i.sourceId for i in incidents] == ["7", "8"]

    fire, medical = incidents
    assert fire.id == "emergency:7"
    assert fire.title == "QF-1234"
    assert fire.category == "fire"
    assert fire.severity == "high"
    assert fire.status == "active"
    assert fire.location == "Parkyn Pde, Mooloolaba"
    assert fire.regionIds == ["sunshine-coast"]
    assert "Vehicles: 1 on scene, 0 en route." in fire.description

    assert medical.category == "medical"
    assert medical.status == "resolved"

    assert normalize_emergency_incidents({"features": "nope"}, NOW) == []


def test_emergency_feed_identity():
    feed = EmergencyFeed(url="https://example.test/escad")
    assert feed.source_id == "emergency-incidents"
    assert feed.type == "emergency"
    assert feed.url == "https://example.test/escad"
