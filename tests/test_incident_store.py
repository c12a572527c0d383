from community_connect.services.incident_store import (
    IncidentStore,
    as_feature_collection,
    build_incident,
    derive_spatial_fields,
)


def _incident(source, source_id, lng, lat, **fields):
    geometry = {"type": "Point", "coordinates": [lng, lat]}
    clat, clng, region_ids, geocell = derive_spatial_fields(geometry)
    fields.setdefault("lastUpdated", "2025-03-01T10:00:00+00:00")
    return build_incident(
        source=source,
        source_id=source_id,
        title=f"{source} {source_id}",
        geometry=geometry,
        centroidLat=clat,
        centroidLng=clng,
        regionIds=region_ids,
        geocell=geocell,
        **fields,
    )


def test_upsert_is_keyed_by_source_record(conn):
    store = IncidentStore(conn)
    first = store.upsert(_incident("tmr", "42", 153.0251, -27.4698, createdAt="2025-03-01T09:00:00+00:00"))
    assert first.id == "tmr:42"

    again = store.upsert(_incident("tmr", "42", 153.0251, -27.4698, severity="high"))
    assert again.severity == "high"
    assert again.createdAt == "2025-03-01T09:00:00+00:00"
    assert store.count() == 1


def test_listing_by_source_and_region(conn):
    store = IncidentStore(conn)
    ok, failed = store.upsert_many(
        [
            _incident("tmr", "1", 153.0251, -27.4698),
            _incident("emergency", "2", 153.4145, -28.0023),
            _incident("user", "3", 153.03, -27.47, properties={"reporterId": "u1"}),
        ]
    )
    assert (ok, failed) == (3, 0)

    assert [i.id for i in store.list_by_source("emergency")] == ["emergency:2"]
    assert {i.id for i in store.list_by_region("brisbane")} == {"tmr:1", "user:3"}
    assert [i.id for i in store.list_by_region("gold-coast")] == ["emergency:2"]

    fc = as_feature_collection(store.list_by_source("user"))
    assert fc["type"] == "FeatureCollection"
    (feature,) = fc["features"]
    assert feature["id"] == "user:3"
    assert feature["geometry"]["coordinates"] == [153.03, -27.47]
    assert feature["properties"]["reporterId"] == "u1"
    assert feature["properties"]["source"] == "user"


def test_update_and_delete(conn):
    store = IncidentStore(conn)
    store.upsert(_incident("user", "9", 153.03, -27.47))

    updated = store.update("user:9", {"title": "Renamed", "regionIds": ["logan"], "bogus": 1})
    assert updated.title == "Renamed"
    assert updated.regionIds == ["logan"]
    assert updated.lastUpdated != "2025-03-01T10:00:00+00:00"

    assert store.update("user:missing", {"title": "x"}) is None
    assert store.delete("user:9")
    assert not store.delete("user:9")
    assert store.get("user:9") is None
