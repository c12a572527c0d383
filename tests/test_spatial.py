from datetime import datetime, timezone

from community_connect.services.incident_store import build_incident, derive_spatial_fields
from community_connect.services.spatial import BoundingBox, LRUCache, SpatialLookup, SpatialQuery


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _incident(source_id, lat, lng, *, source="user", category="traffic", updated="2025-03-01T10:00:00+00:00"):
    geometry = {"type": "Point", "coordinates": [lng, lat]}
    clat, clng, region_ids, geocell = derive_spatial_fields(geometry)
    return build_incident(
        source=source,
        source_id=source_id,
        title=f"Incident {source_id}",
        category=category,
        geometry=geometry,
        centroidLat=clat,
        centroidLng=clng,
        regionIds=region_ids,
        geocell=geocell,
        lastUpdated=updated,
    )


def test_lru_evicts_least_recently_used():
    clock = FakeClock()
    cache = LRUCache(max_size=2, max_age_s=60, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1
    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert len(cache) == 2


def test_lru_expiry_and_stats():
    clock = FakeClock()
    cache = LRUCache(max_size=5, max_age_s=60, clock=clock)
    cache.set("a", 1)
    clock.now += 30
    assert cache.get("a") == 1
    clock.now += 45
    # touched at +30, so still fresh at +75
    assert cache.get("a") == 1
    clock.now += 61
    assert cache.get("a") is None

    stats = cache.stats()
    assert stats["hits"] == 2
    assert stats["misses"] == 1
    assert stats["totalRequests"] == 3
    assert abs(stats["hitRate"] - 2 / 3) < 1e-9
    assert stats["size"] == 0
    assert stats["maxSize"] == 5

    cache.clear()
    assert cache.stats()["totalRequests"] == 0


def test_load_incidents_detects_unchanged_data():
    spatial = SpatialLookup(cache_size=10, cache_ttl_s=60)
    incidents = [_incident("a", -27.47, 153.02), _incident("b", -28.0, 153.43)]
    assert spatial.load_incidents(incidents)
    assert not spatial.load_incidents(list(incidents))
    assert spatial.data_stats()["incidentCount"] == 2
    assert spatial.has_data()

    newer = incidents + [_incident("c", -27.48, 153.03, updated="2025-03-01T11:00:00+00:00")]
    assert spatial.load_incidents(newer)
    assert len(spatial.all_incidents()) == 3


def test_three_stage_query_with_cache():
    spatial = SpatialLookup(cache_size=10, cache_ttl_s=60)
    spatial.load_incidents(
        [
            _incident("brisbane-1", -27.47, 153.02),
            _incident("brisbane-2", -27.48, 153.03, category="crime"),
            _incident("gold-coast", -28.0, 153.43),
        ]
    )
    q = SpatialQuery(bounding_box=BoundingBox(southWest=(-27.5, 153.0), northEast=(-27.45, 153.05)))

    first = spatial.query(q)
    assert {i.sourceId for i in first.incidents} == {"brisbane-1", "brisbane-2"}
    assert first.stats["totalFound"] == 2
    assert first.stats["stage1Filtered"] == 2
    assert first.stats["stage2Filtered"] == 2
    assert first.stats["cacheHit"] is False

    second = spatial.query(q)
    assert second.stats["cacheHit"] is True
    assert len(second.incidents) == 2


def test_query_filters():
    spatial = SpatialLookup(cache_size=10, cache_ttl_s=60)
    spatial.load_incidents(
        [
            _incident("a", -27.47, 153.02, updated="2025-03-01T08:00:00+00:00"),
            _incident("b", -27.48, 153.03, category="crime"),
            _incident("c", -28.0, 153.43, source="tmr"),
        ]
    )

    by_region = spatial.query(SpatialQuery(region_id="gold-coast"))
    assert [i.sourceId for i in by_region.incidents] == ["c"]
    assert by_region.stats["stage3Filtered"] == 1

    assert [i.sourceId for i in spatial.query(SpatialQuery(category="crime")).incidents] == ["b"]
    assert [i.sourceId for i in spatial.query(SpatialQuery(source="tmr")).incidents] == ["c"]

    since = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert {i.sourceId for i in spatial.query(SpatialQuery(since=since)).incidents} == {"b", "c"}
