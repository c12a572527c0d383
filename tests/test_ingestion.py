import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from community_connect.services.incident_store import IncidentStore, build_incident
from community_connect.services.ingestion import (
    USER_SOURCE_ID,
    UnifiedIngestionEngine,
    adaptive_interval_s,
    backoff_interval_s,
    refresh_user_incidents,
)
from community_connect.services.spatial import SpatialLookup
from community_connect.services.traffic import QldTrafficFeed


class Clock:
    def __init__(self):
        self.now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def _events(now):
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "id": 1,
                "geometry": {"type": "Point", "coordinates": [153.0251, -27.4698]},
                "properties": {
                    "status": "Published",
                    "event_type": "Hazard",
                    "impact": "Minor",
                    "published": (now - timedelta(hours=1)).isoformat(),
                },
            }
        ],
    }


def _engine(conn, handler, clock, seen=None):
    async def on_new(incident):
        if seen is not None:
            seen.append(incident.id)

    return UnifiedIngestionEngine(
        store=IncidentStore(conn),
        spatial=SpatialLookup(cache_size=10, cache_ttl_s=60),
        feeds=[QldTrafficFeed(events_url="https://traffic.test/events", api_key="")],
        transport=httpx.MockTransport(handler),
        on_new_incident=on_new,
        clock=clock,
    )


def test_interval_policy():
    assert adaptive_interval_s(51) == 60
    assert adaptive_interval_s(50) == 90
    assert adaptive_interval_s(11) == 90
    assert adaptive_interval_s(3) == 300
    assert backoff_interval_s(1) == 600
    assert backoff_interval_s(2) == 900
    assert backoff_interval_s(10) == 900


def test_successful_ingest_stores_and_notifies_once(conn):
    clock = Clock()
    seen = []
    requests = []

    def handler(request):
        requests.append(str(request.url))
        return httpx.Response(200, json=_events(clock.now))

    engine = _engine(conn, handler, clock, seen)

    assert asyncio.run(engine.ingest_source("tmr-traffic")) == 1
    assert requests == ["https://traffic.test/events?f=geojson"]
    assert seen == ["tmr:1"]
    assert engine.spatial.data_stats()["incidentCount"] == 1

    source = engine.sources["tmr-traffic"]
    assert source.error_count == 0
    assert source.last_item_count == 1
    assert source.next_run_in_s == 300

    # second pass upserts the same row and does not re-announce it
    assert asyncio.run(engine.ingest_source("tmr-traffic")) == 1
    assert seen == ["tmr:1"]
    assert engine.store.count() == 1


def test_circuit_opens_after_three_failures_and_probes_later(conn):
    clock = Clock()
    calls = {"n": 0, "fail": True}

    def handler(request):
        calls["n"] += 1
        if calls["fail"]:
            return httpx.Response(500, json={"error": "down"})
        return httpx.Response(200, json=_events(clock.now))

    engine = _engine(conn, handler, clock)
    source = engine.sources["tmr-traffic"]

    for expected_errors in (1, 2, 3):
        assert asyncio.run(engine.ingest_source("tmr-traffic")) == 0
        assert source.error_count == expected_errors
    assert source.circuit_open
    assert source.next_run_in_s == 900

    # open circuit: no request goes out
    assert asyncio.run(engine.ingest_source("tmr-traffic")) == 0
    assert calls["n"] == 3

    clock.now += timedelta(seconds=901)
    calls["fail"] = False
    assert asyncio.run(engine.ingest_source("tmr-traffic")) == 1
    assert calls["n"] == 4
    assert not source.circuit_open
    assert source.error_count == 0


def test_unknown_source_raises(conn):
    engine = _engine(conn, lambda request: httpx.Response(200, json={}), Clock())
    with pytest.raises(KeyError):
        asyncio.run(engine.ingest_source("nope"))


def test_user_report_refresh(conn):
    clock = Clock()
    store = IncidentStore(conn)
    stale = build_incident(
        source="user",
        source_id="r1",
        title="Fallen tree",
        location="Brisbane City",
        geometry={"type": "Point", "coordinates": [153.0251, -27.4698]},
        incidentTime=(clock.now - timedelta(hours=2)).isoformat(),
        lastUpdated=(clock.now - timedelta(hours=2)).isoformat(),
    )
    old = build_incident(
        source="user",
        source_id="r2",
        title="Old report",
        geometry={"type": "Point", "coordinates": [153.0251, -27.4698]},
        incidentTime=(clock.now - timedelta(days=30)).isoformat(),
        lastUpdated=(clock.now - timedelta(days=30)).isoformat(),
    )
    store.upsert(stale)
    store.upsert(old)

    refreshed = refresh_user_incidents(store.list_by_source("user"), clock.now)
    assert [i.sourceId for i in refreshed] == ["r1"]
    assert refreshed[0].regionIds == ["brisbane"]
    assert refreshed[0].geocell == "3_-27.470_153.025"

    engine = _engine(conn, lambda request: httpx.Response(200, json={}), clock)
    assert asyncio.run(engine.ingest_source(USER_SOURCE_ID)) == 1
    assert store.get("user:r1").geocell == "3_-27.470_153.025"
    # nothing left to refresh
    assert asyncio.run(engine.ingest_source(USER_SOURCE_ID)) == 0


def test_stats_shape(conn):
    engine = _engine(conn, lambda request: httpx.Response(200, json={}), Clock())
    stats = engine.get_ingestion_stats()
    assert stats["running"] is False
    assert stats["totalIncidents"] == 0
    assert {s["id"] for s in stats["sources"]} == {"tmr-traffic", USER_SOURCE_ID}
    assert "cache" in stats and "spatial" in stats


def test_store_side_failure_counts_and_reschedules(conn):
    clock = Clock()
    calls = {"n": 0}

    async def on_new(incident):
        calls["n"] += 1
        raise RuntimeError("push backend down")

    engine = UnifiedIngestionEngine(
        store=IncidentStore(conn),
        spatial=SpatialLookup(cache_size=10, cache_ttl_s=60),
        feeds=[QldTrafficFeed(events_url="https://traffic.test/events", api_key="")],
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=_events(clock.now))),
        on_new_incident=on_new,
        clock=clock,
    )
    source = engine.sources["tmr-traffic"]

    assert asyncio.run(engine.ingest_source("tmr-traffic")) == 0
    assert calls["n"] == 1
    assert source.error_count == 1
    assert source.last_error == "push backend down"
    assert source.next_run_in_s == backoff_interval_s(1)

    # the row was stored before the callback failed, so the next pass has nothing new to announce
    assert asyncio.run(engine.ingest_source("tmr-traffic")) == 1
    assert calls["n"] == 1
    assert source.error_count == 0
    assert source.next_run_in_s == adaptive_interval_s(1)
