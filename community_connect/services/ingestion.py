# community_connect/services/ingestion.py
"""
Unified ingestion engine.

Polls the upstream feeds (TMR traffic, QLD emergency services) plus a
refresh pass over user reports, normalises everything into unified incidents,
upserts them into the incident store and reloads the spatial index.

Each source has its own APScheduler job. After every run the job is
re-armed with a delay chosen from the result:
  - success: adaptive interval from the item count (fast / normal / slow)
  - failure: exponential backoff capped at the circuit interval
  - circuit open: skipped until the circuit interval has elapsed, then one probe run
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from community_connect.core.contracts import UnifiedIncident
from community_connect.core.settings import settings
from community_connect.core.time import parse_iso, to_iso, utc_now
from community_connect.services.emergency import EmergencyFeed
from community_connect.services.incident_store import IncidentStore, derive_spatial_fields
from community_connect.services.spatial import SpatialLookup
from community_connect.services.traffic import QldTrafficFeed

logger = logging.getLogger(__name__)

USER_SOURCE_ID = "user-reports"

# seconds before the first run of each source
INITIAL_DELAYS_S: Dict[str, float] = {
    "tmr-traffic": 5.0,
    "emergency-incidents": 15.0,
    USER_SOURCE_ID: 30.0,
}

NewIncidentHook = Callable[[UnifiedIncident], Awaitable[None]]


@dataclass
class IngestionSource:
    id: str
    name: str
    type: str
    feed: Any = None                  # None for the user-reports refresher
    last_fetch: Optional[datetime] = None
    last_success: Optional[datetime] = None
    error_count: int = 0
    circuit_open: bool = False
    circuit_opened_at: Optional[datetime] = None
    last_item_count: int = 0
    next_run_in_s: Optional[float] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "lastFetch": to_iso(self.last_fetch) if self.last_fetch else None,
            "lastSuccess": to_iso(self.last_success) if self.last_success else None,
            "errorCount": self.error_count,
            "circuitOpen": self.circuit_open,
            "lastItemCount": self.last_item_count,
            "nextRunInS": self.next_run_in_s,
            "lastError": self.last_error,
        }


# ──────────────────────────────────────────────────────────────
# Interval policy
# ──────────────────────────────────────────────────────────────

def adaptive_interval_s(item_count: int) -> float:
    if item_count > 50:
        return settings.poll_fast_s
    if item_count > 10:
        return settings.poll_normal_s
    return settings.poll_slow_s


def backoff_interval_s(error_count: int) -> float:
    n = max(1, int(error_count))
    return min(settings.poll_error_s * (2 ** (n - 1)), settings.poll_circuit_s)


# ──────────────────────────────────────────────────────────────
# User report refresh
# ──────────────────────────────────────────────────────────────

def refresh_user_incidents(incidents: List[UnifiedIncident], now: Optional[datetime] = None) -> List[UnifiedIncident]:
    """
    Recompute centroid, regionIds and geocell for recent user reports.
    Reports without a usable geometry are left untouched.
    """
    now = now or utc_now()
    window = timedelta(days=settings.ingestion_recent_days)
    out: List[UnifiedIncident] = []

    for inc in incidents:
        reported = parse_iso(inc.incidentTime or inc.createdAt or inc.lastUpdated)
        if reported is not None and now - reported > window:
            continue
        spatial = derive_spatial_fields(inc.geometry, inc.location)
        if spatial is None:
            continue
        lat, lng, region_ids, geocell = spatial
        if (inc.centroidLat, inc.centroidLng, inc.regionIds, inc.geocell) == (lat, lng, region_ids, geocell):
            continue
        out.append(
            inc.model_copy(update={"centroidLat": lat, "centroidLng": lng, "regionIds": region_ids, "geocell": geocell})
        )
    return out


# ──────────────────────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────────────────────

class UnifiedIngestionEngine:
    def __init__(
        self,
        *,
        store: IncidentStore,
        spatial: SpatialLookup,
        feeds: Optional[List[Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_new_incident: Optional[NewIncidentHook] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.spatial = spatial
        self.transport = transport
        self.on_new_incident = on_new_incident
        self.scheduler = scheduler
        self._clock = clock
        self._started_at: Optional[datetime] = None
        self._locks: Dict[str, asyncio.Lock] = {}

        self.sources: Dict[str, IngestionSource] = {}
        for feed in feeds if feeds is not None else [QldTrafficFeed(), EmergencyFeed()]:
            self.sources[feed.source_id] = IngestionSource(id=feed.source_id, name=feed.name, type=feed.type, feed=feed)
        self.sources[USER_SOURCE_ID] = IngestionSource(id=USER_SOURCE_ID, name="User Reports", type="user")

    # ──────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._started_at is not None

    def start(self) -> None:
        if self.running:
            logger.info("[ingestion] already running")
            return

        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(timezone="UTC")
        if not self.scheduler.running:
            self.scheduler.start()

        self._started_at = self._clock()
        self.spatial.load_incidents(self.store.list_all())

        for source_id in self.sources:
            self._schedule(source_id, INITIAL_DELAYS_S.get(source_id, 5.0))
        logger.info("[ingestion] started with %d sources", len(self.sources))

    def shutdown(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self._started_at = None
        logger.info("[ingestion] stopped")

    def _schedule(self, source_id: str, delay_s: float) -> None:
        self.sources[source_id].next_run_in_s = delay_s
        if not self.running or self.scheduler is None:
            return
        self.scheduler.add_job(
            self._run_job,
            "date",
            run_date=self._clock() + timedelta(seconds=delay_s),
            args=[source_id],
            id=f"ingest:{source_id}",
            replace_existing=True,
            misfire_grace_time=60,
        )

    async def _run_job(self, source_id: str) -> None:
        await self.ingest_source(source_id)

    # ──────────────────────────────────────────────────────────
    # One run
    # ──────────────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        transport = self.transport or httpx.AsyncHTTPTransport(retries=1)
        return httpx.AsyncClient(
            timeout=settings.ingestion_timeout_s,
            follow_redirects=True,
            transport=transport,
        )

    async def _collect(self, source: IngestionSource, now: datetime) -> List[UnifiedIncident]:
        if source.feed is None:
            return refresh_user_incidents(self.store.list_by_source("user"), now)
        async with self._client() as client:
            data = await source.feed.fetch(client)
        return source.feed.normalize(data, now)

    async def ingest_source(self, source_id: str) -> int:
        """Run one ingestion pass for a source. Returns the number of incidents stored."""
        source = self.sources.get(source_id)
        if source is None:
            raise KeyError(source_id)

        lock = self._locks.setdefault(source_id, asyncio.Lock())
        async with lock:
            now = self._clock()

            if source.circuit_open:
                opened = source.circuit_opened_at or now
                if (now - opened).total_seconds() < settings.poll_circuit_s:
                    logger.info("[ingestion] %s circuit open, skipping", source.id)
                    self._schedule(source.id, settings.poll_circuit_s)
                    return 0
                logger.info("[ingestion] %s circuit half-open, probing", source.id)

            source.last_fetch = now
            try:
                incidents = await self._collect(source, now)
                stored = await self._store(incidents)
                self.spatial.load_incidents(self.store.list_all())
            except (httpx.HTTPError, ValueError) as e:
                self._record_failure(source, e, now)
                return 0
            except Exception as e:  # pylint: disable=broad-except
                # the next poll is only armed from here
                logger.exception("[ingestion] %s unexpected error", source.id)
                self._record_failure(source, e, now)
                return 0

            source.last_success = now
            source.error_count = 0
            source.circuit_open = False
            source.circuit_opened_at = None
            source.last_error = None
            source.last_item_count = len(incidents)
            self._schedule(source.id, adaptive_interval_s(stored))

            logger.info("[ingestion] %s: %d normalized, %d stored", source.id, len(incidents), stored)
            return stored

    async def _store(self, incidents: List[UnifiedIncident]) -> int:
        fresh: List[UnifiedIncident] = []
        if self.on_new_incident is not None:
            fresh = [i for i in incidents if i.status == "active" and self.store.get(i.id) is None]

        ok, failed = self.store.upsert_many(incidents)
        if failed:
            logger.warning("[ingestion] %d incidents failed to store", failed)

        for inc in fresh:
            await self.on_new_incident(inc)
        return ok

    def _record_failure(self, source: IngestionSource, error: Exception, now: datetime) -> None:
        source.error_count += 1
        source.last_error = str(error)[:300]
        if source.error_count >= settings.ingestion_circuit_threshold:
            if not source.circuit_open:
                logger.warning("[ingestion] %s circuit opened after %d errors", source.id, source.error_count)
            source.circuit_open = True
            source.circuit_opened_at = now
        logger.warning("[ingestion] %s failed (%d): %s", source.id, source.error_count, error)
        self._schedule(source.id, backoff_interval_s(source.error_count))

    # ──────────────────────────────────────────────────────────
    # Public
    # ──────────────────────────────────────────────────────────

    async def force_ingestion(self, source_id: Optional[str] = None) -> Dict[str, int]:
        if source_id is not None and source_id not in self.sources:
            raise KeyError(source_id)
        ids = [source_id] if source_id else list(self.sources)
        results: Dict[str, int] = {}
        for sid in ids:
            results[sid] = await self.ingest_source(sid)
        return results

    def get_ingestion_stats(self) -> Dict[str, Any]:
        now = self._clock()
        return {
            "running": self.running,
            "uptimeS": (now - self._started_at).total_seconds() if self._started_at else 0.0,
            "totalIncidents": self.store.count(),
            "sources": [s.to_dict() for s in self.sources.values()],
            "spatial": self.spatial.data_stats(),
            "cache": self.spatial.cache_stats(),
        }
