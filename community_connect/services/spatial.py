from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from community_connect.core.contracts import UnifiedIncident
from community_connect.core.geo import generate_geocell, geocells_in_bounding_box
from community_connect.core.settings import settings
from community_connect.core.time import parse_iso, parse_iso_to_epoch

logger = logging.getLogger(__name__)

T = TypeVar("T")

GEOCELL_PRECISION = 3


# ──────────────────────────────────────────────────────────────
# LRU cache with TTL
# ──────────────────────────────────────────────────────────────

@dataclass
class _CacheEntry(Generic[T]):
    data: T
    timestamp: float
    access_count: int = 1


class LRUCache(Generic[T]):
    def __init__(self, max_size: int = 50, max_age_s: float = 120.0, *, clock=time.monotonic):
        self.max_size = int(max_size)
        self.max_age_s = float(max_age_s)
        self._clock = clock
        self._entries: "OrderedDict[str, _CacheEntry[T]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _expired(self, entry: _CacheEntry[T], now: float) -> bool:
        return now - entry.timestamp > self.max_age_s

    def set(self, key: str, value: T) -> None:
        with self._lock:
            now = self._clock()
            for k in [k for k, e in self._entries.items() if self._expired(e, now)]:
                del self._entries[k]

            if len(self._entries) >= self.max_size and key not in self._entries:
                # Entries move to the end on every touch, so the head is the oldest.
                self._entries.popitem(last=False)

            self._entries[key] = _CacheEntry(data=value, timestamp=now)
            self._entries.move_to_end(key)

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            now = self._clock()
            if self._expired(entry, now):
                del self._entries[key]
                self.misses += 1
                return None

            self.hits += 1
            entry.access_count += 1
            entry.timestamp = now
            self._entries.move_to_end(key)
            return entry.data

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "size": len(self._entries),
            "maxSize": self.max_size,
            "hitRate": (self.hits / total) if total > 0 else 0.0,
            "hits": self.hits,
            "misses": self.misses,
            "totalRequests": total,
        }


# ──────────────────────────────────────────────────────────────
# 3-stage lookup: geocell hash -> bbox -> region membership
# ──────────────────────────────────────────────────────────────

@dataclass
class BoundingBox:
    southWest: Tuple[float, float]   # (lat, lng)
    northEast: Tuple[float, float]   # (lat, lng)


@dataclass
class SpatialQuery:
    bounding_box: Optional[BoundingBox] = None
    region_id: Optional[str] = None
    category: Optional[str] = None
    source: Optional[str] = None
    since: Optional[datetime] = None
    active_only: bool = False

    def cache_key(self) -> str:
        parts = [
            f"bbox:{self.bounding_box.southWest[0]},{self.bounding_box.southWest[1]}-"
            f"{self.bounding_box.northEast[0]},{self.bounding_box.northEast[1]}" if self.bounding_box else "",
            f"region:{self.region_id}" if self.region_id else "",
            f"cat:{self.category}" if self.category else "",
            f"src:{self.source}" if self.source else "",
            f"since:{int(self.since.timestamp() * 1000)}" if self.since else "",
            "active" if self.active_only else "",
        ]
        return "|".join(p for p in parts if p)


@dataclass
class SpatialQueryResult:
    incidents: List[UnifiedIncident]
    stats: Dict[str, Any] = field(default_factory=dict)


def _data_hash(incidents: List[UnifiedIncident]) -> str:
    stamps = sorted(int((parse_iso_to_epoch(i.lastUpdated) or 0) * 1000) for i in incidents)
    if not stamps:
        return "0_0_0"
    return f"{len(incidents)}_{stamps[0]}_{stamps[-1]}"


class SpatialLookup:
    def __init__(self, *, cache_size: Optional[int] = None, cache_ttl_s: Optional[float] = None):
        self.cache: LRUCache[SpatialQueryResult] = LRUCache(
            max_size=cache_size if cache_size is not None else settings.spatial_cache_size,
            max_age_s=cache_ttl_s if cache_ttl_s is not None else settings.spatial_cache_ttl_s,
        )
        self._incidents: List[UnifiedIncident] = []
        self._last_hash = ""

    def load_incidents(self, incidents: List[UnifiedIncident]) -> bool:
        """Swap in a new incident set. Returns False when the data is unchanged."""
        h = _data_hash(incidents)
        if h == self._last_hash:
            return False
        self._incidents = list(incidents)
        self._last_hash = h
        self.cache.clear()
        self._ensure_geocells()
        logger.info("[spatial] loaded %d incidents (hash=%s)", len(self._incidents), h)
        return True

    def _ensure_geocells(self) -> None:
        for inc in self._incidents:
            if not inc.geocell and inc.centroidLat is not None and inc.centroidLng is not None:
                inc.geocell = generate_geocell(inc.centroidLat, inc.centroidLng, GEOCELL_PRECISION)

    def query(self, q: SpatialQuery) -> SpatialQueryResult:
        started = time.perf_counter()
        key = q.cache_key()

        cached = self.cache.get(key)
        if cached is not None:
            stats = dict(cached.stats)
            stats["cacheHit"] = True
            stats["queryTimeMs"] = (time.perf_counter() - started) * 1000.0
            return SpatialQueryResult(incidents=cached.incidents, stats=stats)

        result = self._execute(q)
        result.stats["queryTimeMs"] = (time.perf_counter() - started) * 1000.0
        result.stats["cacheHit"] = False
        self.cache.set(key, result)
        return result

    def _execute(self, q: SpatialQuery) -> SpatialQueryResult:
        candidates = self._incidents
        stage1 = stage2 = stage3 = len(candidates)

        if q.bounding_box:
            sw, ne = q.bounding_box.southWest, q.bounding_box.northEast

            # Stage 1; skipped when the box is too large to enumerate
            cells = geocells_in_bounding_box(sw, ne, GEOCELL_PRECISION)
            if cells is not None:
                candidates = [i for i in candidates if not i.geocell or i.geocell in cells]
            stage1 = len(candidates)

            # Stage 2
            candidates = [
                i for i in candidates
                if i.centroidLat is not None
                and i.centroidLng is not None
                and sw[0] <= i.centroidLat <= ne[0]
                and sw[1] <= i.centroidLng <= ne[1]
            ]
            stage2 = len(candidates)

        # Stage 3
        if q.region_id:
            candidates = [i for i in candidates if q.region_id in (i.regionIds or [])]
            stage3 = len(candidates)

        if q.category:
            candidates = [i for i in candidates if i.category == q.category]
        if q.source:
            candidates = [i for i in candidates if i.source == q.source]
        if q.since:
            since = q.since
            candidates = [
                i for i in candidates
                if (parse_iso(i.lastUpdated) is not None and parse_iso(i.lastUpdated) >= since)
            ]
        if q.active_only:
            candidates = [i for i in candidates if i.status in ("active", "monitoring")]

        return SpatialQueryResult(
            incidents=list(candidates),
            stats={
                "totalFound": len(candidates),
                "stage1Filtered": stage1,
                "stage2Filtered": stage2,
                "stage3Filtered": stage3,
                "cacheHit": False,
                "queryTimeMs": 0.0,
            },
        )

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def data_stats(self) -> Dict[str, Any]:
        return {
            "incidentCount": len(self._incidents),
            "withGeocells": sum(1 for i in self._incidents if i.geocell),
            "dataHash": self._last_hash,
        }

    def has_data(self) -> bool:
        return bool(self._incidents)

    def all_incidents(self) -> List[UnifiedIncident]:
        return list(self._incidents)
