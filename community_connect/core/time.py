from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def parse_iso(s: Any) -> Optional[datetime]:
    """
    Lenient ISO-8601 parse.
    - accepts a trailing "Z"
    - naive values are treated as UTC
    - epoch milliseconds (ArcGIS style) are accepted too
    """
    if s is None or s == "":
        return None
    if isinstance(s, datetime):
        return s if s.tzinfo else s.replace(tzinfo=timezone.utc)
    if isinstance(s, (int, float)) and not isinstance(s, bool):
        try:
            return datetime.fromtimestamp(float(s) / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        t = str(s).strip()
        if not t:
            return None
        if t.endswith("Z"):
            t = t[:-1] + "+00:00"
        dt = datetime.fromisoformat(t)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except ValueError:
        return None


def parse_iso_to_epoch(s: Any) -> Optional[float]:
    dt = parse_iso(s)
    return dt.timestamp() if dt else None


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def hours_since(s: Any, now: Optional[datetime] = None) -> Optional[float]:
    dt = parse_iso(s)
    if dt is None:
        return None
    now = now or utc_now()
    return (now - dt).total_seconds() / 3600.0
