from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any, Dict, Literal, Mapping, Optional

from community_connect.core.contracts import IncidentAging
from community_connect.core.time import hours_since, parse_iso, utc_now

# Hours an incident stays visible, per tier
AGING_TIERS: Dict[str, int] = {
    "standard": 12,
    "major": 24,
}

EXTENDED_MULTIPLIER = 1.5
AGED_GREY = "#e5e7eb"

_HEX_RE = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)


def _get(incident: Any, key: str, default: Any = None) -> Any:
    if isinstance(incident, Mapping):
        return incident.get(key, default)
    return getattr(incident, key, default)


def _num(v: Any) -> Optional[float]:
    if isinstance(v, bool) or v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def choose_tier(incident: Any) -> Literal["standard", "major"]:
    status = str(_get(incident, "status") or "").lower()
    severity = str(_get(incident, "severity") or "").lower()
    source = _get(incident, "source")
    props = _get(incident, "properties") or {}

    if source in ("emergency", "qfes") and status == "active":
        return "major"
    on_scene = _num(props.get("VehiclesOnScene"))
    if on_scene is not None and on_scene >= 3:
        return "major"
    if props.get("impact_type") == "major":
        return "major"
    if severity in ("high", "critical"):
        return "major"
    return "standard"


def calculate_incident_aging(
    incident: Any,
    aging_sensitivity: str = "normal",
    show_expired: bool = False,
    now: Optional[datetime] = None,
) -> IncidentAging:
    if aging_sensitivity == "disabled":
        return IncidentAging(agePercentage=0.0, isVisible=True, timeRemaining=math.inf, shouldAutoHide=False)

    ttl_hours = AGING_TIERS[choose_tier(incident)]
    if aging_sensitivity == "extended":
        ttl_hours = ttl_hours * EXTENDED_MULTIPLIER
    total_s = ttl_hours * 3600.0

    now = now or utc_now()
    ref = parse_iso(_get(incident, "incidentTime")) or parse_iso(_get(incident, "lastUpdated"))
    # Unparseable timestamps age from zero
    elapsed_s = (now - ref).total_seconds() if ref else 0.0

    age = max(0.0, min(elapsed_s / total_s, 1.0))
    remaining_min = math.floor(max(0.0, total_s - elapsed_s) / 60.0)

    should_hide = age >= 1.0 and not show_expired
    return IncidentAging(
        agePercentage=age,
        isVisible=not should_hide,
        timeRemaining=remaining_min,
        shouldAutoHide=should_hide,
    )


def get_aging_summary(aging: IncidentAging) -> str:
    if not aging.isVisible:
        return "Hidden (expired)"
    if aging.timeRemaining > 60:
        if math.isinf(aging.timeRemaining):
            return "No expiry"
        return f"{int(aging.timeRemaining // 60)}h remaining"
    if aging.timeRemaining > 0:
        return f"{int(aging.timeRemaining)}m remaining"
    return "Expiring soon"


def should_refresh_incident(incident: Any, now: Optional[datetime] = None) -> bool:
    hours = hours_since(_get(incident, "lastUpdated"), now)
    if hours is None:
        return True
    if _get(incident, "status") == "active":
        return hours > 0.5
    return hours > 2


# ──────────────────────────────────────────────────────────────
# Colour helpers
# ──────────────────────────────────────────────────────────────

def _round_half_up(v: float) -> int:
    return int(math.floor(v + 0.5))


def hex_to_rgb(hex_color: str) -> Optional[Dict[str, int]]:
    m = _HEX_RE.match(str(hex_color or ""))
    if not m:
        return None
    return {"r": int(m.group(1), 16), "g": int(m.group(2), 16), "b": int(m.group(3), 16)}


def rgb_to_hex(r: float, g: float, b: float) -> str:
    return "#" + "".join(f"{_round_half_up(v):02x}" for v in (r, g, b))


def interpolate_colors(color1: str, color2: str, percentage: float) -> str:
    rgb1 = hex_to_rgb(color1)
    rgb2 = hex_to_rgb(color2)
    if not rgb1 or not rgb2:
        return color1

    t = max(0.0, min(1.0, float(percentage)))
    return rgb_to_hex(
        rgb1["r"] + (rgb2["r"] - rgb1["r"]) * t,
        rgb1["g"] + (rgb2["g"] - rgb1["g"]) * t,
        rgb1["b"] + (rgb2["b"] - rgb1["b"]) * t,
    )


def get_aged_color(original_color: str, age_percentage: float) -> str:
    # Slow start, faster fade toward the end
    return interpolate_colors(original_color, AGED_GREY, max(0.0, age_percentage) ** 1.5)
