import math
from datetime import datetime, timedelta, timezone

from community_connect.core.time import hours_since, parse_iso
from community_connect.services.aging import (
    AGED_GREY,
    calculate_incident_aging,
    choose_tier,
    get_aged_color,
    get_aging_summary,
    hex_to_rgb,
    interpolate_colors,
    should_refresh_incident,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _incident(hours_ago, **extra):
    inc = {
        "source": "user",
        "status": "active",
        "severity": "medium",
        "incidentTime": (NOW - timedelta(hours=hours_ago)).isoformat(),
        "lastUpdated": (NOW - timedelta(hours=hours_ago)).isoformat(),
        "properties": {},
    }
    inc.update(extra)
    return inc


def test_tier_selection():
    assert choose_tier(_incident(0)) == "standard"
    assert choose_tier(_incident(0, source="emergency")) == "major"
    assert choose_tier(_incident(0, source="emergency", status="resolved")) == "standard"
    assert choose_tier(_incident(0, properties={"VehiclesOnScene": "3"})) == "major"
    assert choose_tier(_incident(0, properties={"impact_type": "major"})) == "major"
    assert choose_tier(_incident(0, severity="critical")) == "major"


def test_standard_incident_halfway():
    aging = calculate_incident_aging(_incident(6), now=NOW)
    assert abs(aging.agePercentage - 0.5) < 1e-9
    assert aging.isVisible
    assert aging.timeRemaining == 360
    assert get_aging_summary(aging) == "6h remaining"


def test_major_incident_lives_longer():
    aging = calculate_incident_aging(_incident(13, severity="high"), now=NOW)
    assert aging.isVisible
    assert aging.timeRemaining == 11 * 60


def test_expired_incident_hidden_unless_requested():
    hidden = calculate_incident_aging(_incident(13), now=NOW)
    assert hidden.agePercentage == 1.0
    assert not hidden.isVisible
    assert hidden.shouldAutoHide
    assert get_aging_summary(hidden) == "Hidden (expired)"

    shown = calculate_incident_aging(_incident(13), show_expired=True, now=NOW)
    assert shown.isVisible
    assert not shown.shouldAutoHide
    assert get_aging_summary(shown) == "Expiring soon"


def test_extended_sensitivity_multiplies_ttl():
    aging = calculate_incident_aging(_incident(13), aging_sensitivity="extended", now=NOW)
    assert aging.isVisible
    assert aging.timeRemaining == 5 * 60


def test_disabled_sensitivity_never_expires():
    aging = calculate_incident_aging(_incident(500), aging_sensitivity="disabled", now=NOW)
    assert aging.agePercentage == 0.0
    assert aging.isVisible
    assert math.isinf(aging.timeRemaining)
    assert get_aging_summary(aging) == "No expiry"


def test_minutes_summary_and_fallback_to_last_updated():
    inc = _incident(0)
    inc["incidentTime"] = None
    inc["lastUpdated"] = (NOW - timedelta(hours=11, minutes=30)).isoformat()
    aging = calculate_incident_aging(inc, now=NOW)
    assert aging.timeRemaining == 30
    assert get_aging_summary(aging) == "30m remaining"


def test_unparseable_time_ages_from_zero():
    inc = _incident(0, incidentTime="not a date", lastUpdated="also not a date")
    aging = calculate_incident_aging(inc, now=NOW)
    assert aging.agePercentage == 0.0
    assert aging.timeRemaining == 12 * 60


def test_should_refresh():
    assert should_refresh_incident(_incident(1), now=NOW)
    assert not should_refresh_incident(_incident(0.25), now=NOW)
    assert not should_refresh_incident(_incident(1, status="resolved"), now=NOW)
    assert should_refresh_incident(_incident(3, status="resolved"), now=NOW)
    assert should_refresh_incident({"status": "active"}, now=NOW)


def test_color_helpers():
    assert hex_to_rgb("#ff8000") == {"r": 255, "g": 128, "b": 0}
    assert hex_to_rgb("nope") is None
    assert interpolate_colors("#000000", "#ffffff", 0.5) == "#808080"
    assert interpolate_colors("#000000", "#ffffff", 2) == "#ffffff"
    assert interpolate_colors("bad", "#ffffff", 0.5) == "bad"
    assert get_aged_color("#dc2626", 0.0) == "#dc2626"
    assert get_aged_color("#dc2626", 1.0) == AGED_GREY


def test_time_parsing():
    assert parse_iso("2025-03-01T12:00:00Z") == NOW
    assert parse_iso("2025-03-01T12:00:00") == NOW
    assert parse_iso(1740830400000) == NOW
    assert parse_iso("soon") is None
    assert parse_iso("") is None
    assert hours_since("2025-03-01T09:30:00+00:00", NOW) == 2.5
    assert hours_since(None, NOW) is None
