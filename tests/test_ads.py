import pytest

from community_connect.core.contracts import AdCreateRequest
from community_connect.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from community_connect.services.ads import AdStore, normalize_website
from community_connect.services.users import UserStore


def _business(users, name="cafe"):
    user = users.create_user(name, "password123")
    return users.upgrade_to_business(user["id"], {"businessName": "Beach Cafe"})


def _request(**overrides):
    fields = {
        "businessName": "Beach Cafe",
        "title": "Half price coffee",
        "content": "All week at the esplanade",
        "suburb": "Mooloolaba",
        "dailyBudget": 5.0,
        "websiteUrl": "beachcafe.example",
    }
    fields.update(overrides)
    return AdCreateRequest(**fields)


def test_only_business_accounts_create_ads(conn):
    users = UserStore(conn)
    ads = AdStore(conn)
    regular = users.create_user("regular", "password123")
    with pytest.raises(PermissionDeniedError) as exc:
        ads.create_campaign(regular, _request())
    assert exc.value.code == "business_required"


def test_campaign_defaults(conn):
    users = UserStore(conn)
    ads = AdStore(conn)
    owner = _business(users)

    ad = ads.create_campaign(owner, _request())
    assert ad["status"] == "pending"
    assert ad["userId"] == owner["id"]
    assert ad["totalBudget"] == 150.0
    assert ad["targetSuburbs"] == ["Mooloolaba"]
    assert ad["websiteUrl"] == "https://beachcafe.example"
    assert ad["cpmRate"] == "3.50"

    assert normalize_website("http://x.example") == "http://x.example"
    assert normalize_website("  ") is None


def test_review_and_placement(conn):
    users = UserStore(conn)
    ads = AdStore(conn)
    owner = _business(users)
    ad = ads.create_campaign(owner, _request(targetSuburbs=["Mooloolaba", "Buderim"]))

    assert ads.active_ads_for_suburb("Mooloolaba") == []
    assert [a["id"] for a in ads.pending()] == [ad["id"]]

    ads.approve(ad["id"])
    assert [a["id"] for a in ads.active_ads_for_suburb("buderim")] == [ad["id"]]
    assert ads.active_ads_for_suburb("Southport") == []

    # edits go back to review
    edited = ads.update(owner, ad["id"], {"title": "Free muffin"})
    assert edited["status"] == "pending"

    rejected = ads.reject(ad["id"], "")
    assert rejected["status"] == "rejected"
    assert rejected["rejectionReason"] == "Does not meet guidelines"


def test_owner_checks(conn):
    users = UserStore(conn)
    ads = AdStore(conn)
    owner = _business(users, "owner")
    rival = _business(users, "rival")
    ad = ads.create_campaign(owner, _request())

    with pytest.raises(PermissionDeniedError):
        ads.get_for_owner(rival, ad["id"])
    with pytest.raises(PermissionDeniedError):
        ads.update(rival, ad["id"], {"title": "mine now"})
    with pytest.raises(ValidationError):
        ads.update(owner, ad["id"], {"dailyBudget": 0})
    with pytest.raises(NotFoundError):
        ads.require("missing")


def test_daily_view_limit_and_analytics(conn):
    users = UserStore(conn)
    ads = AdStore(conn)
    owner = _business(users)
    viewer = users.create_user("viewer", "password123")
    ad = ads.approve(ads.create_campaign(owner, _request())["id"])

    stamp = "2025-03-01T09:00:00+10:00"
    results = [ads.track_view(ad["id"], viewer["id"], 1500, "Mooloolaba", stamp)["recorded"] for _ in range(4)]
    assert results == [True, True, True, False]

    # a new day resets the limit
    assert ads.track_view(ad["id"], viewer["id"], 1500, "Mooloolaba", "2025-03-02T09:00:00+10:00")["recorded"]
    ads.track_click(ad["id"], viewer["id"])

    stats = ads.analytics(owner)
    assert stats["totalCampaigns"] == 1
    assert stats["activeCampaigns"] == 1
    assert stats["totalViews"] == 4
    assert stats["totalClicks"] == 1
    assert stats["ctr"] == 25.0
    assert stats["estimatedSpend"] == 0.01
