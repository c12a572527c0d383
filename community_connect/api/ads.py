from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from community_connect.api.deps import admin_user, current_user, maybe_user
from community_connect.core.contracts import (
    AdClickRequest,
    AdCreateRequest,
    AdRejectRequest,
    AdUpdateRequest,
    AdViewRequest,
)
from community_connect.core.settings import settings
from community_connect.services.ads import AdStore
from community_connect.services.notifications import NotificationService

router = APIRouter(prefix="/api")


def get_ads() -> AdStore:
    raise RuntimeError("AdStore must be provided by app dependency override")


def get_notification_service() -> NotificationService:
    raise RuntimeError("NotificationService must be provided by app dependency override")


# ──────────────────────────────────────────────────────────────
# Public placements
# ──────────────────────────────────────────────────────────────

@router.get("/ads")
def ads_for_suburb(
    suburb: Optional[str] = None,
    limit: int = Query(default=3, ge=1, le=10),
    user: Optional[Dict[str, Any]] = Depends(maybe_user),
    ads: AdStore = Depends(get_ads),
):
    target = suburb or (user or {}).get("homeSuburb") or settings.ad_default_suburb
    return ads.active_ads_for_suburb(target, limit)


@router.post("/ads/track-view")
def track_view(
    req: AdViewRequest,
    user: Optional[Dict[str, Any]] = Depends(maybe_user),
    ads: AdStore = Depends(get_ads),
):
    return ads.track_view(req.adId, user["id"] if user else None, req.duration, req.userSuburb, req.timestamp)


@router.post("/ads/track-click")
def track_click(
    req: AdClickRequest,
    user: Optional[Dict[str, Any]] = Depends(maybe_user),
    ads: AdStore = Depends(get_ads),
):
    return ads.track_click(req.adId, user["id"] if user else None, req.timestamp)


# ──────────────────────────────────────────────────────────────
# Business owners
# ──────────────────────────────────────────────────────────────

@router.post("/ads/create", status_code=201)
def create_ad(
    req: AdCreateRequest,
    user: Dict[str, Any] = Depends(current_user),
    ads: AdStore = Depends(get_ads),
):
    return ads.create_campaign(user, req)


@router.get("/ads/my-campaigns")
def my_campaigns(user: Dict[str, Any] = Depends(current_user), ads: AdStore = Depends(get_ads)):
    return ads.my_campaigns(user)


@router.get("/ads/analytics")
def ad_analytics(user: Dict[str, Any] = Depends(current_user), ads: AdStore = Depends(get_ads)):
    return ads.analytics(user)


@router.get("/ads/{ad_id}")
def get_ad(ad_id: str, user: Dict[str, Any] = Depends(current_user), ads: AdStore = Depends(get_ads)):
    return ads.get_for_owner(user, ad_id)


@router.put("/ads/{ad_id}")
def update_ad(
    ad_id: str,
    req: AdUpdateRequest,
    user: Dict[str, Any] = Depends(current_user),
    ads: AdStore = Depends(get_ads),
):
    return ads.update(user, ad_id, req.model_dump(exclude_unset=True))


# ──────────────────────────────────────────────────────────────
# Admin review
# ──────────────────────────────────────────────────────────────

@router.get("/admin/ads/pending")
def pending_ads(admin: Dict[str, Any] = Depends(admin_user), ads: AdStore = Depends(get_ads)):
    return ads.pending()


@router.put("/admin/ads/{ad_id}/approve")
def approve_ad(
    ad_id: str,
    admin: Dict[str, Any] = Depends(admin_user),
    ads: AdStore = Depends(get_ads),
    notifier: NotificationService = Depends(get_notification_service),
):
    ad = ads.approve(ad_id)
    if ad["userId"]:
        notifier.notify(
            ad["userId"],
            type="ad_approved",
            title="Ad Approved",
            message=f"Your ad \"{ad['title']}\" is now live",
            entity_id=ad_id,
            entity_type="ad",
            from_user_id=admin["id"],
        )
    return ad


@router.put("/admin/ads/{ad_id}/reject")
def reject_ad(
    ad_id: str,
    req: AdRejectRequest,
    admin: Dict[str, Any] = Depends(admin_user),
    ads: AdStore = Depends(get_ads),
    notifier: NotificationService = Depends(get_notification_service),
):
    ad = ads.reject(ad_id, req.reason)
    if ad["userId"]:
        notifier.notify(
            ad["userId"],
            type="ad_rejected",
            title="Ad Not Approved",
            message=f"Your ad \"{ad['title']}\" was not approved: {ad['rejectionReason']}",
            entity_id=ad_id,
            entity_type="ad",
            from_user_id=admin["id"],
        )
    return ad
