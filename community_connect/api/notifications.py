from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from community_connect.api.deps import current_user
from community_connect.core.contracts import PushSubscribeRequest, PushUnsubscribeRequest
from community_connect.core.errors import service_unavailable
from community_connect.services.notifications import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_notification_service() -> NotificationService:
    raise RuntimeError("NotificationService must be provided by app dependency override")


# ──────────────────────────────────────────────────────────────
# In-app notifications
# ──────────────────────────────────────────────────────────────

@router.get("/notifications")
def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    user: Dict[str, Any] = Depends(current_user),
    notifier: NotificationService = Depends(get_notification_service),
):
    return notifier.notifications.list(user["id"], limit)


@router.get("/notifications/unread-count")
def unread_notifications(
    user: Dict[str, Any] = Depends(current_user),
    notifier: NotificationService = Depends(get_notification_service),
):
    return {"count": notifier.notifications.unread_count(user["id"])}


# declared before /{id}/read so "read-all" is not taken as an id
@router.patch("/notifications/read-all")
def mark_all_notifications_read(
    user: Dict[str, Any] = Depends(current_user),
    notifier: NotificationService = Depends(get_notification_service),
):
    return {"success": True, "updated": notifier.notifications.mark_all_read(user["id"])}


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: str,
    user: Dict[str, Any] = Depends(current_user),
    notifier: NotificationService = Depends(get_notification_service),
):
    notifier.notifications.mark_read(notification_id, user["id"])
    return {"success": True}


# ──────────────────────────────────────────────────────────────
# Push
# ──────────────────────────────────────────────────────────────

@router.post("/push/subscribe")
def push_subscribe(
    req: PushSubscribeRequest,
    user: Dict[str, Any] = Depends(current_user),
    notifier: NotificationService = Depends(get_notification_service),
):
    notifier.push_subscriptions.subscribe(user["id"], req.token, req.platform)
    logger.info("[push] subscribed user=%s platform=%s", user["id"], req.platform)
    return {"success": True}


@router.post("/push/unsubscribe")
def push_unsubscribe(
    req: PushUnsubscribeRequest,
    user: Dict[str, Any] = Depends(current_user),
    notifier: NotificationService = Depends(get_notification_service),
):
    removed = notifier.push_subscriptions.unsubscribe(user["id"], req.token)
    return {"success": True, "removed": removed}


@router.post("/push/test")
def push_test(
    user: Dict[str, Any] = Depends(current_user),
    notifier: NotificationService = Depends(get_notification_service),
):
    if not notifier.push_sender.enabled:
        service_unavailable("push_disabled", "Push notifications are not configured")
    sent = notifier.push([user["id"]], "Test Notification", "Push notifications are working", {"type": "test"})
    return {"success": True, "sent": sent}
