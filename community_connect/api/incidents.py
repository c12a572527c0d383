from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from community_connect.api.deps import current_user, maybe_user
from community_connect.core.contracts import (
    CommentCreateRequest,
    CommentUpdateRequest,
    FollowUpCreateRequest,
    IncidentReportRequest,
    IncidentStatusRequest,
    UnifiedIncident,
)
from community_connect.services.incidents import IncidentService

router = APIRouter(prefix="/api")


def get_incident_service() -> IncidentService:
    raise RuntimeError("IncidentService must be provided by app dependency override")


# ──────────────────────────────────────────────────────────────
# Reports
# ──────────────────────────────────────────────────────────────

@router.post("/incidents/report", response_model=UnifiedIncident, status_code=201)
async def report_incident(
    req: IncidentReportRequest,
    svc: IncidentService = Depends(get_incident_service),
    user: Dict[str, Any] = Depends(current_user),
) -> UnifiedIncident:
    return await svc.report_incident(user, req)


@router.patch("/incidents/{incident_id}/status", response_model=UnifiedIncident)
def update_incident_status(
    incident_id: str,
    req: IncidentStatusRequest,
    svc: IncidentService = Depends(get_incident_service),
    user: Dict[str, Any] = Depends(current_user),
) -> UnifiedIncident:
    return svc.update_status(user["id"], incident_id, req.status)


# ──────────────────────────────────────────────────────────────
# Comments
# ──────────────────────────────────────────────────────────────

@router.get("/incidents/{incident_id}/comments")
def list_comments(incident_id: str, svc: IncidentService = Depends(get_incident_service)):
    return svc.list_comments(incident_id)


@router.post("/incidents/{incident_id}/comments", status_code=201)
def create_comment(
    incident_id: str,
    req: CommentCreateRequest,
    svc: IncidentService = Depends(get_incident_service),
    user: Dict[str, Any] = Depends(current_user),
):
    return svc.create_comment(user, incident_id, req.content, req.parentCommentId)


@router.patch("/comments/{comment_id}")
def update_comment(
    comment_id: str,
    req: CommentUpdateRequest,
    svc: IncidentService = Depends(get_incident_service),
    user: Dict[str, Any] = Depends(current_user),
):
    return svc.update_comment(user["id"], comment_id, req.content)


@router.delete("/comments/{comment_id}")
def delete_comment(
    comment_id: str,
    svc: IncidentService = Depends(get_incident_service),
    user: Dict[str, Any] = Depends(current_user),
):
    svc.delete_comment(user["id"], comment_id)
    return {"success": True}


# ──────────────────────────────────────────────────────────────
# Likes & follow-ups
# ──────────────────────────────────────────────────────────────

@router.post("/incidents/{incident_id}/likes/toggle")
def toggle_like(
    incident_id: str,
    svc: IncidentService = Depends(get_incident_service),
    user: Dict[str, Any] = Depends(current_user),
):
    return svc.toggle_like(user["id"], incident_id)


@router.get("/incidents/{incident_id}/likes")
def get_likes(
    incident_id: str,
    svc: IncidentService = Depends(get_incident_service),
    user: Optional[Dict[str, Any]] = Depends(maybe_user),
):
    return svc.likes(incident_id, user["id"] if user else None)


@router.get("/incidents/{incident_id}/follow-ups")
def list_follow_ups(incident_id: str, svc: IncidentService = Depends(get_incident_service)):
    return svc.list_follow_ups(incident_id)


@router.post("/incidents/{incident_id}/follow-ups", status_code=201)
def create_follow_up(
    incident_id: str,
    req: FollowUpCreateRequest,
    svc: IncidentService = Depends(get_incident_service),
    user: Dict[str, Any] = Depends(current_user),
):
    return svc.create_follow_up(user["id"], incident_id, req.status, req.description, req.photoUrl)
