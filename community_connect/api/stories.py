from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from community_connect.api.deps import current_user, get_user_store, maybe_user
from community_connect.core.contracts import StoryCreateRequest
from community_connect.services.stories import StoryStore
from community_connect.services.users import UserStore

router = APIRouter(prefix="/api/stories")


def get_stories() -> StoryStore:
    raise RuntimeError("StoryStore must be provided by app dependency override")


@router.get("")
def active_stories(
    viewer: Optional[Dict[str, Any]] = Depends(maybe_user),
    stories: StoryStore = Depends(get_stories),
    users: UserStore = Depends(get_user_store),
):
    return stories.active_stories(viewer["id"] if viewer else None, users)


@router.post("", status_code=201)
def create_story(
    req: StoryCreateRequest,
    user: Dict[str, Any] = Depends(current_user),
    stories: StoryStore = Depends(get_stories),
):
    return stories.create_story(user["id"], content=req.content, photo_url=req.photoUrl, location=req.location)


@router.post("/{story_id}/view")
def view_story(
    story_id: str,
    user: Dict[str, Any] = Depends(current_user),
    stories: StoryStore = Depends(get_stories),
):
    stories.mark_viewed(user["id"], story_id)
    return {"success": True}
