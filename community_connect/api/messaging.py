from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from community_connect.api.deps import current_user, get_user_store
from community_connect.core.contracts import ConversationCreateRequest, MessageCreateRequest
from community_connect.services.messaging import ConversationStore
from community_connect.services.notifications import NotificationService
from community_connect.services.users import UserStore, poster_name

router = APIRouter(prefix="/api")

_PREVIEW_CHARS = 100


def get_conversations() -> ConversationStore:
    raise RuntimeError("ConversationStore must be provided by app dependency override")


def get_notification_service() -> NotificationService:
    raise RuntimeError("NotificationService must be provided by app dependency override")


@router.get("/conversations")
def list_conversations(
    user: Dict[str, Any] = Depends(current_user),
    conversations: ConversationStore = Depends(get_conversations),
    users: UserStore = Depends(get_user_store),
):
    convs = conversations.list_conversations(user["id"])
    others = {u["id"]: u for u in users.get_many(c["otherUserId"] for c in convs)}
    for conv in convs:
        other = others.get(conv["otherUserId"])
        conv["otherUser"] = {"id": conv["otherUserId"], "displayName": poster_name(other),
                             "avatarUrl": (other or {}).get("avatarUrl")}
    return convs


@router.post("/conversations", status_code=201)
def create_conversation(
    req: ConversationCreateRequest,
    user: Dict[str, Any] = Depends(current_user),
    conversations: ConversationStore = Depends(get_conversations),
    users: UserStore = Depends(get_user_store),
):
    users.require(req.otherUserId)
    return conversations.get_or_create_conversation(user["id"], req.otherUserId)


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: str,
    user: Dict[str, Any] = Depends(current_user),
    conversations: ConversationStore = Depends(get_conversations),
):
    return conversations.list_messages(user["id"], conversation_id)


@router.post("/conversations/{conversation_id}/messages", status_code=201)
def send_message(
    conversation_id: str,
    req: MessageCreateRequest,
    user: Dict[str, Any] = Depends(current_user),
    conversations: ConversationStore = Depends(get_conversations),
    notifier: NotificationService = Depends(get_notification_service),
):
    message, recipient_id = conversations.send_message(user["id"], conversation_id, req.content)

    preview = message["content"]
    if len(preview) > _PREVIEW_CHARS:
        preview = preview[:_PREVIEW_CHARS] + "..."
    notifier.notify(
        recipient_id,
        type="new_message",
        title="New Message",
        message=f"{poster_name(user)}: {preview}",
        entity_id=conversation_id,
        entity_type="conversation",
        from_user_id=user["id"],
        url=f"/messages/{conversation_id}",
    )
    return message


@router.patch("/conversations/{conversation_id}/read")
def mark_conversation_read(
    conversation_id: str,
    user: Dict[str, Any] = Depends(current_user),
    conversations: ConversationStore = Depends(get_conversations),
):
    return {"success": True, "updated": conversations.mark_read(user["id"], conversation_id)}


@router.get("/messages/unread-count")
def unread_messages(
    user: Dict[str, Any] = Depends(current_user),
    conversations: ConversationStore = Depends(get_conversations),
):
    return {"count": conversations.unread_count(user["id"])}
