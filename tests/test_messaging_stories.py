from datetime import datetime, timedelta, timezone

import pytest

from community_connect.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from community_connect.services.messaging import ConversationStore
from community_connect.services.stories import StoryStore
from community_connect.services.users import UserStore


def _users(conn, *names):
    store = UserStore(conn)
    return store, [store.create_user(n, "password123", first_name=n.title()) for n in names]


def test_one_conversation_per_pair(conn):
    _, (alice, bob) = _users(conn, "alice", "bob")
    convos = ConversationStore(conn)

    first = convos.get_or_create_conversation(alice["id"], bob["id"])
    second = convos.get_or_create_conversation(bob["id"], alice["id"])
    assert first["id"] == second["id"]
    assert sorted(first["participants"]) == sorted([alice["id"], bob["id"]])

    with pytest.raises(ValidationError):
        convos.get_or_create_conversation(alice["id"], alice["id"])


def test_members_only(conn):
    _, (alice, bob, eve) = _users(conn, "alice", "bob", "eve")
    convos = ConversationStore(conn)
    conv = convos.get_or_create_conversation(alice["id"], bob["id"])

    with pytest.raises(PermissionDeniedError):
        convos.list_messages(eve["id"], conv["id"])
    with pytest.raises(PermissionDeniedError):
        convos.send_message(eve["id"], conv["id"], "hi")
    with pytest.raises(NotFoundError):
        convos.list_messages(alice["id"], "missing")


def test_messages_and_unread(conn):
    _, (alice, bob) = _users(conn, "alice", "bob")
    convos = ConversationStore(conn)
    conv = convos.get_or_create_conversation(alice["id"], bob["id"])

    msg, recipient = convos.send_message(alice["id"], conv["id"], "  hello  ")
    assert msg["content"] == "hello"
    assert recipient == bob["id"]
    convos.send_message(alice["id"], conv["id"], "are you there?")

    with pytest.raises(ValidationError):
        convos.send_message(alice["id"], conv["id"], "   ")
    with pytest.raises(ValidationError):
        convos.send_message(alice["id"], conv["id"], "x" * 1001)

    assert convos.unread_count(bob["id"]) == 2
    assert convos.unread_count(alice["id"]) == 0

    (listed,) = convos.list_conversations(bob["id"])
    assert listed["otherUserId"] == alice["id"]
    assert listed["unreadCount"] == 2
    assert listed["lastMessage"]["content"] == "are you there?"

    assert [m["content"] for m in convos.list_messages(bob["id"], conv["id"])] == ["hello", "are you there?"]
    assert convos.mark_read(bob["id"], conv["id"]) == 2
    assert convos.unread_count(bob["id"]) == 0


class Clock:
    def __init__(self):
        self.now = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def test_stories_expire(conn):
    users, (alice, bob) = _users(conn, "alice", "bob")
    clock = Clock()
    stories = StoryStore(conn, clock=clock)

    story = stories.create_story(alice["id"], content="Sunrise at the beach", location="Mooloolaba")
    assert story["expiresAt"] == (clock.now + timedelta(hours=24)).isoformat()

    stories.mark_viewed(bob["id"], story["id"])
    stories.mark_viewed(bob["id"], story["id"])
    (live,) = stories.active_stories(bob["id"], users)
    assert live["userName"] == "Alice"
    assert live["viewCount"] == 1
    assert live["hasViewed"] is True
    assert stories.active_stories(None, users)[0]["hasViewed"] is False

    clock.now += timedelta(hours=25)
    assert stories.active_stories(bob["id"], users) == []
    with pytest.raises(NotFoundError):
        stories.mark_viewed(bob["id"], story["id"])


def test_story_needs_content_or_photo(conn):
    _, (alice,) = _users(conn, "alice")
    stories = StoryStore(conn)
    with pytest.raises(ValidationError):
        stories.create_story(alice["id"], content="   ")
    assert stories.create_story(alice["id"], photo_url="https://img.example/p.jpg")["photoUrl"]
