from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Optional

import orjson


# ──────────────────────────────────────────────────────────────
# Connections
# ──────────────────────────────────────────────────────────────

def connect_sqlite(path: str) -> sqlite3.Connection:
    """
    Open a RW SQLite connection with sane pragmas.

    IMPORTANT:
    - SQLite will NOT create parent directories.
    - WAL mode requires the directory to be writable (creates -wal/-shm).
    """
    if path != ":memory:":
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


# ──────────────────────────────────────────────────────────────
# Schema
# ──────────────────────────────────────────────────────────────

def ensure_schema(conn: sqlite3.Connection) -> None:
    # Imported here: the stores live in services and import core modules.
    from community_connect.services.ads import AdStore
    from community_connect.services.incident_store import IncidentStore
    from community_connect.services.incidents import SocialStore
    from community_connect.services.messaging import ConversationStore
    from community_connect.services.notifications import NotificationStore, PushSubscriptionStore
    from community_connect.services.stories import StoryStore
    from community_connect.services.users import UserStore

    UserStore(conn).ensure_schema()
    IncidentStore(conn).ensure_schema()
    SocialStore(conn).ensure_schema()
    ConversationStore(conn).ensure_schema()
    NotificationStore(conn).ensure_schema()
    PushSubscriptionStore(conn).ensure_schema()
    AdStore(conn).ensure_schema()
    StoryStore(conn).ensure_schema()

    conn.commit()


# ──────────────────────────────────────────────────────────────
# JSON column helpers
# ──────────────────────────────────────────────────────────────

def dumps_json(obj: Any) -> bytes:
    return orjson.dumps(obj)


def loads_json(blob: Optional[bytes], default: Any = None) -> Any:
    if blob is None:
        return default
    try:
        return orjson.loads(blob)
    except orjson.JSONDecodeError:
        return default
