from __future__ import annotations

import hashlib
import uuid
from typing import List


def stable_id(parts: List[str]) -> str:
    h = hashlib.sha256()
    for p in parts:
        h.update((p or "").encode("utf-8"))
        h.update(b"\x1f")
    return h.hexdigest()[:24]


def new_id() -> str:
    return uuid.uuid4().hex


def unified_incident_id(source: str, source_id: str) -> str:
    """
    Deterministic id for a unified incident.
    Re-ingesting the same upstream record must land on the same row.
    """
    sid = str(source_id or "").strip()
    if not sid:
        raise ValueError("source_id is required for a unified incident id")
    return f"{source}:{sid}"
