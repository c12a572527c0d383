from __future__ import annotations

from fastapi import APIRouter

from community_connect.core.time import utc_now_iso

router = APIRouter()


@router.get("/health")
def health():
    return {"ok": True, "time": utc_now_iso()}
