from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from datetime import timedelta
from typing import Any, Dict, Optional

import bcrypt
from fastapi import Header

from community_connect.core.errors import forbidden, unauthorized
from community_connect.core.settings import settings
from community_connect.core.time import utc_now


# ──────────────────────────────────────────────────────────────
# Passwords
# ──────────────────────────────────────────────────────────────

def hash_password(plain: str) -> str:
    # returns a utf-8 str like "$2b$12$..."
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(plain.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# ──────────────────────────────────────────────────────────────
# Bearer tokens: b64(user_id|expiry).b64(hmac_sha256)
# ──────────────────────────────────────────────────────────────

def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64urldecode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def _sign(payload: bytes) -> bytes:
    return hmac.new(settings.auth_secret.encode("utf-8"), payload, hashlib.sha256).digest()


def create_access_token(user_id: str, *, ttl_hours: Optional[int] = None) -> tuple[str, str]:
    hours = settings.auth_token_ttl_hours if ttl_hours is None else ttl_hours
    expiry = utc_now() + timedelta(hours=hours)
    payload = f"{user_id}|{int(expiry.timestamp())}".encode("utf-8")
    token = f"{_b64url(payload)}.{_b64url(_sign(payload))}"
    return token, expiry.isoformat()


def verify_access_token(token: str) -> Optional[str]:
    try:
        payload_part, sig_part = token.split(".", 1)
        payload = _b64urldecode(payload_part)
        sent_sig = _b64urldecode(sig_part)
    except (ValueError, binascii.Error):
        return None
    if not hmac.compare_digest(sent_sig, _sign(payload)):
        return None
    try:
        user_id, expiry_ts = payload.decode("utf-8").split("|", 1)
        if utc_now().timestamp() > int(expiry_ts):
            return None
    except (UnicodeDecodeError, ValueError):
        return None
    return user_id or None


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def resolve_request_user(authorization: Optional[str]) -> Optional[str]:
    token = parse_bearer_token(authorization)
    if not token:
        return None
    return verify_access_token(token)


# ──────────────────────────────────────────────────────────────
# FastAPI dependencies
# ──────────────────────────────────────────────────────────────

def require_authenticated_user(authorization: Optional[str] = Header(default=None)) -> str:
    user_id = resolve_request_user(authorization)
    if not user_id:
        unauthorized("unauthorized", "Invalid or missing bearer token")
    return user_id


def optional_user(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    return resolve_request_user(authorization)


def require_admin(user: Dict[str, Any]) -> Dict[str, Any]:
    if (user or {}).get("role") != "admin":
        forbidden("admin_required", "Admin access required")
    return user
