from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from community_connect.api.deps import current_user, get_user_store, maybe_user
from community_connect.core.auth import create_access_token
from community_connect.core.contracts import (
    AuthResponse,
    BusinessUpgradeRequest,
    LoginRequest,
    NotificationPreferencesRequest,
    ProfileUpdateRequest,
    RegisterRequest,
    SuburbUpdateRequest,
)
from community_connect.core.errors import bad_request, unauthorized
from community_connect.core.settings import settings
from community_connect.services.notifications import NotificationService
from community_connect.services.users import UserStore, parse_radius_km, public_profile, to_safe_user

router = APIRouter(prefix="/api")

MAX_BATCH_IDS = 100


def get_notification_service() -> NotificationService:
    raise RuntimeError("NotificationService must be provided by app dependency override")


def _admin_usernames() -> List[str]:
    return [u.strip().lower() for u in settings.admin_usernames.split(",") if u.strip()]


def _auth_response(user: Dict[str, Any]) -> AuthResponse:
    token, expires_at = create_access_token(user["id"])
    return AuthResponse(token=token, expiresAt=expires_at, user=user)


# ──────────────────────────────────────────────────────────────
# /api/auth
# ──────────────────────────────────────────────────────────────

@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(req: RegisterRequest, users: UserStore = Depends(get_user_store)) -> AuthResponse:
    role = "admin" if req.username.strip().lower() in _admin_usernames() else "user"
    user = users.create_user(
        req.username,
        req.password,
        email=req.email,
        first_name=req.firstName,
        last_name=req.lastName,
        home_suburb=req.homeSuburb,
        role=role,
    )
    return _auth_response(user)


@router.post("/auth/login", response_model=AuthResponse)
def login(req: LoginRequest, users: UserStore = Depends(get_user_store)) -> AuthResponse:
    user = users.authenticate(req.username, req.password)
    if user is None:
        unauthorized("invalid_credentials", "Invalid username or password")
    return _auth_response(user)


@router.get("/auth/user")
def auth_user(user: Dict[str, Any] = Depends(current_user)):
    return user


# ──────────────────────────────────────────────────────────────
# /api/user (self)
# ──────────────────────────────────────────────────────────────

@router.post("/user/accept-terms")
def accept_terms(user: Dict[str, Any] = Depends(current_user), users: UserStore = Depends(get_user_store)):
    return users.accept_terms(user["id"])


@router.patch("/user/suburb")
def update_suburb(
    req: SuburbUpdateRequest,
    user: Dict[str, Any] = Depends(current_user),
    users: UserStore = Depends(get_user_store),
):
    return users.update_suburb(user["id"], req.homeSuburb)


@router.put("/user/profile")
def update_profile(
    req: ProfileUpdateRequest,
    user: Dict[str, Any] = Depends(current_user),
    users: UserStore = Depends(get_user_store),
):
    return users.update_profile(user["id"], req.model_dump(exclude_unset=True))


@router.put("/user/notification-preferences")
def update_notification_preferences(
    req: NotificationPreferencesRequest,
    user: Dict[str, Any] = Depends(current_user),
    users: UserStore = Depends(get_user_store),
    notifier: NotificationService = Depends(get_notification_service),
):
    updated = users.update_notification_preferences(
        user["id"],
        enabled=req.notificationsEnabled,
        categories=req.notificationCategories,
        radius=req.notificationRadius,
        lat=req.lat,
        lng=req.lng,
    )

    backfilled = 0
    lat, lng = updated.get("preferredLocationLat"), updated.get("preferredLocationLng")
    if updated["notificationsEnabled"] and lat is not None and lng is not None:
        radius_km = parse_radius_km(updated.get("notificationRadius"), settings.notification_default_radius)
        backfilled = notifier.backfill_for_user(user["id"], lat, lng, radius_km)

    return {"user": updated, "backfilled": backfilled}


@router.post("/users/upgrade-to-business")
def upgrade_to_business(
    req: BusinessUpgradeRequest,
    user: Dict[str, Any] = Depends(current_user),
    users: UserStore = Depends(get_user_store),
):
    return users.upgrade_to_business(user["id"], req.model_dump(exclude_none=True))


# ──────────────────────────────────────────────────────────────
# /api/users (others)
# ──────────────────────────────────────────────────────────────

def _parse_ids(ids: str) -> List[str]:
    parsed = list(dict.fromkeys(i.strip() for i in ids.split(",") if i.strip()))
    if not parsed:
        bad_request("ids_required", "Provide at least one user id")
    if len(parsed) > MAX_BATCH_IDS:
        bad_request("too_many_ids", f"At most {MAX_BATCH_IDS} ids per request")
    return parsed


@router.get("/batch-users")
@router.get("/users/batch")
def batch_users(ids: str = Query(default=""), users: UserStore = Depends(get_user_store)):
    return [to_safe_user(u) for u in users.get_many(_parse_ids(ids))]


@router.get("/users/suburb/{suburb}")
def users_in_suburb(suburb: str, users: UserStore = Depends(get_user_store)):
    return [to_safe_user(u) for u in users.list_by_suburb(suburb)]


@router.get("/users/{user_id}")
def get_user_profile(
    user_id: str,
    viewer: Optional[Dict[str, Any]] = Depends(maybe_user),
    users: UserStore = Depends(get_user_store),
):
    return public_profile(users.require(user_id), viewer["id"] if viewer else None)
