from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends

from community_connect.core.auth import optional_user, require_admin, require_authenticated_user
from community_connect.core.errors import unauthorized
from community_connect.services.users import UserStore


def get_user_store() -> UserStore:
    raise RuntimeError("UserStore must be provided by app dependency override")


def current_user(
    user_id: str = Depends(require_authenticated_user),
    users: UserStore = Depends(get_user_store),
) -> Dict[str, Any]:
    user = users.get(user_id)
    if user is None:
        unauthorized("unknown_user", "Account no longer exists")
    return user


def maybe_user(
    user_id: Optional[str] = Depends(optional_user),
    users: UserStore = Depends(get_user_store),
) -> Optional[Dict[str, Any]]:
    return users.get(user_id) if user_id else None


def admin_user(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
    return require_admin(user)
