from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Any, Dict, Iterable, List, Optional

from community_connect.core.auth import hash_password, verify_password
from community_connect.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from community_connect.core.keying import new_id
from community_connect.core.regions import find_region_by_suburb
from community_connect.core.storage import dumps_json, loads_json
from community_connect.core.time import utc_now_iso

logger = logging.getLogger(__name__)


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
  id                 TEXT PRIMARY KEY,
  username           TEXT UNIQUE,
  password_hash      TEXT,
  email              TEXT,
  first_name         TEXT,
  last_name          TEXT,
  display_name       TEXT,
  bio                TEXT,
  phone_number       TEXT,
  avatar_url         TEXT,
  profile_visibility TEXT NOT NULL DEFAULT 'community',   -- public|community|private
  role               TEXT NOT NULL DEFAULT 'user',        -- user|admin
  account_type       TEXT NOT NULL DEFAULT 'regular',     -- regular|business
  is_official_agency INTEGER NOT NULL DEFAULT 0,

  home_suburb        TEXT,
  preferred_location TEXT,
  preferred_location_lat REAL,
  preferred_location_lng REAL,

  terms_accepted     INTEGER NOT NULL DEFAULT 0,
  terms_accepted_at  TEXT,

  notifications_enabled INTEGER NOT NULL DEFAULT 1,
  notification_categories_json BLOB,
  notification_radius TEXT,

  business_name        TEXT,
  business_category    TEXT,
  business_description TEXT,
  business_website     TEXT,
  business_phone       TEXT,
  business_address     TEXT,

  created_at         TEXT NOT NULL,
  updated_at         TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_users_home_suburb ON users(home_suburb);
"""

# API field -> column, for partial updates
_PROFILE_COLUMNS: Dict[str, str] = {
    "displayName": "display_name",
    "firstName": "first_name",
    "lastName": "last_name",
    "bio": "bio",
    "phoneNumber": "phone_number",
    "avatarUrl": "avatar_url",
    "profileVisibility": "profile_visibility",
}

_BUSINESS_COLUMNS: Dict[str, str] = {
    "businessName": "business_name",
    "businessCategory": "business_category",
    "businessDescription": "business_description",
    "businessWebsite": "business_website",
    "businessPhone": "business_phone",
    "businessAddress": "business_address",
}

# Attribution accounts for official feeds
AGENCY_ACCOUNTS: List[Dict[str, Any]] = [
    {
        "id": "agency-tmr",
        "displayName": "Transport and Main Roads",
        "firstName": "TMR",
        "lastName": "Queensland",
        "businessName": "Transport and Main Roads Queensland",
        "businessDescription": "Official Queensland Government transport and road safety authority",
    },
    {
        "id": "agency-qfes",
        "displayName": "Queensland Fire and Emergency Services",
        "firstName": "QFES",
        "lastName": "Queensland",
        "businessName": "Queensland Fire and Emergency Services",
        "businessDescription": "Official Queensland Government emergency services authority",
    },
    {
        "id": "agency-qas",
        "displayName": "Queensland Ambulance Service",
        "firstName": "QAS",
        "lastName": "Queensland",
        "businessName": "Queensland Ambulance Service",
        "businessDescription": "Official Queensland Government ambulance and emergency medical services",
    },
    {
        "id": "agency-qps",
        "displayName": "Queensland Police Service",
        "firstName": "QPS",
        "lastName": "Queensland",
        "businessName": "Queensland Police Service",
        "businessDescription": "Official Queensland Government police service",
    },
]

AGENCY_FOR_SOURCE = {"tmr": "agency-tmr", "emergency": "agency-qfes"}


def poster_name(user: Optional[Dict[str, Any]]) -> str:
    if not user:
        return "Unknown"
    full = f"{user.get('firstName') or ''} {user.get('lastName') or ''}".strip()
    return user.get("displayName") or full or "Anonymous"


def to_safe_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "displayName": poster_name(user),
        "avatarUrl": user.get("avatarUrl"),
        "accountType": user.get("accountType") or "regular",
        "isOfficialAgency": bool(user.get("isOfficialAgency")),
    }


def public_profile(user: Dict[str, Any], viewer_id: Optional[str]) -> Dict[str, Any]:
    """
    Profile as seen by `viewer_id`.
    Private profiles are hidden from everyone but their owner; phone numbers
    are only shown on public profiles.
    """
    is_self = viewer_id is not None and viewer_id == user["id"]
    visibility = user.get("profileVisibility") or "community"
    if visibility == "private" and not is_self:
        raise PermissionDeniedError("This profile is private", code="profile_private")

    out = {k: v for k, v in user.items() if k not in ("email", "notificationCategories")}
    if not is_self and visibility != "public":
        out.pop("phoneNumber", None)
    return out


def parse_radius_km(radius: Optional[str], default: str = "10km") -> float:
    raw = (radius or default).strip().lower().replace("km", "")
    try:
        return float(raw)
    except ValueError:
        return float(default.lower().replace("km", ""))


class UserStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.Lock()

    def ensure_schema(self) -> None:
        self.conn.executescript(_SCHEMA_SQL)
        self.conn.commit()

    # ──────────────────────────────────────────────────────────
    # Row mapping
    # ──────────────────────────────────────────────────────────

    def _from_row(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "username": row["username"],
            "email": row["email"],
            "firstName": row["first_name"],
            "lastName": row["last_name"],
            "displayName": row["display_name"],
            "bio": row["bio"],
            "phoneNumber": row["phone_number"],
            "avatarUrl": row["avatar_url"],
            "profileVisibility": row["profile_visibility"],
            "role": row["role"],
            "accountType": row["account_type"],
            "isOfficialAgency": bool(row["is_official_agency"]),
            "homeSuburb": row["home_suburb"],
            "preferredLocation": row["preferred_location"],
            "preferredLocationLat": row["preferred_location_lat"],
            "preferredLocationLng": row["preferred_location_lng"],
            "termsAccepted": bool(row["terms_accepted"]),
            "termsAcceptedAt": row["terms_accepted_at"],
            "notificationsEnabled": bool(row["notifications_enabled"]),
            "notificationCategories": loads_json(row["notification_categories_json"], []),
            "notificationRadius": row["notification_radius"],
            "businessName": row["business_name"],
            "businessCategory": row["business_category"],
            "businessDescription": row["business_description"],
            "businessWebsite": row["business_website"],
            "businessPhone": row["business_phone"],
            "businessAddress": row["business_address"],
            "createdAt": row["created_at"],
            "updatedAt": row["updated_at"],
        }

    def _set(self, user_id: str, columns: Dict[str, Any]) -> Dict[str, Any]:
        columns = dict(columns)
        columns["updated_at"] = utc_now_iso()
        assignments = ", ".join(f"{c}=?" for c in columns)
        with self._lock:
            cur = self.conn.execute(
                f"UPDATE users SET {assignments} WHERE id=?;",
                (*columns.values(), user_id),
            )
            self.conn.commit()
        if cur.rowcount == 0:
            raise NotFoundError("User not found", code="user_not_found")
        return self.require(user_id)

    # ──────────────────────────────────────────────────────────
    # Accounts
    # ──────────────────────────────────────────────────────────

    def create_user(
        self,
        username: str,
        password: str,
        *,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        home_suburb: Optional[str] = None,
        role: str = "user",
    ) -> Dict[str, Any]:
        username = username.strip()
        if not username:
            raise ValidationError("Username is required", code="username_required")

        now = utc_now_iso()
        user_id = new_id()
        try:
            with self._lock:
                self.conn.execute(
                    """
                    INSERT INTO users (
                      id, username, password_hash, email, first_name, last_name,
                      home_suburb, role, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        user_id, username, hash_password(password), email, first_name, last_name,
                        home_suburb, role, now, now,
                    ),
                )
                self.conn.commit()
        except sqlite3.IntegrityError as e:
            raise ConflictError("Username already taken", code="username_taken") from e

        logger.info("[users] created user id=%s", user_id)
        return self.require(user_id)

    def ensure_agency_accounts(self) -> int:
        created = 0
        now = utc_now_iso()
        with self._lock:
            for acc in AGENCY_ACCOUNTS:
                cur = self.conn.execute(
                    """
                    INSERT INTO users (
                      id, display_name, first_name, last_name, account_type, is_official_agency,
                      business_name, business_description, terms_accepted, terms_accepted_at,
                      notifications_enabled, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, 'business', 1, ?, ?, 1, ?, 0, ?, ?)
                    ON CONFLICT(id) DO NOTHING;
                    """,
                    (
                        acc["id"], acc["displayName"], acc["firstName"], acc["lastName"],
                        acc["businessName"], acc["businessDescription"], now, now, now,
                    ),
                )
                created += cur.rowcount
            self.conn.commit()
        if created:
            logger.info("[users] created %d agency accounts", created)
        return created

    def authenticate(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(
            "SELECT * FROM users WHERE username=?;", (username.strip(),)
        ).fetchone()
        if not row or not verify_password(password, row["password_hash"]):
            return None
        return self._from_row(row)

    # ──────────────────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────────────────

    def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT * FROM users WHERE id=?;", (user_id,)).fetchone()
        return self._from_row(row) if row else None

    def require(self, user_id: str) -> Dict[str, Any]:
        user = self.get(user_id)
        if user is None:
            raise NotFoundError("User not found", code="user_not_found")
        return user

    def get_many(self, user_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = list(dict.fromkeys(i for i in user_ids if i))
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        rows = self.conn.execute(f"SELECT * FROM users WHERE id IN ({placeholders});", ids).fetchall()
        return [self._from_row(r) for r in rows]

    def list_all(self) -> List[Dict[str, Any]]:
        rows = self.conn.execute("SELECT * FROM users ORDER BY created_at;").fetchall()
        return [self._from_row(r) for r in rows]

    def list_by_suburb(self, suburb: str) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM users WHERE lower(home_suburb)=lower(?) ORDER BY created_at;", (suburb.strip(),)
        ).fetchall()
        return [self._from_row(r) for r in rows]

    # ──────────────────────────────────────────────────────────
    # Updates
    # ──────────────────────────────────────────────────────────

    def accept_terms(self, user_id: str) -> Dict[str, Any]:
        now = utc_now_iso()
        return self._set(user_id, {"terms_accepted": 1, "terms_accepted_at": now})

    def update_suburb(self, user_id: str, home_suburb: str) -> Dict[str, Any]:
        suburb = home_suburb.strip()
        region = find_region_by_suburb(suburb)
        return self._set(
            user_id,
            {"home_suburb": suburb, "preferred_location": region.name if region else suburb},
        )

    def update_profile(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        columns = {_PROFILE_COLUMNS[k]: v for k, v in fields.items() if k in _PROFILE_COLUMNS}
        if not columns:
            raise ValidationError("No profile fields to update", code="empty_update")
        return self._set(user_id, columns)

    def upgrade_to_business(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        columns = {_BUSINESS_COLUMNS[k]: v for k, v in fields.items() if k in _BUSINESS_COLUMNS}
        if not columns.get("business_name"):
            raise ValidationError("Business name is required", code="business_name_required")
        columns["account_type"] = "business"
        logger.info("[users] business upgrade id=%s", user_id)
        return self._set(user_id, columns)

    def update_notification_preferences(
        self,
        user_id: str,
        *,
        enabled: bool,
        categories: List[str],
        radius: Optional[str] = None,
        lat: Optional[float] = None,
        lng: Optional[float] = None,
    ) -> Dict[str, Any]:
        columns: Dict[str, Any] = {
            "notifications_enabled": 1 if enabled else 0,
            "notification_categories_json": dumps_json(list(categories or [])),
        }
        if radius is not None:
            columns["notification_radius"] = radius
        if lat is not None and lng is not None:
            columns["preferred_location_lat"] = float(lat)
            columns["preferred_location_lng"] = float(lng)
        return self._set(user_id, columns)
