# community_connect/main.py
from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.gzip import GZipMiddleware

# Load <repo>/.env (main.py is <repo>/community_connect/main.py)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

from community_connect.core.settings import settings
from community_connect.core.storage import connect_sqlite, ensure_schema
from community_connect.core.errors import CommunityStoreError, status_code_for
from community_connect.core.logsafe import RedactingFilter, safe_request_info
from community_connect.core.contracts import UnifiedIncident
from community_connect.api import api_router

from community_connect.services.ads import AdStore
from community_connect.services.geocoding import NominatimGeocoder
from community_connect.services.incident_store import IncidentStore
from community_connect.services.incidents import IncidentService, SocialStore
from community_connect.services.ingestion import UnifiedIngestionEngine
from community_connect.services.messaging import ConversationStore
from community_connect.services.notifications import (
    NotificationService,
    NotificationStore,
    PushSender,
    PushSubscriptionStore,
)
from community_connect.services.spatial import SpatialLookup
from community_connect.services.stories import StoryStore
from community_connect.services.users import UserStore

logger = logging.getLogger(__name__)

for _handler in logging.getLogger().handlers:
    _handler.addFilter(RedactingFilter())

app = FastAPI(title="Community Connect", version="1.0.0")

# ── Compression (must be added before CORS) ──
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ──────────────────────────────────────────────────────────────
# DB connection + stores
# ──────────────────────────────────────────────────────────────

_conn = connect_sqlite(settings.db_path)
ensure_schema(_conn)

_users = UserStore(_conn)
_users.ensure_agency_accounts()

_incident_store = IncidentStore(_conn)
_social = SocialStore(_conn)
_conversations = ConversationStore(_conn)
_ads = AdStore(_conn)
_stories = StoryStore(_conn)
_spatial = SpatialLookup()

_notification_service = NotificationService(
    notifications=NotificationStore(_conn),
    push_subscriptions=PushSubscriptionStore(_conn),
    users=_users,
    incidents=_incident_store,
    push_sender=PushSender(settings.firebase_credentials_path),
)

_incident_service = IncidentService(
    store=_incident_store,
    social=_social,
    notifications=_notification_service,
    geocoder=NominatimGeocoder(),
)


async def _broadcast_new_incident(incident: UnifiedIncident) -> None:
    _notification_service.broadcast_post(incident, reason="new_post")


_ingestion = UnifiedIngestionEngine(
    store=_incident_store,
    spatial=_spatial,
    on_new_incident=_broadcast_new_incident,
)

# ──────────────────────────────────────────────────────────────
# Dependency providers
# ──────────────────────────────────────────────────────────────

def provide_user_store() -> UserStore:
    return _users


def provide_incident_store() -> IncidentStore:
    return _incident_store


def provide_incident_service() -> IncidentService:
    return _incident_service


def provide_spatial() -> SpatialLookup:
    return _spatial


def provide_ingestion() -> UnifiedIngestionEngine:
    return _ingestion


def provide_notification_service() -> NotificationService:
    return _notification_service


def provide_conversations() -> ConversationStore:
    return _conversations


def provide_ads() -> AdStore:
    return _ads


def provide_stories() -> StoryStore:
    return _stories


# ──────────────────────────────────────────────────────────────
# Dependency overrides
# ──────────────────────────────────────────────────────────────

from community_connect.api import deps as deps_api
from community_connect.api import unified as unified_api
from community_connect.api import feed as feed_api
from community_connect.api import incidents as incidents_api
from community_connect.api import users as users_api
from community_connect.api import messaging as messaging_api
from community_connect.api import notifications as notifications_api
from community_connect.api import ads as ads_api
from community_connect.api import stories as stories_api

# Users
app.dependency_overrides[deps_api.get_user_store] = provide_user_store

# Incidents
app.dependency_overrides[unified_api.get_incident_store] = provide_incident_store
app.dependency_overrides[feed_api.get_incident_store] = provide_incident_store
app.dependency_overrides[unified_api.get_incident_service] = provide_incident_service
app.dependency_overrides[incidents_api.get_incident_service] = provide_incident_service

# Spatial + ingestion
app.dependency_overrides[unified_api.get_spatial] = provide_spatial
app.dependency_overrides[unified_api.get_ingestion] = provide_ingestion

# Notifications
app.dependency_overrides[users_api.get_notification_service] = provide_notification_service
app.dependency_overrides[messaging_api.get_notification_service] = provide_notification_service
app.dependency_overrides[notifications_api.get_notification_service] = provide_notification_service
app.dependency_overrides[ads_api.get_notification_service] = provide_notification_service

# Conversations, ads, stories
app.dependency_overrides[messaging_api.get_conversations] = provide_conversations
app.dependency_overrides[ads_api.get_ads] = provide_ads
app.dependency_overrides[stories_api.get_stories] = provide_stories

# Routes
app.include_router(api_router)

# ──────────────────────────────────────────────────────────────
# Store errors -> HTTP
# ──────────────────────────────────────────────────────────────

@app.exception_handler(CommunityStoreError)
async def handle_store_errors(request: Request, exc: CommunityStoreError):
    status = status_code_for(exc)
    logger.info("[app] %s -> %d %s", safe_request_info(request), status, exc.code)
    return JSONResponse(status_code=status, content={"detail": {"code": exc.code, "message": str(exc)}})


# ──────────────────────────────────────────────────────────────
# Lifecycle
# ──────────────────────────────────────────────────────────────

@app.on_event("startup")
async def startup():
    if settings.ingestion_enabled:
        _ingestion.start()
    else:
        _spatial.load_incidents(_incident_store.list_all())
        logger.info("[app] ingestion disabled (INGESTION_ENABLED=false)")


@app.on_event("shutdown")
def shutdown():
    logger.info("[app] Shutting down, stopping ingestion and closing the DB")
    _ingestion.shutdown()
    try:
        _conn.close()
    except sqlite3.Error as e:
        logger.warning("[app] Error closing DB: %s", e)
