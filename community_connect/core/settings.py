from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Paths
    db_path: str = Field(default="community_connect/data/community.db", alias="COMMUNITY_DB_PATH")

    # CORS (comma-separated)
    cors_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000,http://localhost:5000,http://127.0.0.1:5000",
        alias="CORS_ORIGINS",
    )

    # ──────────────────────────────────────────────────────────────
    # Auth (HMAC bearer tokens)
    # ──────────────────────────────────────────────────────────────

    auth_secret: str = Field(default="dev-insecure-secret-change-me", alias="AUTH_SECRET")
    auth_token_ttl_hours: int = Field(default=24, alias="AUTH_TOKEN_TTL_HOURS")
    # comma-separated usernames granted role=admin on registration
    admin_usernames: str = Field(default="", alias="ADMIN_USERNAMES")

    # ──────────────────────────────────────────────────────────────
    # QLD Traffic (official v2 events)
    # ──────────────────────────────────────────────────────────────

    qldtraffic_api_key: str = Field(default="3e83add325cbb69ac4d8e5bf433d770b", alias="QLDTRAFFIC_API_KEY")
    qldtraffic_events_url: str = Field(
        default="https://api.qldtraffic.qld.gov.au/v2/events",
        alias="QLDTRAFFIC_EVENTS_URL",
    )

    # ──────────────────────────────────────────────────────────────
    # Emergency services: ESCAD current incidents (ArcGIS GeoJSON)
    # ──────────────────────────────────────────────────────────────

    emergency_incidents_url: str = Field(
        default=(
            "https://services1.arcgis.com/vkTwD8kHw2woKBqV/arcgis/rest/services/"
            "ESCAD_Current_Incidents_Public/FeatureServer/0/query"
            "?f=geojson&where=1%3D1&outFields=*&outSR=4326"
        ),
        alias="EMERGENCY_INCIDENTS_URL",
    )

    # ──────────────────────────────────────────────────────────────
    # Unified ingestion
    # ──────────────────────────────────────────────────────────────

    ingestion_enabled: bool = Field(default=True, alias="INGESTION_ENABLED")
    ingestion_timeout_s: float = Field(default=15.0, alias="INGESTION_TIMEOUT_S")
    ingestion_recent_days: int = Field(default=7, alias="INGESTION_RECENT_DAYS")
    ingestion_circuit_threshold: int = Field(default=3, alias="INGESTION_CIRCUIT_THRESHOLD")

    poll_fast_s: float = Field(default=60.0, alias="POLL_FAST_S")
    poll_normal_s: float = Field(default=90.0, alias="POLL_NORMAL_S")
    poll_slow_s: float = Field(default=300.0, alias="POLL_SLOW_S")
    poll_circuit_s: float = Field(default=900.0, alias="POLL_CIRCUIT_S")
    poll_error_s: float = Field(default=600.0, alias="POLL_ERROR_S")

    # Spatial lookup cache
    spatial_cache_size: int = Field(default=50, alias="SPATIAL_CACHE_SIZE")
    spatial_cache_ttl_s: float = Field(default=120.0, alias="SPATIAL_CACHE_TTL_S")

    # ──────────────────────────────────────────────────────────────
    # Geocoding (Nominatim)
    # ──────────────────────────────────────────────────────────────

    nominatim_url: str = Field(default="https://nominatim.openstreetmap.org/search", alias="NOMINATIM_URL")
    nominatim_timeout_s: float = Field(default=3.0, alias="NOMINATIM_TIMEOUT_S")
    nominatim_user_agent: str = Field(
        default="QLD Safety Monitor (contact: support@example.com)",
        alias="NOMINATIM_USER_AGENT",
    )

    # ──────────────────────────────────────────────────────────────
    # Push (Firebase Cloud Messaging)
    # ──────────────────────────────────────────────────────────────

    firebase_credentials_path: str = Field(default="", alias="FIREBASE_CREDENTIALS_PATH")

    # Notifications
    notification_default_radius: str = Field(default="10km", alias="NOTIFICATION_DEFAULT_RADIUS")
    notification_backfill_hours: int = Field(default=24, alias="NOTIFICATION_BACKFILL_HOURS")

    # ──────────────────────────────────────────────────────────────
    # Ads + stories
    # ──────────────────────────────────────────────────────────────

    ad_cpm_rate: str = Field(default="3.50", alias="AD_CPM_RATE")
    ad_max_daily_views: int = Field(default=3, alias="AD_MAX_DAILY_VIEWS")
    ad_default_suburb: str = Field(default="Sunshine Coast", alias="AD_DEFAULT_SUBURB")

    story_ttl_hours: int = Field(default=24, alias="STORY_TTL_HOURS")


settings = Settings()
