from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


# ──────────────────────────────────────────────────────────────
# Shared
# ──────────────────────────────────────────────────────────────

IncidentSource = Literal["tmr", "emergency", "user"]
IncidentSeverity = Literal["low", "medium", "high", "critical"]
AgingSensitivity = Literal["normal", "extended", "disabled"]


# ──────────────────────────────────────────────────────────────
# Unified incidents
# ──────────────────────────────────────────────────────────────

class UnifiedIncident(BaseModel):
    id: str
    source: IncidentSource
    sourceId: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    categoryId: Optional[str] = None
    subcategoryId: Optional[str] = None
    severity: IncidentSeverity = "medium"
    status: str = "active"

    geometry: Optional[Dict[str, Any]] = None   # GeoJSON, [lng, lat]
    centroidLat: Optional[float] = None
    centroidLng: Optional[float] = None
    regionIds: List[str] = Field(default_factory=list)
    geocell: Optional[str] = None

    incidentTime: Optional[str] = None
    lastUpdated: str
    publishedAt: Optional[str] = None
    createdAt: Optional[str] = None

    userId: Optional[str] = None
    photoUrl: Optional[str] = None
    policeNotified: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)


class IncidentAging(BaseModel):
    agePercentage: float
    isVisible: bool
    timeRemaining: float          # minutes, may be inf
    shouldAutoHide: bool


# ──────────────────────────────────────────────────────────────
# Incident requests
# ──────────────────────────────────────────────────────────────

PoliceNotified = Literal["yes", "no", "not_needed", "unsure"]


class IncidentReportRequest(BaseModel):
    categoryId: str = Field(min_length=1)
    subcategoryId: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    location: str = Field(min_length=1)
    policeNotified: Optional[PoliceNotified] = None
    photoUrl: Optional[str] = None


class IncidentUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    categoryId: Optional[str] = None
    subcategoryId: Optional[str] = None
    severity: Optional[IncidentSeverity] = None
    photoUrl: Optional[str] = None
    policeNotified: Optional[PoliceNotified] = None


class IncidentStatusRequest(BaseModel):
    status: Literal["active", "completed"]


class CommentCreateRequest(BaseModel):
    content: str = Field(min_length=1, max_length=2000)
    parentCommentId: Optional[str] = None


class CommentUpdateRequest(BaseModel):
    content: str = Field(min_length=1, max_length=2000)


class FollowUpCreateRequest(BaseModel):
    status: str = Field(min_length=1)
    description: str = Field(min_length=1)
    photoUrl: Optional[str] = None


# ──────────────────────────────────────────────────────────────
# Users & auth
# ──────────────────────────────────────────────────────────────

class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=6, max_length=128)
    email: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    homeSuburb: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class AuthResponse(BaseModel):
    token: str
    expiresAt: str
    user: Dict[str, Any]


class SuburbUpdateRequest(BaseModel):
    homeSuburb: str = Field(min_length=1)


class ProfileUpdateRequest(BaseModel):
    displayName: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    bio: Optional[str] = None
    phoneNumber: Optional[str] = None
    avatarUrl: Optional[str] = None
    profileVisibility: Optional[Literal["public", "community", "private"]] = None


class NotificationPreferencesRequest(BaseModel):
    notificationsEnabled: bool = True
    notificationCategories: List[str] = Field(default_factory=list)
    notificationRadius: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class BusinessUpgradeRequest(BaseModel):
    businessName: str = Field(min_length=1)
    businessCategory: Optional[str] = None
    businessDescription: Optional[str] = None
    businessWebsite: Optional[str] = None
    businessPhone: Optional[str] = None
    businessAddress: Optional[str] = None


# ──────────────────────────────────────────────────────────────
# Messaging & notifications
# ──────────────────────────────────────────────────────────────

class ConversationCreateRequest(BaseModel):
    otherUserId: str = Field(min_length=1)


class MessageCreateRequest(BaseModel):
    content: str = Field(min_length=1, max_length=1000)


class PushSubscribeRequest(BaseModel):
    token: str = Field(min_length=1)
    platform: Literal["web", "android", "ios"] = "web"


class PushUnsubscribeRequest(BaseModel):
    token: str = Field(min_length=1)


# ──────────────────────────────────────────────────────────────
# Ads & stories
# ──────────────────────────────────────────────────────────────

class AdCreateRequest(BaseModel):
    businessName: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=100)
    content: str = Field(min_length=1, max_length=500)
    suburb: str = Field(min_length=1)
    dailyBudget: float = Field(gt=0)
    totalBudget: Optional[float] = None
    logoUrl: Optional[str] = None
    websiteUrl: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    callToAction: str = "Learn More"
    targetSuburbs: Optional[List[str]] = None


class AdUpdateRequest(BaseModel):
    businessName: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    suburb: Optional[str] = None
    dailyBudget: Optional[float] = None
    totalBudget: Optional[float] = None
    logoUrl: Optional[str] = None
    websiteUrl: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    callToAction: Optional[str] = None
    targetSuburbs: Optional[List[str]] = None


class AdViewRequest(BaseModel):
    adId: str
    duration: int = 0
    userSuburb: Optional[str] = None
    timestamp: Optional[str] = None


class AdClickRequest(BaseModel):
    adId: str
    timestamp: Optional[str] = None


class AdRejectRequest(BaseModel):
    reason: str = Field(min_length=1)


class StoryCreateRequest(BaseModel):
    content: Optional[str] = Field(default=None, max_length=500)
    photoUrl: Optional[str] = None
    location: Optional[str] = None


# ──────────────────────────────────────────────────────────────
# Feed
# ──────────────────────────────────────────────────────────────

class HomeLocation(BaseModel):
    lat: float
    lng: float
    radiusKm: float = 15.0


class FeedFilters(BaseModel):
    showTrafficEvents: bool = True
    showIncidents: bool = True
    showQFES: bool = True
    showUserSafetyCrime: bool = True
    showUserWildlife: bool = True
    showUserCommunity: bool = True
    showUserTraffic: bool = True
    homeLocation: Optional[HomeLocation] = None
    autoRefresh: bool = True


class FeedCounts(BaseModel):
    tmr: int = 0
    esq: int = 0
    qfes: int = 0
    userSafetyCrime: int = 0
    userWildlife: int = 0
    userCommunity: int = 0
    userTraffic: int = 0
