"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int
    total_pages: int


def _required_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


NonBlankStr = Annotated[str, AfterValidator(_required_text)]


# ── Auth ──────────────────────────────────────────────────────

class SignupRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    full_name: NonBlankStr = Field(..., min_length=2, max_length=255)


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(BaseSchema):
    refresh_token: Optional[str] = None


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class AuthResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: "ProfileResponse"


# ── Profile ───────────────────────────────────────────────────

class ProfileResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    full_name: str
    phone: Optional[str]
    role: str
    status: str
    is_verified: bool
    transaction_count: int
    created_at: datetime


class MeResponse(ProfileResponse):
    balance: int
    level: Optional[str] = None
    boost_discount_percentage: int = 0


class PublicProfileResponse(BaseSchema):
    id: uuid.UUID
    full_name: str
    is_verified: bool
    rating_avg: Decimal = Decimal("0")
    rating_count: int = 0
    level: Optional[str] = None
    member_since: datetime
    ads: List["AdResponse"] = []


class ProfileUpdateRequest(BaseSchema):
    full_name: Optional[str] = Field(None, min_length=2, max_length=255)
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{9,14}$")
    avatar_key: Optional[str] = Field(None, max_length=255)


# ── Credits ───────────────────────────────────────────────────

class BalanceResponse(BaseSchema):
    balance: int


class CreditTransactionResponse(BaseSchema):
    id: int
    amount: int
    type: str
    description: Optional[str]
    related_ad_id: Optional[uuid.UUID]
    created_at: datetime


class CreditPackageResponse(BaseSchema):
    id: uuid.UUID
    credits: int
    price_in_paise: int
    description: Optional[str]


class CreditOrderRequest(BaseSchema):
    package_id: uuid.UUID
    promo_code: Optional[str] = Field(None, max_length=50)


class CreditOrderResponse(BaseSchema):
    order_id: uuid.UUID
    razorpay_order_id: str
    razorpay_key_id: str
    amount: int  # paise
    currency: str
    credits: int


class CreditOrderVerifyRequest(BaseSchema):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class CreditOrderStatusResponse(BaseSchema):
    order_id: uuid.UUID
    status: str
    credits: int
    balance: int


class PromoRedeemRequest(BaseSchema):
    code: str = Field(..., min_length=1, max_length=50)


class PromoRedeemResponse(BaseSchema):
    status: str
    message: str
    credits_granted: int = 0
    balance: int


class AdminGrantCreditsRequest(BaseSchema):
    amount: int = Field(..., gt=0, le=100000)
    description: NonBlankStr = Field(..., min_length=5, max_length=200)


# ── Advertisements ────────────────────────────────────────────

# Redis GEO indexes latitudes up to this bound
MAX_GEO_LATITUDE = 85.05112878


class AdCreateRequest(BaseSchema):
    title: NonBlankStr = Field(..., min_length=3, max_length=120)
    description: Optional[str] = Field(None, max_length=5000)
    price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    category_slug: Optional[str] = Field(None, max_length=100)
    image_keys: List[str] = Field(..., min_length=1, max_length=5)
    latitude: Optional[float] = Field(None, ge=-MAX_GEO_LATITUDE, le=MAX_GEO_LATITUDE)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    @field_validator("image_keys")
    @classmethod
    def unique_keys(cls, v: List[str]) -> List[str]:
        if len(set(v)) != len(v):
            raise ValueError("image keys must be unique")
        return v


class AdUpdateRequest(AdCreateRequest):
    """Full replacement of the editable fields, including the ordered image list."""
    pass


class AdResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    description: Optional[str]
    price: Decimal
    category_slug: Optional[str]
    image_keys: List[str]
    image_urls: List[str] = []
    status: str
    flag_reason: Optional[str]
    view_count: int
    boosted_until: Optional[datetime]
    expires_at: Optional[datetime]
    last_renewed_at: Optional[datetime]
    latitude: Optional[float]
    longitude: Optional[float]
    created_at: datetime
    is_boosted: bool = False
    distance_km: Optional[float] = None


class BoostResponse(BaseSchema):
    ad: AdResponse
    credits_spent: int
    balance: int


class ReportCreateRequest(BaseSchema):
    reason: NonBlankStr = Field(..., min_length=5, max_length=500)


class ReportResponse(BaseSchema):
    id: uuid.UUID
    ad_id: uuid.UUID
    reporter_id: uuid.UUID
    reason: str
    status: str
    created_at: datetime


# ── Reviews ───────────────────────────────────────────────────

class ReviewCreateRequest(BaseSchema):
    ad_id: uuid.UUID
    rating: int = Field(..., ge=1, le=5)
    communication_rating: Optional[int] = Field(None, ge=1, le=5)
    punctuality_rating: Optional[int] = Field(None, ge=1, le=5)
    item_quality_rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)


class ReviewResponse(BaseSchema):
    id: uuid.UUID
    ad_id: uuid.UUID
    reviewer_id: uuid.UUID
    seller_id: uuid.UUID
    rating: int
    communication_rating: Optional[int]
    punctuality_rating: Optional[int]
    item_quality_rating: Optional[int]
    comment: Optional[str]
    reply_comment: Optional[str]
    created_at: datetime
    reviewer_name: Optional[str] = None


class ReviewReplyRequest(BaseSchema):
    reply: NonBlankStr = Field(..., min_length=2, max_length=500)


# ── Verification ──────────────────────────────────────────────

class VerificationSubmitRequest(BaseSchema):
    document_key: str = Field(..., min_length=1, max_length=255)
    selfie_key: str = Field(..., min_length=1, max_length=255)


class VerificationResponse(BaseSchema):
    id: uuid.UUID
    status: str
    rejection_reason: Optional[str]
    reviewed_at: Optional[datetime]
    created_at: datetime


# ── Moderation Queue ──────────────────────────────────────────

class _QueueItemBase(BaseSchema):
    id: uuid.UUID
    created_at: datetime
    submitter_id: uuid.UUID
    submitter_name: Optional[str] = None


class AdQueueItem(_QueueItemBase):
    type: Literal["ad"] = "ad"
    title: str
    price: Decimal
    description: Optional[str] = None
    image_keys: List[str] = []


class VerificationQueueItem(_QueueItemBase):
    type: Literal["verification"] = "verification"
    document_key: str
    selfie_key: str


class ReportQueueItem(_QueueItemBase):
    type: Literal["report"] = "report"
    ad_id: uuid.UUID
    ad_title: Optional[str] = None
    reason: str


ModerationQueueItem = Annotated[
    Union[AdQueueItem, VerificationQueueItem, ReportQueueItem],
    Field(discriminator="type"),
]


class ModerationQueueResponse(BaseSchema):
    items: List[ModerationQueueItem]
    refresh_interval_seconds: int


class ResolveItemRequest(BaseSchema):
    action: Literal["approve", "reject", "accept", "dismiss"]
    reason: Optional[str] = Field(None, max_length=500)


class ResolveItemResponse(BaseSchema):
    item_type: str
    item_id: uuid.UUID
    action: str
    status: str


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    type: str
    message: str
    link: Optional[str]
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime


class MarkReadRequest(BaseSchema):
    ids: List[uuid.UUID] = Field(..., min_length=1, max_length=200)


# ── Storage ───────────────────────────────────────────────────

class UploadResponse(BaseSchema):
    bucket: str
    key: str
    url: Optional[str]
    size_bytes: int
    content_type: str


# ── Admin ─────────────────────────────────────────────────────

class AdminViolationRequest(BaseSchema):
    reason: str = Field(..., min_length=10, max_length=500)


class AdminSuspendRequest(BaseSchema):
    reason: NonBlankStr = Field(..., min_length=5, max_length=500)


class SiteSettingRequest(BaseSchema):
    value: str = Field(..., min_length=1, max_length=255)


class UserLevelRequest(BaseSchema):
    level_name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    min_transactions: int = Field(0, ge=0)
    min_avg_rating: Decimal = Field(Decimal("0"), ge=0, le=5)
    boost_discount_percentage: int = Field(0, ge=0, le=100)
    priority: int = 0


class AdminStatsResponse(BaseSchema):
    total_users: int
    verified_users: int
    suspended_users: int
    pending_ads: int
    approved_ads: int
    pending_reports: int
    pending_verifications: int
    credits_in_circulation: int
    credits_spent_on_boosts: int


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None
    request_id: Optional[str] = None


AuthResponse.model_rebuild()
PublicProfileResponse.model_rebuild()
