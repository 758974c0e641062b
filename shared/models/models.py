"""
shared/models/models.py
All SQLAlchemy ORM models for the Trokazz marketplace.
UUID primary keys throughout (except the ledger's integer sequence);
column types stay portable so the same metadata runs on PostgreSQL and SQLite.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Column Types ──────────────────────────────────────────────

class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend (SQLite drops tzinfo)."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum(enum_cls) -> Enum:
    """Store lowercase enum values as plain strings."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    USER = "user"
    ADMIN = "admin"


class ProfileStatus(str, PyEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class AdStatus(str, PyEnum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    SOLD = "sold"
    PAUSED = "paused"


class TransactionType(str, PyEnum):
    PURCHASE = "purchase"
    BOOST_AD = "boost_ad"
    SIGNUP_BONUS = "signup_bonus"
    ADMIN_ADD = "admin_add"
    PROMO_BONUS = "promo_bonus"


class VerificationStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReportStatus(str, PyEnum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class OrderStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PromoCodeType(str, PyEnum):
    CREDIT_BONUS = "credit_bonus"
    DISCOUNT_CREDITS = "discount_credits"


class StoredObjectStatus(str, PyEnum):
    STAGED = "staged"
    ATTACHED = "attached"
    ORPHANED = "orphaned"
    PURGING = "purging"


class NotificationType(str, PyEnum):
    AD_APPROVED = "ad_approved"
    AD_REJECTED = "ad_rejected"
    AD_REPORTED = "ad_reported"
    REPORT_RESOLVED = "report_resolved"
    VERIFICATION_APPROVED = "verification_approved"
    VERIFICATION_REJECTED = "verification_rejected"
    NEW_REPORT = "new_report"
    NEW_VERIFICATION_REQUEST = "new_verification_request"
    CREDITS_ADDED = "credits_added"
    ACCOUNT_WARNING = "account_warning"
    ACCOUNT_SUSPENDED = "account_suspended"
    NEW_REVIEW = "new_review"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )


# ── Accounts ──────────────────────────────────────────────────

class Profile(TimestampMixin, Base):
    """Marketplace account: identity, moderation status and seller reputation."""
    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    avatar_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole), nullable=False, default=UserRole.USER
    )
    status: Mapped[ProfileStatus] = mapped_column(
        _enum(ProfileStatus), nullable=False, default=ProfileStatus.ACTIVE
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    rating_avg: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=0, nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    credits: Mapped[Optional["CreditBalance"]] = relationship(
        back_populates="profile", uselist=False
    )
    advertisements: Mapped[List["Advertisement"]] = relationship(back_populates="owner")
    refresh_tokens: Mapped[List["RefreshToken"]] = relationship(back_populates="profile")

    __table_args__ = (
        CheckConstraint("transaction_count >= 0", name="ck_profile_transaction_count"),
        Index("ix_profiles_role", "role"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == ProfileStatus.ACTIVE

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<Profile {self.email} ({self.role})>"


class RefreshToken(Base):
    """Refresh tokens stored for rotation and revocation."""
    __tablename__ = "refresh_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    profile: Mapped["Profile"] = relationship(back_populates="refresh_tokens")

    __table_args__ = (Index("ix_refresh_tokens_user_id", "user_id"),)


class UserLevel(Base):
    """Seller tier. Unlocks a boost discount once the thresholds are met."""
    __tablename__ = "user_levels"

    level_name: Mapped[str] = mapped_column(String(50), primary_key=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    min_transactions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    min_avg_rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=0, nullable=False)
    boost_discount_percentage: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    badge_icon: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "boost_discount_percentage >= 0 AND boost_discount_percentage <= 100",
            name="ck_user_level_discount_range",
        ),
    )


# ── Credit Ledger ─────────────────────────────────────────────

class CreditBalance(Base):
    """Per-user balance. Only ever mutated together with a CreditTransaction."""
    __tablename__ = "user_credits"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True
    )
    balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )

    profile: Mapped["Profile"] = relationship(back_populates="credits")

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_user_credits_non_negative"),
    )


class CreditTransaction(Base):
    """Append-only ledger entry. Rows are never updated or deleted."""
    __tablename__ = "credit_transactions"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(_enum(TransactionType), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    related_ad_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("advertisements.id", ondelete="SET NULL"), nullable=True
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_credit_transaction_non_zero"),
        Index("ix_credit_transactions_user_id", "user_id", "created_at"),
    )


class CreditPackage(TimestampMixin, Base):
    """Purchasable bundle of credits."""
    __tablename__ = "credit_packages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    price_in_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("credits > 0", name="ck_credit_package_credits"),
        CheckConstraint("price_in_paise > 0", name="ck_credit_package_price"),
    )


class PromoCode(TimestampMixin, Base):
    __tablename__ = "promo_codes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    type: Mapped[PromoCodeType] = mapped_column(_enum(PromoCodeType), nullable=False)
    value: Mapped[int] = mapped_column(Integer, nullable=False)
    max_uses: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    current_uses: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (CheckConstraint("value > 0", name="ck_promo_code_value"),)


class PromoCodeUse(Base):
    """One redemption per (code, user)."""
    __tablename__ = "user_promo_code_uses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    promo_code_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("promo_codes.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    used_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("promo_code_id", "user_id", name="uq_promo_code_use"),
    )


class CreditOrder(TimestampMixin, Base):
    """Gateway checkout for a credit package. Paid orders grant credits once."""
    __tablename__ = "credit_orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    package_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("credit_packages.id"), nullable=False
    )
    promo_code_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("promo_codes.id"), nullable=True
    )
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_paise: Mapped[int] = mapped_column(Integer, nullable=False)
    gateway_order_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[OrderStatus] = mapped_column(
        _enum(OrderStatus), nullable=False, default=OrderStatus.PENDING
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (Index("ix_credit_orders_user_id", "user_id"),)


class SiteSetting(Base):
    """Runtime-tunable values (boost price, boost duration)."""
    __tablename__ = "site_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )


# ── Advertisements ────────────────────────────────────────────

class Advertisement(TimestampMixin, Base):
    __tablename__ = "advertisements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    category_slug: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    image_keys: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    status: Mapped[AdStatus] = mapped_column(
        _enum(AdStatus), nullable=False, default=AdStatus.PENDING_APPROVAL
    )
    flag_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    boosted_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    last_renewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    owner: Mapped["Profile"] = relationship(back_populates="advertisements")
    reports: Mapped[List["Report"]] = relationship(back_populates="advertisement")

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_ad_price_positive"),
        CheckConstraint("view_count >= 0", name="ck_ad_view_count"),
        CheckConstraint(
            "boosted_until IS NULL OR boosted_until >= created_at",
            name="ck_ad_boost_after_creation",
        ),
        Index("ix_advertisements_status_created", "status", "created_at"),
        Index("ix_advertisements_user_id", "user_id"),
    )

    @property
    def is_boosted(self) -> bool:
        return self.boosted_until is not None and self.boosted_until > utcnow()


class Report(TimestampMixin, Base):
    __tablename__ = "reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ad_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("advertisements.id", ondelete="CASCADE"), nullable=False
    )
    reporter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[ReportStatus] = mapped_column(
        _enum(ReportStatus), nullable=False, default=ReportStatus.PENDING
    )
    resolved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    advertisement: Mapped["Advertisement"] = relationship(back_populates="reports")

    __table_args__ = (Index("ix_reports_status_created", "status", "created_at"),)


class Review(TimestampMixin, Base):
    """Buyer feedback on a seller, one per reviewer per sold ad."""
    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ad_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("advertisements.id", ondelete="CASCADE"), nullable=False
    )
    reviewer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    rating: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    communication_rating: Mapped[Optional[int]] = mapped_column(SmallInteger, nullable=True)
    punctuality_rating: Mapped[Optional[int]] = mapped_column(SmallInteger, nullable=True)
    item_quality_rating: Mapped[Optional[int]] = mapped_column(SmallInteger, nullable=True)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reply_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("ad_id", "reviewer_id", name="uq_review_ad_reviewer"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_review_rating_range"),
        Index("ix_reviews_seller_id", "seller_id"),
    )


class Violation(Base):
    """Strike against a user. Enough strikes suspend the profile."""
    __tablename__ = "violations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    admin_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id"), nullable=False)
    report_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("reports.id", ondelete="SET NULL"), nullable=True
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_violations_user_id", "user_id"),)


class VerificationRequest(TimestampMixin, Base):
    __tablename__ = "verification_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[VerificationStatus] = mapped_column(
        _enum(VerificationStatus), nullable=False, default=VerificationStatus.PENDING
    )
    document_key: Mapped[str] = mapped_column(String(255), nullable=False)
    selfie_key: Mapped[str] = mapped_column(String(255), nullable=False)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=True
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("ix_verification_requests_status_created", "status", "created_at"),
        Index("ix_verification_requests_user_id", "user_id"),
    )


# ── Notifications ─────────────────────────────────────────────

class Notification(Base):
    """In-app notification. Pushed over the realtime channel, polled as fallback."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    sent_email: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_notifications_user_id_read", "user_id", "is_read"),)


# ── Object Storage ────────────────────────────────────────────

class StoredObject(Base):
    """
    Bookkeeping row for a file in the storage vault.
    staged -> attached when a row references it; attached -> orphaned when
    the reference is dropped. Orphaned and stale staged files are purged
    by the storage GC task.
    """
    __tablename__ = "stored_objects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    bucket: Mapped[str] = mapped_column(String(50), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[StoredObjectStatus] = mapped_column(
        _enum(StoredObjectStatus), nullable=False, default=StoredObjectStatus.STAGED
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    status_changed_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("bucket", "key", name="uq_stored_object_bucket_key"),
        Index("ix_stored_objects_status", "status", "status_changed_at"),
    )


# ── Admin ─────────────────────────────────────────────────────

class AdminAuditLog(Base):
    """Immutable log of all admin actions."""
    __tablename__ = "admin_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    admin_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)

    __table_args__ = (
        Index("ix_admin_audit_admin_id", "admin_id"),
        Index("ix_admin_audit_created_at", "created_at"),
    )
