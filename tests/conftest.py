"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, fake Redis, HTTP client
bound to the app, and a few ready-made profiles.
"""

import os
import tempfile
import uuid

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("RATE_LIMIT_UNAUTH_PER_MINUTE", "1000")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "rzp_webhook_secret")
os.environ.setdefault("STORAGE_ROOT", tempfile.mkdtemp(prefix="trokazz-test-"))

from datetime import timedelta
from decimal import Decimal
from typing import Optional

import fakeredis
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import config.redis_client as redis_module
from config.database import Base, get_db
from main import app
from services.ads.geo import sync_ad_location
from services.credits.ledger import grant_credits, open_account
from services.notification.service import discard_pending
from shared.models.models import (
    AdStatus,
    Advertisement,
    Profile,
    StoredObject,
    StoredObjectStatus,
    TransactionType,
    UserRole,
    utcnow,
)
from shared.utils.security import create_access_token, hash_password

TEST_DATABASE_URL = "sqlite+aiosqlite://"
TEST_PASSWORD = "correct-horse-battery"
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


# ── Database ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ── Redis ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    redis_module.redis_client = client
    yield client
    await client.flushall()
    redis_module.redis_client = None


# ── HTTP client ───────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(session_factory, redis):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                discard_pending(session)
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(profile: Profile) -> dict:
    token, _ = create_access_token(str(profile.id), UserRole(profile.role).value, profile.email)
    return {"Authorization": f"Bearer {token}"}


# ── Builders ──────────────────────────────────────────────────

async def make_profile(
    db: AsyncSession,
    email: str,
    full_name: str = "Test User",
    role: UserRole = UserRole.USER,
    balance: int = 0,
) -> Profile:
    profile = Profile(
        email=email,
        password_hash=TEST_PASSWORD_HASH,
        full_name=full_name,
        role=role,
    )
    db.add(profile)
    await db.flush()
    await open_account(db, profile.id)
    if balance:
        await grant_credits(db, profile.id, balance, TransactionType.ADMIN_ADD, description="Test funds")
    await db.commit()
    await db.refresh(profile)
    return profile


async def stage_objects(db: AsyncSession, owner: Profile, bucket: str, count: int) -> list[str]:
    """Staged rows without files on disk; enough for claim/orphan bookkeeping."""
    keys = []
    for _ in range(count):
        obj = StoredObject(
            bucket=bucket,
            key=f"{owner.id}/{uuid.uuid4()}.jpg",
            owner_id=owner.id,
            content_type="image/jpeg",
            size_bytes=128,
            status=StoredObjectStatus.STAGED,
        )
        db.add(obj)
        keys.append(obj.key)
    await db.commit()
    return keys


async def make_ad(
    db: AsyncSession,
    owner: Profile,
    status: AdStatus = AdStatus.APPROVED,
    title: str = "Mountain bike",
    expires_in: Optional[timedelta] = timedelta(days=30),
    **fields,
) -> Advertisement:
    ad = Advertisement(
        user_id=owner.id,
        title=title,
        description="Barely used",
        price=Decimal("4500.00"),
        category_slug="sports",
        image_keys=[f"{owner.id}/seed.jpg"],
        status=status,
        expires_at=utcnow() + expires_in if expires_in is not None else None,
        **fields,
    )
    db.add(ad)
    await db.commit()
    await db.refresh(ad)
    await sync_ad_location(ad)
    return ad


# ── Profiles ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def user(db) -> Profile:
    return await make_profile(db, "seller@example.com", "Asha Seller")


@pytest_asyncio.fixture
async def other_user(db) -> Profile:
    return await make_profile(db, "buyer@example.com", "Ravi Buyer")


@pytest_asyncio.fixture
async def admin_user(db) -> Profile:
    return await make_profile(db, "admin@example.com", "Site Admin", role=UserRole.ADMIN)
