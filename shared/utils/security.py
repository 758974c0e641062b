"""
shared/utils/security.py
Access/refresh tokens, password hashing, and Razorpay signature checks.
"""

import hashlib
import hmac
import secrets
import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from config.settings import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

REQUIRED_CLAIMS = ("sub", "role", "jti", "exp")


# ── Access tokens ─────────────────────────────────────────────

def create_access_token(user_id: str, role: str, email: str) -> tuple[str, str]:
    """
    Sign a short-lived access token for a profile.
    Returns (token, jti); the jti is what logout puts on the Redis deny-list.
    """
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "jti": jti,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
        "type": "access",
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM), jti


def decode_access_token(token: str) -> dict:
    """Verify signature and expiry. Raises JWTError for anything but a complete access token."""
    claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    if claims.get("type") != "access":
        raise JWTError("Invalid token type")
    missing = [name for name in REQUIRED_CLAIMS if not claims.get(name)]
    if missing:
        raise JWTError(f"Token is missing claims: {', '.join(missing)}")
    return claims


def seconds_until_expiry(claims: dict) -> int:
    """Deny-list TTL: a revoked jti only has to outlive the token itself."""
    return max(0, int(claims.get("exp", 0) - datetime.now(timezone.utc).timestamp()))


# ── Refresh tokens ────────────────────────────────────────────
# Opaque random strings; the database keeps only their SHA-256.

def create_refresh_token() -> tuple[str, str]:
    raw = secrets.token_urlsafe(64)
    return raw, hash_token(raw)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def refresh_token_expiry() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)


# ── Passwords ─────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def password_needs_rehash(hashed_password: str) -> bool:
    """True when the stored hash uses outdated bcrypt parameters."""
    return pwd_context.needs_update(hashed_password)


# ── Razorpay ──────────────────────────────────────────────────

def _signature_matches(secret: str, body: bytes, signature: str) -> bool:
    # unset secret: nothing verifies
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def verify_razorpay_signature(order_id: str, payment_id: str, signature: str) -> bool:
    """Checkout callback: HMAC-SHA256 of "order_id|payment_id" with the key secret."""
    return _signature_matches(
        settings.RAZORPAY_KEY_SECRET, f"{order_id}|{payment_id}".encode(), signature
    )


def verify_razorpay_webhook_signature(payload_body: bytes, signature: str) -> bool:
    """Webhook: HMAC-SHA256 of the raw body with the webhook secret."""
    return _signature_matches(settings.RAZORPAY_WEBHOOK_SECRET, payload_body, signature)
