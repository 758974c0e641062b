"""
main.py
FastAPI application entry point.
Registers all routers, middleware, startup/shutdown events.

- Structured JSON logging
- Domain errors mapped to {detail, code, request_id}
- Redis-backed rate limiting for anonymous traffic (fails open)
- Realtime notification listener started with the app
- Prometheus metrics
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from logging import LogRecord
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from prometheus_fastapi_instrumentator import Instrumentator

from config.database import close_db, get_db_context, init_db
from config.redis_client import RedisCache, close_redis, init_redis
from config.settings import settings
from shared.utils.exceptions import TrokazzError

# Service routers
from services.auth.router import router as auth_router
from services.user.router import router as user_router
from services.ads.router import router as ads_router
from services.credits.router import router as credits_router
from services.verification.router import router as verification_router
from services.notification.router import router as notification_router
from services.storage.router import router as storage_router
from services.moderation.router import router as moderation_router
from services.review.router import router as review_router
from services.ads.geo import rebuild_ad_index
from services.notification.realtime import connection_manager
from services.storage.vault import PUBLIC_BUCKETS


# ── Logging ──────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle handler."""
    logger.info(f"Starting {settings.APP_NAME}...")

    await init_db()
    logger.info("Database connected")

    await init_redis()
    logger.info("Redis connected")

    await connection_manager.start_listener()

    async with get_db_context() as db:
        indexed = await rebuild_ad_index(db)
    logger.info(f"Ad location index rebuilt ({indexed} live ads)")

    # Seed packages, levels and settings (dev only)
    if settings.APP_ENV == "development":
        await seed_initial_data()

    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} is ready")
    yield

    await connection_manager.stop_listener()
    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Trokazz Marketplace API

- **Auth**: email/password + JWT (15min) + refresh tokens
- **Ads**: listing lifecycle, boosts paid with credits, renewals, nearby search
- **Credits**: ledger, Razorpay credit packages, promo codes
- **Moderation**: unified admin queue for ads, reports and seller verification
- **Reviews**: buyers rate sellers on sold ads; ratings feed seller levels
- **Notifications**: realtime WebSocket with polling fallback

### Authentication
All protected endpoints require `Authorization: Bearer <access_token>` header.
Get a token via `/auth/signup` or `/auth/login`.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (order matters: outermost first) ────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # ── Custom Middleware ──────────────────────────────────────────

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """
        Unauthenticated: RATE_LIMIT_UNAUTH_PER_MINUTE req/min per IP.
        Authenticated traffic is limited upstream. Webhooks and health are exempt.
        """
        skip_paths = {"/health", "/credits/webhook", "/docs", "/redoc", "/openapi.json", "/metrics"}
        if request.url.path in skip_paths:
            return await call_next(request)
        if request.headers.get("Authorization", "").startswith("Bearer "):
            return await call_next(request)

        try:
            from config.redis_client import redis_client
            if redis_client:
                client_ip = request.client.host if request.client else "unknown"
                allowed = await RedisCache(redis_client).check_rate_limit(
                    f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE
                )
                if not allowed:
                    logger.warning(f"Rate limit exceeded for IP {client_ip}")
                    return JSONResponse(
                        status_code=429,
                        content={"detail": "Rate limit exceeded. Please slow down.", "code": "rate_limited"},
                        headers={"Retry-After": "60"},
                    )
        except Exception as e:
            # fail open
            logger.error(f"Rate limit check failed: {str(e)}")

        return await call_next(request)

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        """Track and expose request processing time."""
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # ── Exception Handlers ─────────────────────────────────────────

    @app.exception_handler(TrokazzError)
    async def domain_exception_handler(request: Request, exc: TrokazzError):
        request_id = getattr(request.state, "request_id", None)
        if exc.status_code >= 500:
            logger.error(f"[{request_id}] {exc.code}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code, "request_id": request_id},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler. Never expose stack traces in production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc) if settings.DEBUG else "An internal server error occurred",
                "code": "internal_error",
                "request_id": request_id,
            },
        )

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        from config.redis_client import redis_client
        from sqlalchemy import text
        from config.database import AsyncSessionLocal

        checks = {"status": "ok", "version": settings.APP_VERSION}

        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            if redis_client:
                await redis_client.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"
            checks["status"] = "degraded"

        checks["realtime_connections"] = connection_manager.get_connection_count()
        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    app.include_router(auth_router)
    app.include_router(user_router)
    app.include_router(ads_router)
    app.include_router(credits_router)
    app.include_router(verification_router)
    app.include_router(notification_router)
    app.include_router(storage_router)
    app.include_router(moderation_router)
    app.include_router(review_router)

    # Public buckets are served straight from the vault
    for bucket in sorted(PUBLIC_BUCKETS):
        directory = Path(settings.STORAGE_ROOT) / bucket
        directory.mkdir(parents=True, exist_ok=True)
        app.mount(f"/media/{bucket}", StaticFiles(directory=directory), name=f"media-{bucket}")

    # ── Prometheus Metrics ─────────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Dev Data Seeder ───────────────────────────────────────────

async def seed_initial_data():
    """Seed credit packages, seller levels and boost settings on first run (development only)."""
    from config.database import AsyncSessionLocal
    from services.credits.pricing import BOOST_DURATION_KEY, BOOST_PRICE_KEY
    from shared.models.models import CreditPackage, SiteSetting, UserLevel
    from sqlalchemy import func, select

    async with AsyncSessionLocal() as db:
        count = await db.scalar(select(func.count(CreditPackage.id)))
        if count and count > 0:
            return  # Already seeded

        for credits, price in ((50, 4900), (120, 9900), (300, 19900)):
            db.add(CreditPackage(credits=credits, price_in_paise=price, description=f"{credits} credits"))

        db.add_all([
            UserLevel(level_name="Bronze", min_transactions=0, boost_discount_percentage=0, priority=0),
            UserLevel(level_name="Silver", min_transactions=5, boost_discount_percentage=10, priority=1),
            UserLevel(level_name="Gold", min_transactions=20, min_avg_rating=4, boost_discount_percentage=20, priority=2),
        ])
        db.add(SiteSetting(key=BOOST_PRICE_KEY, value=str(settings.BOOST_BASE_COST), description="Credits per boost"))
        db.add(SiteSetting(key=BOOST_DURATION_KEY, value=str(settings.BOOST_DURATION_DAYS), description="Days a boost lasts"))

        await db.commit()
        logger.info("Seeded credit packages, seller levels and boost settings")


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )
