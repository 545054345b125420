import logging
import sys
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from spinecheck.api.v1 import admin_checkins, auth, billing, checkins, landing, sms

# Ensure service loggers (dispatch, intake, channels) print to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
from spinecheck.config import settings
from spinecheck.db.session import init_db
from spinecheck.services.http_client import close_http_client, init_http_client
from prometheus_client import make_asgi_app

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def scheduled_dispatch_run():
    """In-process dispatch tick. Safe alongside the external cron trigger (events are claimed atomically)."""
    from spinecheck.services.checkin_dispatch import dispatch_due

    try:
        summary = await dispatch_due()
        if summary.selected:
            logger.info("Scheduled dispatch: %s", summary.as_dict())
    except Exception:
        logger.exception("Scheduled dispatch run failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_jwt_config()
    settings.validate_checkins_config()
    await init_db()
    init_http_client(timeout=settings.http_timeout_seconds)

    if settings.checkins_scheduler_enabled:
        scheduler.add_job(
            scheduled_dispatch_run,
            "interval",
            minutes=settings.checkins_scheduler_interval_minutes,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
    yield
    if scheduler.running:
        scheduler.shutdown()
    await close_http_client()


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)

app = FastAPI(
    title="SpineCheck API",
    description="Back-pain guide follow-up: check-in scheduling, dispatch, replies and red-flag alerts",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=500)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if getattr(settings, "enable_hsts", False):
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()] if settings.cors_origins else ["*"]
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth.router, prefix="/api/v1")
app.include_router(checkins.router, prefix="/api/v1")
app.include_router(admin_checkins.router, prefix="/api/v1")
app.include_router(sms.router, prefix="/api/v1")
app.include_router(billing.router, prefix="/api/v1")
app.include_router(landing.router)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
@limiter.exempt
def health(request: Request):
    return {"status": "ok"}
