"""
ISPNet Provisioning - Main Application Entry Point
"""
import logging
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from ispnet.extensions import limiter
from ispnet.config import settings
from ispnet.database import Database
from ispnet.errors import IPAMError
from ispnet.routers import subnets, ip_addresses, provisioning, network_devices, system_events as system_events_router
from ispnet.services import events
from ispnet.services.reconcile import reconcile_utilization, sweep_stale_sync

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _acquire_scheduler_lock(job_id: str, ttl_seconds: int) -> bool:
    """SETNX lock shared by the uvicorn workers. False means another worker
    holds it for this interval; an unreachable Redis counts as acquired.
    """
    import redis.asyncio as aioredis
    try:
        r = aioredis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        acquired = await r.set(f"sched:{job_id}", "1", nx=True, ex=ttl_seconds)
        await r.aclose()
        return bool(acquired)
    except Exception as e:
        logger.debug("Scheduler lock for %s unavailable, running anyway: %s", job_id, e)
        return True


async def scheduled_reconcile(database: Database):
    """Rewrite cached subnet counters from the ledger."""
    ttl = settings.RECONCILE_INTERVAL_MINUTES * 60 - 30
    if not await _acquire_scheduler_lock("reconcile_utilization", ttl_seconds=max(ttl, 30)):
        return
    try:
        await reconcile_utilization(database.session_factory)
    except Exception as e:
        logger.error("Utilization reconcile failed: %s", e)
        await events.record_detached(
            database.session_factory, "error", "reconcile", "job_failed",
            f"Utilization reconcile failed: {e}",
        )


async def scheduled_sync_sweep(database: Database):
    """Flag router sync rows whose assignment has not been confirmed."""
    if not await _acquire_scheduler_lock("sync_sweep", ttl_seconds=270):
        return
    try:
        await sweep_stale_sync(database.session_factory)
    except Exception as e:
        logger.error("Stale sync sweep failed: %s", e)
        await events.record_detached(
            database.session_factory, "error", "reconcile", "job_failed",
            f"Stale sync sweep failed: {e}",
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)
    database = Database(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    await database.create_all()
    app.state.database = database

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        # max_instances=1 keeps a slow run from overlapping the next one in
        # this worker; the Redis lock covers the other workers.
        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            scheduled_reconcile,
            "interval",
            minutes=settings.RECONCILE_INTERVAL_MINUTES,
            id="reconcile_utilization",
            args=[database],
            max_instances=1,
        )
        scheduler.add_job(
            scheduled_sync_sweep,
            "interval",
            seconds=300,
            id="sync_sweep",
            args=[database],
            max_instances=1,
        )
        scheduler.start()
        logger.info("Scheduled tasks started")

    yield

    # Shutdown
    if scheduler is not None:
        scheduler.shutdown()
    await database.dispose()
    logger.info("%s shutting down", settings.APP_NAME)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(IPAMError)
async def ipam_error_handler(request: Request, exc: IPAMError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _allowed_origins() -> list:
    """Explicit origin list, empty when ALLOWED_ORIGINS is the wildcard."""
    if settings.ALLOWED_ORIGINS == "*":
        return []
    return [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins() or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# CSRF Origin validation middleware
@app.middleware("http")
async def csrf_origin_check(request: Request, call_next):
    origin = request.headers.get("origin")
    if origin and request.method not in ("GET", "HEAD", "OPTIONS"):
        allowed = _allowed_origins()
        if allowed and origin not in allowed:
            logger.warning("Rejected %s %s from origin %s", request.method, request.url.path, origin)
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"detail": "Origin not allowed"},
            )
    return await call_next(request)


# Security headers middleware
@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if settings.HTTPS_ONLY:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# Request ID middleware for log correlation (outermost: added last)
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
    token = events.request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        events.request_id_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


# Routers
app.include_router(network_devices.router)
app.include_router(subnets.router)
app.include_router(ip_addresses.router)
app.include_router(provisioning.router)
app.include_router(system_events_router.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": settings.APP_VERSION}
