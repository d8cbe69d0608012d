"""
FastAPI application main module.
Wires the job store, dispatcher and reconciliation scheduler into the app lifespan
and exposes the jobs administration API.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import os
from contextlib import asynccontextmanager
from typing import Optional

import redis
from sqlalchemy import text

from aftermeet.api.v1 import api_router
from aftermeet.utils import setup_logging, get_logger
from aftermeet.utils.observability import ensure_request_id, REQUEST_ID_HEADER
from aftermeet.database import engine, Base, SessionLocal
from aftermeet.config import (
    CLEANUP_SETTINGS,
    ENABLE_BACKGROUND_WORKERS,
    QUEUE_NAMES,
    SCHEDULER_SETTINGS,
)
from aftermeet.integrations import (
    RecallClient,
    OpenAIContentGenerator,
    SocialPublisherService,
    GoogleCalendarClient,
)
from aftermeet.jobs.context import Collaborators
from aftermeet.jobs.dispatcher import JobDispatcher
from aftermeet.jobs.handlers import default_registry
from aftermeet.jobs.store import JobStore
from aftermeet.scheduler.reconciler import Reconciler
from aftermeet.scheduler.ticker import IntervalScheduler
from aftermeet.services.jobs_service import JobsService

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE") or None,
    enable_console=True
)

logger = get_logger(__name__)

_dispatcher: Optional[JobDispatcher] = None
_scheduler: Optional[IntervalScheduler] = None


def check_redis_health() -> bool:
    """Check if Redis is available for sweep locks."""
    redis_url = str(SCHEDULER_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
    timeout = float(SCHEDULER_SETTINGS.get("redis_health_check_timeout", 2.0))  # type: ignore[arg-type]
    try:
        redis_client = redis.from_url(redis_url, socket_connect_timeout=timeout)
        redis_client.ping()
        logger.info("Redis health check: Redis is available", url=redis_url)
        return True
    except (redis.RedisError, ConnectionError) as e:
        logger.warning("Redis health check: Redis is unavailable", error=str(e))
        return False


def build_collaborators() -> Collaborators:
    """Production clients for the handlers."""
    return Collaborators(
        session_factory=SessionLocal,
        recording=RecallClient(),
        content=OpenAIContentGenerator(),
        publisher=SocialPublisherService(),
        calendar=GoogleCalendarClient(SessionLocal),
        temp_dir=str(CLEANUP_SETTINGS["temp_dir"]),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Application startup initiated")

    global _dispatcher, _scheduler
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")

        store = JobStore(SessionLocal)
        jobs_service = JobsService(store)
        # expose the service in app state so endpoints don't import main
        app.state.jobs_service = jobs_service  # type: ignore[attr-defined]

        if ENABLE_BACKGROUND_WORKERS:
            if SCHEDULER_SETTINGS.get("use_redis_lock", False) and not check_redis_health():
                logger.warning("Redis sweep lock enabled but Redis is unavailable. Using local locks as fallback.")
            _dispatcher = JobDispatcher(store, default_registry(), build_collaborators())
            _dispatcher.start()
            _scheduler = Reconciler(jobs_service, SessionLocal).build_scheduler()
            _scheduler.start()
            logger.info("Job dispatcher + reconciliation scheduler started")
        else:
            logger.info("Background workers disabled; API only")
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if _scheduler:
            _scheduler.stop()
            _scheduler = None
        if _dispatcher:
            _dispatcher.stop()
            _dispatcher = None
        logger.info("Application shutdown completed")

app = FastAPI(
    title="AfterMeet Orchestrator",
    description="""
    Background job orchestration for the meeting-to-social-media pipeline.

    ## Features
    * **Recording bots** - Scheduled ahead of upcoming calendar meetings
    * **Content generation** - Per-platform drafts from meeting transcripts
    * **Social publishing** - LinkedIn and Facebook with bounded retries
    * **Reconciliation sweeps** - Periodic scheduling, pruning, retries and cleanup
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

# Request ID and logging middleware
@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = ensure_request_id(request.headers)
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        user_agent=request.headers.get("User-Agent"),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time

    response.headers[REQUEST_ID_HEADER] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    response.headers["X-Content-Type-Options"] = "nosniff"

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")
    errors = exc.errors()

    logger.warning(
        "Request validation failed",
        errors=errors,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "details": [{k: v for k, v in err.items() if k in ("loc", "msg", "type")} for err in errors],
            "request_id": request_id
        }
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "request_id": request_id
        }
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )

@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "service": "aftermeet-orchestrator",
        "version": "1.0.0",
        "timestamp": time.time(),
        "background_workers": bool(ENABLE_BACKGROUND_WORKERS),
        "sweep_lock": "redis" if SCHEDULER_SETTINGS.get("use_redis_lock", False) else "local",
    }

@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check(request: Request):
    """Detailed health check with database, redis and queue status."""
    health_status = {
        "status": "healthy",
        "service": "aftermeet-orchestrator",
        "version": "1.0.0",
        "timestamp": time.time(),
        "checks": {}
    }

    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    if SCHEDULER_SETTINGS.get("use_redis_lock", False):
        healthy = check_redis_health()
        health_status["checks"]["redis"] = "healthy" if healthy else "unavailable"
        if not healthy and health_status["status"] == "healthy":
            health_status["status"] = "degraded"

    jobs_service = getattr(request.app.state, "jobs_service", None)
    if jobs_service is not None:
        try:
            health_status["checks"]["queues"] = {
                name: {k: v for k, v in jobs_service.queue_status(name).items() if k != "name"}
                for name in QUEUE_NAMES
            }
        except Exception as e:  # pragma: no cover
            health_status["checks"]["queues"] = f"error: {e}"
            health_status["status"] = "degraded"

    return health_status

@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "AfterMeet Orchestrator API",
        "version": "1.0.0",
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }

app.include_router(api_router, prefix="/api/v1")

if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "aftermeet.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["aftermeet"],
        log_level="info",
        access_log=True
    )
