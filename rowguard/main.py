import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from rowguard.api.router import api_router
from rowguard.config import settings
from rowguard.core.database import async_session_maker, init_db
from rowguard.core.request_cache import clear_request_cache
from rowguard.services.policy import DatabaseAuditWriter, audit_sink, policy_store
from rowguard.services.policy.loader import configured_policy_source


def setup_logging() -> None:
    """Configure application logging."""
    # Format: timestamp - level - logger name - message
    log_format = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
    date_format = "%H:%M:%S"

    # Configure root logger
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=log_format,
        datefmt=date_format,
        stream=sys.stdout,
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    # Quieten uvicorn access logs (we'll log requests ourselves)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    from rowguard.services.scheduler import scheduler

    # Startup
    setup_logging()
    logger.info("Rowguard API starting up")
    if settings.debug:
        await init_db()

    # A bad policy document must stop startup rather than serve with no rules
    policy_store.load_all(configured_policy_source(settings.policy_file))

    if settings.audit_persist_enabled:
        audit_sink.add_writer(
            DatabaseAuditWriter(async_session_maker, persist_allows=settings.audit_persist_allows)
        )
    scheduler.start()
    yield
    # Shutdown
    scheduler.stop()
    flushed = await audit_sink.flush()
    logger.info(f"Rowguard API shutting down ({flushed} audit entries flushed)")


app = FastAPI(
    title="Rowguard API",
    description="Row-level authorization policy service",
    version="0.1.0",
    lifespan=lifespan,
)

# Proxy headers middleware - trust X-Forwarded-Proto from reverse proxy
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Reset the request-scoped subject cache and log failed requests."""
    clear_request_cache()

    # Skip OPTIONS (CORS preflight) and health checks
    if request.method == "OPTIONS" or request.url.path == "/health":
        return await call_next(request)

    response = await call_next(request)

    # Only log non-2xx and policy admin calls
    path = request.url.path
    if response.status_code >= 400 or "/admin/" in path:
        logger.info(f"{request.method} {path} → {response.status_code}")

    return response


# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    registry = policy_store.snapshot()
    return {
        "status": "healthy",
        "policy_version": registry.version,
        "rule_count": registry.rule_count(),
    }
