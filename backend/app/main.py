"""Payment settlement backend - FastAPI application."""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import get_settings
from .logging_config import get_logger, setup_logging
from .payments import build_cache
from .rate_limit import limiter
from .routes import payments_router

logger = get_logger("settlement.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Starting settlement backend (debug=%s)", settings.debug)

    # One pooled client for all chain RPC; httpx.AsyncClient is safe for concurrent use
    app.state.http_client = httpx.AsyncClient(timeout=settings.rpc_timeout_seconds)
    app.state.settlement_cache = build_cache(
        settings.redis_url, settings.payment_cache_ttl_seconds
    )
    yield
    # Shutdown
    await app.state.settlement_cache.close()
    await app.state.http_client.aclose()
    logger.info("Shutting down settlement backend")


app = FastAPI(
    title="Payment Settlement API",
    description="Cross-chain USDC payment verification and settlement",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(payments_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "service": "settlement-backend",
        "version": "0.1.0",
        "status": "ok",
    }


@app.get("/health")
async def health():
    """Detailed health check with actual database verification."""
    from .database import get_supabase_client
    from .payments.ledger import PAYMENT_EVENTS_TABLE

    db_status = "disconnected"
    try:
        db = get_supabase_client()
        # Simple query to verify connection
        db.table(PAYMENT_EVENTS_TABLE).select("id").limit(1).execute()
        db_status = "connected"
    except Exception as e:
        logger.warning("Health check database query failed: %s", e)
        db_status = f"error: {str(e)[:50]}"

    overall_status = "healthy" if db_status == "connected" else "degraded"

    return {
        "status": overall_status,
        "database": db_status,
    }
