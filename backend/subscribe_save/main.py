"""
Subscribe & Save - FastAPI Application

Main entry point for the pickup subscription backend.
Provides webhook ingestion, customer/staff subscription actions,
pickup management and the cron-triggered daily rollover.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from subscribe_save.config.settings import settings
from subscribe_save.infrastructure.exceptions import (
    NotFoundError,
    OwnershipError,
    StateConflictError,
    SubscribeSaveError,
    ValidationError,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info(f"Subscribe & Save backend starting in {settings.environment} mode...")

    if settings.database_url:
        from subscribe_save.infrastructure.db.database import init_db
        await init_db()
        logger.info("Database connection pool initialized")

    yield

    if settings.database_url:
        from subscribe_save.infrastructure.db.database import close_db
        await close_db()
        logger.info("Database connection pool closed")

    logger.info("Subscribe & Save backend shutting down...")


app = FastAPI(
    title="Subscribe & Save",
    description="Recurring local-pickup subscriptions with advance billing",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
    # Interactive docs stay off in production
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors (malformed payloads, bad inputs)."""
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(OwnershipError)
async def ownership_error_handler(request: Request, exc: OwnershipError):
    return JSONResponse(status_code=403, content=exc.to_dict())


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle not found errors."""
    return JSONResponse(status_code=404, content=exc.to_dict())


@app.exception_handler(StateConflictError)
async def state_conflict_error_handler(request: Request, exc: StateConflictError):
    """Handle transitions not allowed from the current status."""
    return JSONResponse(status_code=409, content=exc.to_dict())


@app.exception_handler(SubscribeSaveError)
async def general_error_handler(request: Request, exc: SubscribeSaveError):
    """Handle all other application errors."""
    logger.error(f"Unhandled application error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=exc.to_dict())


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "subscribe-save"}


# ============================================================================
# Import and register routers
# ============================================================================

from subscribe_save.api.routes import cron, pickups, plans, subscriptions, webhooks

app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(pickups.router, prefix="/api", tags=["Pickups"])
app.include_router(plans.router, prefix="/api", tags=["Plans"])
app.include_router(cron.router, prefix="/api", tags=["Cron"])
