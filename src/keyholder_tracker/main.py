"""Main FastAPI application for the Keyholder Tracker."""

import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .api import events, invites, relationships, requests, sessions, tasks, websockets
from .api.middleware import (
    ProblemDetailsMiddleware,
    RequestSizeLimitMiddleware,
    register_exception_handlers,
)
from .config import get_config, validate_startup_security
from .db.database import SessionLocal
from .utils.logging_config import get_logger, initialize_logging

config = get_config()

# Create FastAPI app
app = FastAPI(
    title=config.app.app_name,
    description=config.app.description,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

register_exception_handlers(app)

# Add custom middleware in correct order (innermost first)
app.add_middleware(RequestSizeLimitMiddleware)
app.add_middleware(ProblemDetailsMiddleware)

if config.app.enable_cors:
    allowed_origins = list(config.app.allowed_origins)

    # In development mode, allow additional localhost ports
    if config.server.debug:
        allowed_origins.extend([
            "http://127.0.0.1:3000",  # Development frontend
            "http://localhost:3000",
        ])

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"],
    )

# Register API routers
app.include_router(invites.router)
app.include_router(relationships.router)
app.include_router(requests.router)
app.include_router(sessions.router)
app.include_router(tasks.router)
app.include_router(events.router)
app.include_router(websockets.router)


@app.on_event("startup")
async def startup_event():
    """Initialize logging and check security settings."""
    initialize_logging()
    validate_startup_security()
    get_logger("main").info(f"{config.app.app_name} {__version__} started")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "keyholder-tracker", "version": __version__}


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint that validates database connectivity."""
    start_time = time.time()
    checks = {"database": False}
    errors = []

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError as e:
        errors.append(f"Database check failed: {e}")
    finally:
        db.close()

    all_ready = all(checks.values())
    response = {
        "status": "ready" if all_ready else "not_ready",
        "service": "keyholder-tracker",
        "version": __version__,
        "checks": checks,
        "response_time_ms": round((time.time() - start_time) * 1000, 2),
    }
    if errors:
        response["errors"] = errors

    return JSONResponse(content=response, status_code=200 if all_ready else 503)
