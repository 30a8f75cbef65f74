"""
Tunesmith - AI Music Generation Tracking Service
FastAPI backend that dispatches generations to AI music providers, follows
them to completion and keeps the resulting tracks
"""

import json
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Any

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from . import __version__
from .api.dependencies import build_services
from .api.routes import callbacks, generations, notifications, rate_limits, stems, tracks
from .core.config import get_settings
from .core.errors import RateLimitExceededError, TunesmithError
from .core.logging import setup_logging
from .database.connection import database_manager
from .database.repositories.base import NotFoundError as RepositoryNotFoundError

# Global settings
settings = get_settings()

# Setup logging
logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events"""

    # Startup
    logger.info("Starting Tunesmith backend server...")

    try:
        await database_manager.initialize(use_redis=settings.RATE_LIMIT_BACKEND == "redis")
        logger.info("Database connections initialized")

        services = build_services(settings, database_manager.session_factory, redis_client=database_manager.redis)
        await services.providers.initialize()
        app.state.services = services
        logger.info(f"Providers ready: {', '.join(services.providers.services)}")

        if settings.RESUME_ON_STARTUP:
            resumed = await services.scheduler.resume_outstanding()
            logger.info(f"Outstanding generations: {resumed['resumed']} resumed, {resumed['expired']} expired")

        logger.info("Tunesmith backend started successfully")

    except Exception as e:
        logger.error(f"Failed to start Tunesmith backend: {e}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down Tunesmith backend...")

    try:
        services = app.state.services
        await services.scheduler.shutdown()
        await services.bridge.close()
        await services.storage.close()
        await services.providers.cleanup()
        logger.info("Background work stopped")

        await database_manager.close()
        logger.info("Database connections closed")

        logger.info("Tunesmith backend shutdown complete")

    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


# Create FastAPI application
app = FastAPI(
    title="Tunesmith API",
    description="AI music generation dispatch, status tracking and track management",
    version=__version__,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan
)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)


# Exception handlers
@app.exception_handler(TunesmithError)
async def tunesmith_exception_handler(request: Request, exc: TunesmithError):
    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RepositoryNotFoundError)
async def not_found_exception_handler(request: Request, exc: RepositoryNotFoundError):
    return JSONResponse(status_code=404, content={"error": "not_found", "message": str(exc), "details": {}})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled exceptions"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)}
    )


# Health check endpoint
@app.get("/health")
async def health_check(request: Request) -> Dict[str, Any]:
    """Health check endpoint"""
    try:
        backends = await database_manager.check_health()
        db_status = backends["database"] and backends["redis"] is not False

        services = getattr(request.app.state, "services", None)
        providers = {}
        if services is not None:
            for service in services.providers.services:
                provider = services.providers.get(service)
                providers[service] = "available" if provider.is_initialized else "unavailable"

        return {
            "status": "healthy" if db_status else "degraded",
            "version": __version__,
            "services": {
                "database": "healthy" if backends["database"] else "unhealthy",
                "redis": {None: "disabled", True: "healthy", False: "unhealthy"}[backends["redis"]],
                "providers": providers,
                "active_polls": len(services.scheduler.active_task_ids()) if services else 0
            }
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": str(e)
            }
        )


# API Routes
app.include_router(generations.router, prefix="/api/generations", tags=["Generations"])
app.include_router(rate_limits.router, prefix="/api/rate-limits", tags=["Rate Limits"])
app.include_router(tracks.router, prefix="/api/tracks", tags=["Tracks"])
app.include_router(stems.router, prefix="/api", tags=["Stems"])
app.include_router(callbacks.router, prefix="/api/callbacks", tags=["Callbacks"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])


# WebSocket endpoints
@app.websocket("/ws/notifications/{user_id}")
async def websocket_notifications_endpoint(websocket: WebSocket, user_id: str):
    """WebSocket endpoint for generation notifications"""

    notifier = websocket.app.state.services.notifier
    connection_id = f"{user_id}_{uuid.uuid4().hex[:8]}"

    try:
        await notifier.connect(websocket, connection_id, user_id)

        # Clients only send keepalives
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Notification WebSocket error: {e}")
    finally:
        await notifier.disconnect(connection_id)


# Static file serving (for audio kept in the local storage backend)
if settings.SERVE_AUDIO_FILES and settings.STORAGE_BACKEND == "local":
    app.mount("/audio", StaticFiles(directory=settings.STORAGE_PATH), name="audio")


# Application info
@app.get("/api/info")
async def app_info() -> Dict[str, Any]:
    """Get application information"""
    return {
        "name": "Tunesmith",
        "version": __version__,
        "description": "AI music generation tracking service",
        "features": [
            "Suno and Mureka generation dispatch",
            "Per-user rate limiting",
            "Status polling with timeout",
            "Audio localization",
            "Variant grouping",
            "Stem separation",
            "WebSocket notifications"
        ],
        "providers": settings.SUPPORTED_SERVICES,
        "tech_stack": {
            "backend": "FastAPI + Python",
            "database": "PostgreSQL + Redis",
            "http": "httpx"
        }
    }


if __name__ == "__main__":
    # Development server
    uvicorn.run(
        "tunesmith.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
        log_level="info"
    )
