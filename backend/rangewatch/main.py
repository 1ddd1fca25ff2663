"""Rangewatch Ludus Range Dashboard - FastAPI Application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .cache import redis_cache
from .config import get_config, settings
from .errors import LudusAPIError, TransportError
from .polling import operations, scheduler
from .routers import (
    diagnostics_router,
    ranges_router,
    templates_router,
    testing_router,
    topology_router,
)
from .websocket import websocket_endpoint, ws_manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    # Startup
    await redis_cache.connect()

    # Start polling scheduler if Ludus is configured
    config = get_config()
    if config.ludus.url:
        scheduler.start()
    else:
        logger.warning("Ludus URL not configured; background polling disabled")

    yield

    # Shutdown
    await scheduler.stop()
    await operations.stop_all()
    await redis_cache.disconnect()


app = FastAPI(
    title="Rangewatch",
    description="Ludus Range Dashboard API",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS configuration
origins = ["*"] if settings.dev_mode else []
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LudusAPIError)
async def ludus_api_error_handler(request: Request, exc: LudusAPIError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(TransportError)
async def transport_error_handler(request: Request, exc: TransportError):
    logger.warning("Ludus unreachable for %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"error": exc.message})


# Include routers
app.include_router(ranges_router, prefix="/api", tags=["ranges"])
app.include_router(templates_router, prefix="/api", tags=["templates"])
app.include_router(testing_router, prefix="/api", tags=["testing"])
app.include_router(topology_router, prefix="/api", tags=["topology"])
app.include_router(diagnostics_router, prefix="/api", tags=["diagnostics"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "rangewatch",
        "redis": await redis_cache.ping() if redis_cache.connected else False,
        "websocket_clients": ws_manager.connection_count,
        "tracked_operations": len(operations.owners()),
    }


# WebSocket endpoint
app.websocket("/ws/updates")(websocket_endpoint)
