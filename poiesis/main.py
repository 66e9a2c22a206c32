"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from poiesis.api.router import api_router
from poiesis.config import get_settings
from poiesis.core.multiplexer import get_multiplexer
from poiesis.utils.logging import setup_logging

logger = structlog.get_logger()

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("poiesis.starting", port=settings.port, broker=settings.stream_broker)

    # Connect the stream broker; without one, generations are not resumable
    multiplexer = get_multiplexer()
    if multiplexer.broker is None:
        logger.warning("poiesis.broker_disabled")
    elif not await multiplexer.broker.connect():
        logger.warning("poiesis.broker_unavailable", broker=settings.stream_broker)

    yield

    # Let in-flight generations reach their finalizers
    await multiplexer.drain(timeout=settings.max_generation_seconds)
    if multiplexer.broker is not None:
        await multiplexer.broker.disconnect()

    logger.info("poiesis.shutdown")


app = FastAPI(
    title="Poiesis",
    description="Resumable chat generation service",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Stream-ID"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Service info endpoint."""
    return {"service": "poiesis", "version": VERSION}


@app.get("/health")
async def health():
    """Health check endpoint."""
    multiplexer = get_multiplexer()
    return {
        "status": "healthy",
        "service": "poiesis",
        "version": VERSION,
        "resumable_streams": multiplexer.resumable,
        "in_flight": multiplexer.in_flight,
    }
