"""FastAPI server for the dental booking voice-assistant backend.

Run with:
    uvicorn dental_booking.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from dental_booking.api.routes import router, webhook_router
from dental_booking.config import CORS_ORIGINS, DATABASE_URL, SERVER_HOST, SERVER_PORT
from dental_booking.orchestrator import create_orchestrator
from dental_booking.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: create the schema and wire the orchestrator once."""
    logger.info("Building booking orchestrator...")
    application.state.orchestrator = create_orchestrator(DATABASE_URL)
    logger.info("Orchestrator ready.")
    yield
    metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Dental Booking Assistant",
    description=(
        "Tool webhook backend for a dental-practice voice assistant: "
        "finds slots, identifies patients and books through NexHealth."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID to every request for log correlation.

    The voice platform may send its own ``X-Request-ID``; otherwise one
    is generated.  Either way it is echoed back in the response headers.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")
app.include_router(webhook_router)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Dental Booking Assistant",
        "version": "1.0.0",
        "webhook": "/tool-webhook",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting dental booking server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "dental_booking.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
