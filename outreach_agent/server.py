"""FastAPI server for the outreach agent.

Run with:
    uvicorn outreach_agent.server:app --reload --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from outreach_agent.agent import create_turn_orchestrator
from outreach_agent.api.routes import router
from outreach_agent.config import (
    CORPUS_DIR,
    CORS_ORIGINS,
    INDEX_CHECK_INTERVAL_SECONDS,
    SERVER_HOST,
    SERVER_PORT,
    SESSION_SWEEP_INTERVAL_SECONDS,
)
from outreach_agent.retrieval.index import IndexManager
from outreach_agent.services.metrics import metrics
from outreach_agent.services.notifier import AppointmentNotifier
from outreach_agent.services.session_store import SessionStore
from outreach_agent.services.telephony import get_telephony_client

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: build the first index and the orchestrator, start sweepers.

    Shutdown: cancel the index refresh and session sweep tasks.
    """
    store = SessionStore()
    index_manager = IndexManager(CORPUS_DIR)
    logger.info("Building document index from %s…", CORPUS_DIR)
    await index_manager.rebuild()

    telephony = get_telephony_client()
    if not telephony.is_configured:
        logger.warning("Twilio is not configured; calls and SMS are disabled")
    notifier = AppointmentNotifier(store, telephony)

    application.state.store = store
    application.state.index_manager = index_manager
    application.state.telephony = telephony
    application.state.orchestrator = create_turn_orchestrator(store, index_manager, notifier)

    tasks = [
        asyncio.create_task(index_manager.run_refresh_loop(INDEX_CHECK_INTERVAL_SECONDS)),
        asyncio.create_task(store.run_sweep_loop(SESSION_SWEEP_INTERVAL_SECONDS)),
    ]
    logger.info("Agent ready.")
    yield

    for task in tasks:
        task.cancel()
    for task in tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Outreach Agent",
    description=(
        "Voice and chat outreach assistant that answers from a private "
        "document corpus and proposes meetings."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (needed for the chat widget) ───────────────────────────────
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
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed in the ``X-Request-ID`` response header, and the
    end-to-end handling time is recorded as the ``request`` stage.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    t0 = time.perf_counter()
    response = await call_next(request)
    metrics.record_latency("request", (time.perf_counter() - t0) * 1000)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Outreach Agent",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting outreach agent server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "outreach_agent.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
