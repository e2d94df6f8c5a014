"""FastAPI route definitions for the outreach agent API."""

from __future__ import annotations

import asyncio
import logging
import uuid

from fastapi import APIRouter, File, HTTPException, Request, UploadFile

from outreach_agent.agent import CHAT, InboundTurn
from outreach_agent.api import voice
from outreach_agent.api.channels import chat_html
from outreach_agent.api.dependencies import (
    get_index_manager,
    get_orchestrator,
    get_telephony,
    public_url,
)
from outreach_agent.api.schemas import (
    CallRequest,
    CallResponse,
    ChatRequest,
    ChatResponse,
    DocumentSummary,
    HealthResponse,
    IndexSummary,
    SearchResponse,
    SearchResult,
)
from outreach_agent.retrieval.corpus import save_document
from outreach_agent.retrieval.index import InvertedIndex
from outreach_agent.retrieval.search import rank_hits, search
from outreach_agent.services.metrics import metrics
from outreach_agent.services.session_store import SessionKind
from outreach_agent.services.telephony import TelephonyError

logger = logging.getLogger(__name__)

MAX_DOCUMENT_BYTES = 2 * 1024 * 1024

router = APIRouter()
router.include_router(voice.router)


def _index_summary(index: InvertedIndex) -> IndexSummary:
    return IndexSummary(
        documents=[
            DocumentSummary(name=doc.name, characters=len(doc.content))
            for doc in index.documents()
        ],
        document_count=index.document_count,
        term_count=index.term_count,
        last_built=index.last_built or None,
    )


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check(http_request: Request):
    """Health check endpoint."""
    state = http_request.app.state
    index_manager = getattr(state, "index_manager", None)
    store = getattr(state, "store", None)
    return HealthResponse(
        documents=index_manager.current.document_count if index_manager else 0,
        sessions=store.session_count if store else 0,
    )


@router.get("/metrics")
async def get_metrics():
    """Latency aggregates per stage (index build, search, generation, request)."""
    return {"stages": metrics.snapshot()}


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Send a chat message and get the agent's reply.

    ``sessionId`` keeps conversation context across requests; when the
    client does not send one, a new session is started and its id returned.
    """
    orchestrator = get_orchestrator(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    session_id = request.session_id or str(uuid.uuid4())

    try:
        result = await orchestrator.handle(
            InboundTurn(
                session_key=session_id,
                channel=CHAT,
                text=request.message,
                contact=request.phone_number,
            )
        )
    except Exception as e:
        # Full traceback stays in the server log; the client gets a generic message
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    reply = chat_html(
        result.reply,
        orchestrator.notifier.scheduling_link,
        suggested=result.suggested_appointment,
    )
    return ChatResponse(
        response=reply,
        suggested_appointment=result.suggested_appointment,
        session_id=session_id,
        ended=result.terminate,
    )


@router.post("/call", response_model=CallResponse)
async def start_call(request: CallRequest, http_request: Request):
    """Place an outbound call; Twilio then drives the ``/voice`` webhooks."""
    if not request.phone_number or not request.phone_number.strip():
        raise HTTPException(status_code=400, detail="No phone number provided")

    phone_number = request.phone_number.strip()
    telephony = get_telephony(http_request)
    orchestrator = get_orchestrator(http_request)

    try:
        call_sid = await asyncio.to_thread(
            telephony.create_call,
            phone_number,
            answer_url=public_url(http_request, "voice_answer"),
            status_url=public_url(http_request, "voice_status"),
        )
    except TelephonyError as e:
        logger.error("Error making call to %s: %s", phone_number, e)
        raise HTTPException(
            status_code=502,
            detail="Failed to initiate call. Please try again.",
        ) from e

    orchestrator.store.open(call_sid, SessionKind.CALL, contact=phone_number)
    return CallResponse(call_sid=call_sid)


@router.get("/documents", response_model=IndexSummary)
async def list_documents(http_request: Request):
    """Documents in the currently published index."""
    return _index_summary(get_index_manager(http_request).current)


@router.post("/documents", response_model=IndexSummary, status_code=201)
async def upload_document(http_request: Request, file: UploadFile = File(...)):
    """Add a document to the corpus and rebuild the index right away."""
    index_manager = get_index_manager(http_request)
    data = await file.read()
    if len(data) > MAX_DOCUMENT_BYTES:
        raise HTTPException(status_code=413, detail="Document is too large.")

    try:
        await asyncio.to_thread(
            save_document, index_manager.corpus_dir, file.filename or "", data,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    if not await index_manager.rebuild():
        raise HTTPException(status_code=500, detail="The document was stored but indexing failed.")
    return _index_summary(index_manager.current)


@router.get("/search", response_model=SearchResponse)
async def search_documents(q: str, http_request: Request):
    """Run a retrieval query against the live index, best matches first."""
    index = get_index_manager(http_request).current
    ranked = rank_hits(search(index, q))
    return SearchResponse(
        query=q,
        results=[
            SearchResult(name=name, match_count=hit.match_count, contexts=hit.contexts)
            for name, hit in ranked
        ],
    )
