"""Twilio call-control webhooks.

Twilio posts form-encoded data and expects TwiML back.  Each webhook is a
separate turn; all continuity comes from the session store, keyed by
``CallSid``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request, Response
from twilio.request_validator import RequestValidator

from outreach_agent.agent import VOICE, InboundTurn
from outreach_agent.api.channels import FIRST_GATHER_TIMEOUT, gather_twiml, hangup_twiml
from outreach_agent.api.dependencies import get_orchestrator
from outreach_agent.config import PUBLIC_BASE_URL, TWILIO_AUTH_TOKEN, VALIDATE_TWILIO_SIGNATURE
from outreach_agent.prompts import APOLOGY, VOICEMAIL_MESSAGE
from outreach_agent.services.telephony import TERMINAL_CALL_STATUSES

logger = logging.getLogger(__name__)


async def verify_twilio_signature(request: Request) -> None:
    """Reject webhooks that were not signed by our Twilio account."""
    if not VALIDATE_TWILIO_SIGNATURE:
        return
    if not TWILIO_AUTH_TOKEN:
        logger.error("Signature validation enabled but TWILIO_AUTH_TOKEN is not set")
        raise HTTPException(status_code=403, detail="Invalid Twilio signature.")

    form = await request.form()
    url = f"{PUBLIC_BASE_URL}{request.url.path}" if PUBLIC_BASE_URL else str(request.url)
    signature = request.headers.get("X-Twilio-Signature", "")
    if not RequestValidator(TWILIO_AUTH_TOKEN).validate(url, dict(form), signature):
        logger.warning("Rejected webhook with bad signature for %s", request.url.path)
        raise HTTPException(status_code=403, detail="Invalid Twilio signature.")


router = APIRouter(prefix="/voice", dependencies=[Depends(verify_twilio_signature)])


def _is_machine(answered_by: str) -> bool:
    answered_by = answered_by.lower()
    return answered_by.startswith("machine") or answered_by == "fax"


@router.post("/answer", name="voice_answer")
async def answer(
    request: Request,
    call_sid: str = Form(..., alias="CallSid"),
    answered_by: str = Form("", alias="AnsweredBy"),
    from_number: str = Form("", alias="From"),
    to_number: str = Form("", alias="To"),
    direction: str = Form("", alias="Direction"),
) -> Response:
    """First webhook of a call: voicemail drop or greeting."""
    orchestrator = get_orchestrator(request)

    if _is_machine(answered_by):
        logger.info("Call %s answered by %s, leaving a message", call_sid, answered_by)
        orchestrator.end_session(call_sid, VOICE)
        return hangup_twiml(VOICEMAIL_MESSAGE)

    contact = from_number if direction == "inbound" else to_number
    result = orchestrator.greet(call_sid, VOICE, contact=contact or None)
    return gather_twiml(
        result.reply,
        action=request.app.url_path_for("voice_conversation"),
        timeout=FIRST_GATHER_TIMEOUT,
    )


@router.post("/conversation", name="voice_conversation")
async def conversation(
    request: Request,
    call_sid: str = Form(..., alias="CallSid"),
    speech_result: str = Form("", alias="SpeechResult"),
    digits: str = Form("", alias="Digits"),
) -> Response:
    """Every later turn: speech, key presses, or a silent gather timeout."""
    orchestrator = get_orchestrator(request)
    action = request.app.url_path_for("voice_conversation")
    try:
        result = await orchestrator.handle(
            InboundTurn(session_key=call_sid, channel=VOICE, text=speech_result, digits=digits)
        )
    except Exception:
        request_id = getattr(request.state, "request_id", "?")
        logger.exception("[%s] Error handling turn for call %s", request_id, call_sid)
        # Keep the caller on the line
        return gather_twiml(APOLOGY, action=action)
    if result.terminate:
        return hangup_twiml(result.reply)
    return gather_twiml(result.reply, action=action)


@router.post("/status", name="voice_status")
async def status(
    request: Request,
    call_sid: str = Form(..., alias="CallSid"),
    call_status: str = Form("", alias="CallStatus"),
) -> dict:
    """Status callback: the only reliable signal that a call is over."""
    orchestrator = get_orchestrator(request)
    logger.info("Call %s status %s", call_sid, call_status)
    if call_status.lower() in TERMINAL_CALL_STATUSES:
        orchestrator.end_session(call_sid, VOICE)
    return {"ok": True}
