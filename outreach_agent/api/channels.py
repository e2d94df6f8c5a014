"""Channel adapters: TwiML for calls, HTML-augmented text for chat."""

from __future__ import annotations

import html
import re

from fastapi import Response
from twilio.twiml.voice_response import VoiceResponse

from outreach_agent.config import VOICE

FIRST_GATHER_TIMEOUT = 3
GATHER_TIMEOUT = 5

_TAG_RE = re.compile(r"<[^>]+>")
_ANCHOR_RE = re.compile(r"(<a\b[^>]*>.*?</a>)", re.IGNORECASE | re.DOTALL)


def speakable(text: str) -> str:
    """Drop markup the model may have produced; it must not be read aloud."""
    return re.sub(r"\s{2,}", " ", html.unescape(_TAG_RE.sub(" ", text))).strip()


def twiml_response(response: VoiceResponse) -> Response:
    return Response(content=str(response), media_type="application/xml")


def gather_twiml(
    text: str,
    *,
    action: str,
    timeout: int = GATHER_TIMEOUT,
    voice: str = VOICE,
) -> Response:
    """Say *text* while listening for speech or keys, then come back.

    The trailing redirect fires only when the gather times out with no
    input, which the conversation webhook treats as a silent turn.
    """
    response = VoiceResponse()
    gather = response.gather(
        input="speech dtmf",
        action=action,
        method="POST",
        timeout=timeout,
        speech_timeout="auto",
        barge_in=True,
    )
    gather.say(speakable(text), voice=voice)
    response.redirect(action, method="POST")
    return twiml_response(response)


def hangup_twiml(text: str | None = None, *, voice: str = VOICE) -> Response:
    """Optionally say *text*, then end the call."""
    response = VoiceResponse()
    if text:
        response.say(speakable(text), voice=voice)
    response.hangup()
    return twiml_response(response)


def chat_html(text: str, scheduling_link: str, *, suggested: bool) -> str:
    """Make the scheduling link clickable in a chat reply.

    Bare occurrences outside existing anchors become anchors; if an
    appointment was suggested but the link is missing altogether, one is
    appended.
    """
    anchor = f'<a href="{scheduling_link}" target="_blank">Schedule a meeting here</a>'
    # Even indices are plain text, odd indices are existing anchors
    pieces = _ANCHOR_RE.split(text)
    linked = any(scheduling_link in existing for existing in pieces[1::2])
    for i in range(0, len(pieces), 2):
        if scheduling_link in pieces[i]:
            pieces[i] = pieces[i].replace(scheduling_link, anchor)
            linked = True
    if not linked and suggested:
        return f"{text} {anchor}".strip()
    return "".join(pieces)
