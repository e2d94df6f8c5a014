"""LangGraph turn orchestrator for voice calls and web chat.

Architecture:
  Every inbound turn (a Twilio webhook or a chat POST) is a fresh, stateless
  invocation.  :class:`TurnOrchestrator` rehydrates the session from the
  :class:`SessionStore`, runs one pass of a compiled StateGraph and hands a
  :class:`TurnResult` back to the channel adapter.

    1. **screen**    - hang-up digit / phrase -> terminate; empty input ->
                       re-prompt; pressed digits become a text marker
    2. **context**   - session history + excerpts from the document index
    3. **generate**  - one chat-model call with the templated prompt; the
                       scheduling marker is detected and stripped
    4. **record**    - append the exchange to history (dropped if the
                       session ended while we were generating)
    5. **notify**    - only when the marker was present: send the booking
                       link once and acknowledge it in the reply
    6. **terminate** - close the session with a closing utterance

  Routing:
    screen -> (hang-up?)   -> terminate -> END
    screen -> (silence?)   -> END
    screen -> (input)      -> context -> generate -> (failed?) -> END
                                               -> (marker only?) -> notify -> END
                                               -> record -> (marker?) -> notify -> END
                                                        -> END

  The graph has no checkpointer.  The SessionStore is the only place
  conversation state lives between turns.
"""

from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage
from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from outreach_agent.config import (
    ANTHROPIC_API_KEY,
    CONTEXT_CHAR_BUDGET,
    GENERATION_MAX_TOKENS,
    GENERATION_TEMPERATURE,
    HANGUP_DIGIT,
    MAX_SILENT_TURNS,
    MODEL_NAME,
)
from outreach_agent.prompts import (
    APOLOGY,
    CLOSING,
    GREETINGS,
    REPROMPTS,
    SCHEDULING_MARKER,
    build_prompt,
)
from outreach_agent.retrieval.index import IndexManager
from outreach_agent.retrieval.search import build_context, search
from outreach_agent.services.metrics import metrics
from outreach_agent.services.notifier import AppointmentNotifier, NotificationResult
from outreach_agent.services.session_store import ConversationTurn, SessionKind, SessionStore

logger = logging.getLogger(__name__)

VOICE = "voice"
CHAT = "chat"
_KIND_BY_CHANNEL = {VOICE: SessionKind.CALL, CHAT: SessionKind.WEB}

_HANGUP_RE = re.compile(r"\b(?:goodbye|bye|hang up|end call)\b", re.IGNORECASE)


class TurnPhase(str, enum.Enum):
    GREETING = "greeting"
    AWAITING_INPUT = "awaiting_input"
    PROCESSING = "processing"
    RESPONDING = "responding"
    TERMINATED = "terminated"


class TurnAction(str, enum.Enum):
    CONTINUE = "continue"
    REPROMPT = "reprompt"
    TERMINATE = "terminate"


@dataclass(frozen=True)
class InboundTurn:
    """One unit of user input as delivered by a channel."""

    session_key: str
    channel: str
    text: str = ""
    digits: str = ""
    contact: str | None = None


@dataclass(frozen=True)
class TurnResult:
    """What the channel adapter should say and whether to keep listening."""

    action: TurnAction
    reply: str
    suggested_appointment: bool = False
    notification: NotificationResult | None = None

    @property
    def terminate(self) -> bool:
        return self.action is TurnAction.TERMINATE

    @property
    def phase(self) -> TurnPhase:
        return TurnPhase.TERMINATED if self.terminate else TurnPhase.AWAITING_INPUT


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict):
    """The state that flows through the graph for a single turn.

    ``token`` identifies the session incarnation the turn started in, so
    ``record`` can tell whether the session was torn down meanwhile.
    """

    session_key: str
    channel: str
    text: str
    digits: str
    token: str
    phase: str
    action: str
    history: list[ConversationTurn]
    retrieved_context: str
    reply: str
    suggested_appointment: bool
    generation_failed: bool
    recorded: bool
    notification: NotificationResult | None


# ── Pure helpers ─────────────────────────────────────────────────────


def is_hangup_request(text: str, digits: str = "", hangup_digit: str = HANGUP_DIGIT) -> bool:
    """True for the hang-up key or a goodbye-style phrase."""
    return digits.strip() == hangup_digit or bool(_HANGUP_RE.search(text or ""))


def compose_input(text: str, digits: str = "") -> str:
    """Merge speech and key presses into the text the model sees."""
    parts = []
    if text and text.strip():
        parts.append(text.strip())
    if digits and digits.strip():
        parts.append(f"[Button pressed: {digits.strip()}]")
    return " ".join(parts)


def parse_reply(raw: str) -> tuple[str, bool]:
    """Strip the scheduling marker.  Returns ``(visible_text, suggested)``."""
    suggested = SCHEDULING_MARKER in raw
    visible = raw.replace(SCHEDULING_MARKER, "")
    return re.sub(r"[ \t]{2,}", " ", visible).strip(), suggested


def _session_kind(state: TurnState) -> SessionKind:
    return _KIND_BY_CHANNEL[state["channel"]]


def _message_text(message) -> str:
    """Flatten a chat-model message (string or content blocks) to text."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


# ── LLM builder ──────────────────────────────────────────────────────


def _build_llm() -> ChatAnthropic:
    """Build the chat model used for every reply."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=GENERATION_TEMPERATURE,
        max_tokens=GENERATION_MAX_TOKENS,  # Replies are spoken; keep them short
    )


# ── Node: screen ─────────────────────────────────────────────────────


def _make_screen_node(store: SessionStore, max_silent_turns: int = MAX_SILENT_TURNS):
    """Create the node that decides whether a turn needs the model at all.

    Termination is checked before anything else, so a goodbye never costs
    a retrieval or a generation call.
    """

    def screen_node(state: TurnState) -> dict:
        if is_hangup_request(state["text"], state["digits"]):
            logger.info("Hang-up requested on session %s", state["session_key"])
            return {"action": TurnAction.TERMINATE.value}

        user_input = compose_input(state["text"], state["digits"])
        if not user_input:
            silent = store.note_silence(state["session_key"], _session_kind(state))
            if state["channel"] == VOICE and silent >= max_silent_turns:
                logger.info(
                    "Session %s silent for %d turns, ending call",
                    state["session_key"], silent,
                )
                return {"action": TurnAction.TERMINATE.value}
            return {
                "action": TurnAction.REPROMPT.value,
                "phase": TurnPhase.AWAITING_INPUT.value,
                "reply": REPROMPTS[state["channel"]],
            }

        return {
            "action": TurnAction.CONTINUE.value,
            "phase": TurnPhase.PROCESSING.value,
            "text": user_input,
        }

    return screen_node


# ── Node: context ────────────────────────────────────────────────────


def _make_context_node(
    store: SessionStore,
    index_manager: IndexManager,
    budget: int = CONTEXT_CHAR_BUDGET,
):
    """Create the node that gathers history and retrieved excerpts."""

    def context_node(state: TurnState) -> dict:
        results = search(index_manager.current, state["text"])
        return {
            "history": store.get_history(state["session_key"], _session_kind(state)),
            "retrieved_context": build_context(results, budget),
        }

    return context_node


# ── Node: generate ───────────────────────────────────────────────────


def _make_generate_node(llm, scheduling_link: str):
    """Create the node that asks the chat model for a reply.

    Failures never propagate: the caller hears an apology and the turn is
    flagged so nothing gets written to history.  A reply that is nothing
    but the scheduling marker is passed on with empty text and is not
    recorded either.
    """

    async def generate_node(state: TurnState) -> dict:
        prompt = build_prompt(
            state["history"],
            state["retrieved_context"],
            state["text"],
            state["channel"],
            scheduling_link=scheduling_link,
        )
        t0 = time.perf_counter()
        try:
            response = await llm.ainvoke(
                [SystemMessage(content=prompt), HumanMessage(content=state["text"])]
            )
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_latency("generation", elapsed)
            metrics.record_failure(
                "anthropic", "generate",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            logger.warning("Generation failed for session %s: %s", state["session_key"], exc)
            return {
                "phase": TurnPhase.RESPONDING.value,
                "reply": APOLOGY,
                "generation_failed": True,
            }

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_latency("generation", elapsed)
        metrics.record_success("anthropic", "generate", latency_ms=elapsed)

        reply, suggested = parse_reply(_message_text(response).strip())
        if not reply:
            if suggested:
                # Marker only: the acknowledgement becomes the whole reply.
                logger.info("Model sent only the scheduling marker for %s", state["session_key"])
                return {
                    "phase": TurnPhase.RESPONDING.value,
                    "reply": "",
                    "suggested_appointment": True,
                }
            logger.warning("Model returned an empty reply for session %s", state["session_key"])
            return {
                "phase": TurnPhase.RESPONDING.value,
                "reply": APOLOGY,
                "generation_failed": True,
            }

        logger.debug(
            "Generated reply for %s in %.0fms (appointment=%s)",
            state["session_key"], elapsed, suggested,
        )
        return {
            "phase": TurnPhase.RESPONDING.value,
            "reply": reply,
            "suggested_appointment": suggested,
        }

    return generate_node


# ── Node: record ─────────────────────────────────────────────────────


def _make_record_node(store: SessionStore):
    """Create the node that appends the finished exchange to history."""

    def record_node(state: TurnState) -> dict:
        turn = ConversationTurn(
            user=state["text"],
            assistant=state["reply"],
            timestamp=int(time.time()),
        )
        recorded = store.append(
            state["session_key"], _session_kind(state), turn, token=state["token"],
        )
        return {"recorded": recorded}

    return record_node


# ── Node: notify ─────────────────────────────────────────────────────


def _make_notify_node(notifier: AppointmentNotifier):
    """Create the node that delivers the booking link (single attempt)."""

    async def notify_node(state: TurnState) -> dict:
        result = await notifier.notify(state["session_key"], _session_kind(state))
        ack = notifier.acknowledgement(result)
        return {
            "reply": f"{state['reply']} {ack}".strip(),
            "notification": result,
        }

    return notify_node


# ── Node: terminate ──────────────────────────────────────────────────


def _make_terminate_node(store: SessionStore):
    """Create the node that closes the session for good."""

    def terminate_node(state: TurnState) -> dict:
        store.destroy(state["session_key"], _session_kind(state))
        return {
            "action": TurnAction.TERMINATE.value,
            "phase": TurnPhase.TERMINATED.value,
            "reply": CLOSING,
        }

    return terminate_node


# ── Conditional edges ────────────────────────────────────────────────


def route_after_screen(state: TurnState) -> str:
    action = state.get("action")
    if action == TurnAction.TERMINATE.value:
        return "terminate"
    if action == TurnAction.REPROMPT.value:
        return END
    return "context"


def route_after_generate(state: TurnState) -> str:
    if state.get("generation_failed"):
        return END
    if not state.get("reply"):
        return "notify"  # nothing visible to remember
    return "record"


def route_after_record(state: TurnState) -> str:
    if state.get("recorded") and state.get("suggested_appointment"):
        return "notify"
    return END


# ── Graph assembly ───────────────────────────────────────────────────


def create_turn_graph(
    store: SessionStore,
    index_manager: IndexManager,
    notifier: AppointmentNotifier,
    llm=None,
):
    """Build and compile the per-turn StateGraph.

    Returns a compiled graph that can be invoked with a full
    :class:`TurnState` via ``await graph.ainvoke(state)``.
    """
    llm = llm or _build_llm()
    graph = StateGraph(TurnState)

    graph.add_node("screen", _make_screen_node(store))
    graph.add_node("context", _make_context_node(store, index_manager))
    graph.add_node("generate", _make_generate_node(llm, notifier.scheduling_link))
    graph.add_node("record", _make_record_node(store))
    graph.add_node("notify", _make_notify_node(notifier))
    graph.add_node("terminate", _make_terminate_node(store))

    graph.set_entry_point("screen")
    graph.add_conditional_edges(
        "screen",
        route_after_screen,
        {"terminate": "terminate", "context": "context", END: END},
    )
    graph.add_edge("context", "generate")
    graph.add_conditional_edges(
        "generate",
        route_after_generate,
        {"record": "record", "notify": "notify", END: END},
    )
    graph.add_conditional_edges(
        "record", route_after_record, {"notify": "notify", END: END},
    )
    graph.add_edge("notify", END)
    graph.add_edge("terminate", END)

    compiled = graph.compile()
    logger.debug("Turn graph compiled (model: %s)", MODEL_NAME)
    return compiled


# ── Orchestrator ─────────────────────────────────────────────────────


class TurnOrchestrator:
    """Entry point the HTTP layer (and the CLI) talk to."""

    def __init__(
        self,
        store: SessionStore,
        index_manager: IndexManager,
        notifier: AppointmentNotifier,
        llm=None,
    ) -> None:
        self.store = store
        self.index_manager = index_manager
        self.notifier = notifier
        self._graph = create_turn_graph(store, index_manager, notifier, llm=llm)

    def greet(self, session_key: str, channel: str, *, contact: str | None = None) -> TurnResult:
        """Open the session and return the fixed introduction.

        The greeting is not a user turn and is never written to history.
        """
        self.store.open(session_key, _KIND_BY_CHANNEL[channel], contact=contact)
        logger.info("Greeting session %s (%s)", session_key, channel)
        return TurnResult(TurnAction.CONTINUE, GREETINGS[channel])

    def end_session(self, session_key: str, channel: str = VOICE) -> bool:
        """Tear down a session whose channel has gone away (e.g. call completed)."""
        return self.store.destroy(session_key, _KIND_BY_CHANNEL[channel])

    async def handle(self, turn: InboundTurn) -> TurnResult:
        """Run one turn through the graph."""
        kind = _KIND_BY_CHANNEL[turn.channel]
        if self.store.is_closed(turn.session_key, kind):
            logger.info("Turn for closed session %s refused", turn.session_key)
            return TurnResult(TurnAction.TERMINATE, CLOSING)

        session = self.store.open(turn.session_key, kind, contact=turn.contact)
        state: TurnState = {
            "session_key": turn.session_key,
            "channel": turn.channel,
            "text": turn.text or "",
            "digits": turn.digits or "",
            "token": session.token,
            "phase": TurnPhase.AWAITING_INPUT.value,
            "action": TurnAction.CONTINUE.value,
            "history": [],
            "retrieved_context": "",
            "reply": "",
            "suggested_appointment": False,
            "generation_failed": False,
            "recorded": False,
            "notification": None,
        }
        final = await self._graph.ainvoke(state)

        return TurnResult(
            action=TurnAction(final["action"]),
            reply=final["reply"],
            suggested_appointment=final["suggested_appointment"],
            notification=final.get("notification"),
        )


def create_turn_orchestrator(
    store: SessionStore,
    index_manager: IndexManager,
    notifier: AppointmentNotifier,
) -> TurnOrchestrator:
    """Wire the orchestrator to the production chat model."""
    return TurnOrchestrator(store, index_manager, notifier, llm=_build_llm())
