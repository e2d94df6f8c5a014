"""Thread-safe in-memory store for conversation sessions.

Design decisions
────────────────
• One store, two kinds of session: **call** sessions keyed by the Twilio
  ``CallSid`` and **web** sessions keyed by the client's ``sessionId``.
  The two live in separate keyspaces, so every lookup names its kind.
• **deque(maxlen=N)** per session so the history is FIFO-truncated on
  append and never exceeds its capacity.
• **threading.Lock** around every map access; no I/O happens while the
  lock is held.
• Every session incarnation carries a random ``token``.  A turn that was in
  flight while its session got destroyed (caller hung up) presents a stale
  token on append and is discarded instead of resurrecting dead history.
• Destroyed keys leave a **tombstone** so late webhooks for a finished call
  or chat are refused rather than silently starting over.
• Purely ephemeral: state is lost on process restart.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field

from outreach_agent.config import (
    CALL_SESSION_IDLE_SECONDS,
    MAX_HISTORY_TURNS,
    SESSION_SWEEP_INTERVAL_SECONDS,
    WEB_SESSION_IDLE_SECONDS,
)

logger = logging.getLogger(__name__)


class SessionKind(str, enum.Enum):
    CALL = "call"
    WEB = "web"


@dataclass(frozen=True)
class ConversationTurn:
    user: str
    assistant: str
    timestamp: int


@dataclass
class Session:
    key: str
    kind: SessionKind
    history: deque[ConversationTurn]
    contact: str | None = None
    silent_turns: int = 0
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    token: str = field(default_factory=lambda: uuid.uuid4().hex)


class SessionStore:
    """Bounded conversation histories with explicit lifecycle hooks.

    Every operation takes the session *kind* as well as its *key*: a chat
    ``sessionId`` that happens to equal a live ``CallSid`` is a different
    session.
    """

    def __init__(
        self,
        max_turns: int = MAX_HISTORY_TURNS,
        *,
        web_idle_seconds: float = WEB_SESSION_IDLE_SECONDS,
        call_idle_seconds: float = CALL_SESSION_IDLE_SECONDS,
    ) -> None:
        self._max_turns = max_turns
        self._web_idle_seconds = web_idle_seconds
        self._call_idle_seconds = call_idle_seconds
        self._sessions: dict[SessionKind, dict[str, Session]] = {kind: {} for kind in SessionKind}
        # kind → key → time the session was destroyed
        self._closed: dict[SessionKind, dict[str, float]] = {kind: {} for kind in SessionKind}
        self._lock = threading.Lock()

    # ── Lifecycle ────────────────────────────────────────────────────

    def open(
        self,
        key: str,
        kind: SessionKind,
        *,
        contact: str | None = None,
    ) -> Session:
        """Return the live session for *key*, creating it if needed.

        A known *contact* is attached (or updated) on every open.
        """
        with self._lock:
            sessions = self._sessions[kind]
            session = sessions.get(key)
            if session is None:
                session = Session(
                    key=key,
                    kind=kind,
                    history=deque(maxlen=self._max_turns),
                    contact=contact,
                )
                sessions[key] = session
                self._closed[kind].pop(key, None)
                logger.debug("Session %s (%s) created", key, kind.value)
            elif contact:
                session.contact = contact
            session.last_activity = time.time()
            return session

    def destroy(self, key: str, kind: SessionKind) -> bool:
        """Drop the session and refuse further turns for *key*."""
        with self._lock:
            existed = self._sessions[kind].pop(key, None) is not None
            self._closed[kind][key] = time.time()
        if existed:
            logger.info("Session %s (%s) destroyed", key, kind.value)
        return existed

    def is_closed(self, key: str, kind: SessionKind) -> bool:
        with self._lock:
            return key in self._closed[kind]

    def expire_idle(self, now: float | None = None) -> int:
        """Remove idle sessions and old tombstones.  Returns sessions removed.

        Web sessions expire after ``web_idle_seconds`` without activity.  Call
        sessions normally end through the status callback; the longer
        ``call_idle_seconds`` is only a backstop for calls whose teardown
        webhook never arrived.
        """
        now = time.time() if now is None else now
        removed = 0
        with self._lock:
            for kind, sessions in self._sessions.items():
                limit = self._idle_limit(kind)
                expired = [
                    key for key, session in sessions.items()
                    if now - session.last_activity > limit
                ]
                for key in expired:
                    del sessions[key]
                removed += len(expired)

            for closed in self._closed.values():
                stale_tombstones = [
                    key for key, closed_at in closed.items()
                    if now - closed_at > self._web_idle_seconds
                ]
                for key in stale_tombstones:
                    del closed[key]

        if removed:
            logger.info("Expired %d idle sessions", removed)
        return removed

    async def run_sweep_loop(self, interval: float = SESSION_SWEEP_INTERVAL_SECONDS) -> None:
        """Expire idle sessions every *interval* seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                self.expire_idle()
            except Exception:
                logger.exception("Session sweep failed")

    # ── History ──────────────────────────────────────────────────────

    def get_history(self, key: str, kind: SessionKind) -> list[ConversationTurn]:
        """Return a copy of the history, oldest first (empty if unknown)."""
        with self._lock:
            session = self._sessions[kind].get(key)
            return list(session.history) if session else []

    def append(
        self,
        key: str,
        kind: SessionKind,
        turn: ConversationTurn,
        *,
        token: str | None = None,
    ) -> bool:
        """Record a completed turn.

        Returns ``False`` (and records nothing) when the session no longer
        exists or, if *token* is given, when it belongs to a different
        incarnation of the session.
        """
        with self._lock:
            session = self._sessions[kind].get(key)
            if session is None or (token is not None and session.token != token):
                logger.info("Discarding turn for ended session %s", key)
                return False
            session.history.append(turn)
            session.silent_turns = 0
            session.last_activity = turn.timestamp
            return True

    def note_silence(self, key: str, kind: SessionKind) -> int:
        """Count one more consecutive empty turn; returns the new count."""
        with self._lock:
            session = self._sessions[kind].get(key)
            if session is None:
                return 0
            session.silent_turns += 1
            session.last_activity = time.time()
            return session.silent_turns

    # ── Introspection ────────────────────────────────────────────────

    def has(self, key: str, kind: SessionKind) -> bool:
        with self._lock:
            return key in self._sessions[kind]

    def contact_for(self, key: str, kind: SessionKind) -> str | None:
        with self._lock:
            session = self._sessions[kind].get(key)
            return session.contact if session else None

    @property
    def session_count(self) -> int:
        """Number of live sessions of either kind."""
        with self._lock:
            return sum(len(sessions) for sessions in self._sessions.values())

    def _idle_limit(self, kind: SessionKind) -> float:
        return self._call_idle_seconds if kind is SessionKind.CALL else self._web_idle_seconds
