"""Accessors for the shared objects the lifespan attaches to ``app.state``."""

from __future__ import annotations

from fastapi import HTTPException, Request

from outreach_agent.agent import TurnOrchestrator
from outreach_agent.config import PUBLIC_BASE_URL
from outreach_agent.retrieval.index import IndexManager
from outreach_agent.services.telephony import TelephonyClient


def _from_state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return value


def get_orchestrator(request: Request) -> TurnOrchestrator:
    """Retrieve the turn orchestrator built during the FastAPI lifespan."""
    return _from_state(request, "orchestrator")


def get_index_manager(request: Request) -> IndexManager:
    return _from_state(request, "index_manager")


def get_telephony(request: Request) -> TelephonyClient:
    return _from_state(request, "telephony")


def public_url(request: Request, route_name: str) -> str:
    """Absolute URL for a named route, as Twilio must reach it."""
    if PUBLIC_BASE_URL:
        return f"{PUBLIC_BASE_URL}{request.app.url_path_for(route_name)}"
    return str(request.url_for(route_name))
