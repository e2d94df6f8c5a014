"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """Incoming chat message from the web widget.

    An empty message is accepted and answered with a prompt for input.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field("", max_length=2000, description="The user's message")
    session_id: str | None = Field(
        None,
        alias="sessionId",
        min_length=1,
        max_length=100,
        description="Client session identifier; generated when omitted",
    )
    phone_number: str | None = Field(
        None,
        alias="phoneNumber",
        max_length=32,
        description="Optional number the booking link can be texted to",
    )


class ChatResponse(BaseModel):
    """Reply for the web widget (``response`` may contain an HTML link)."""

    model_config = ConfigDict(populate_by_name=True)

    response: str = Field(..., description="The agent's reply")
    suggested_appointment: bool = Field(False, alias="suggestedAppointment")
    session_id: str = Field(..., alias="sessionId")
    ended: bool = Field(False, description="True once the conversation was closed")


class CallRequest(BaseModel):
    """Request to place an outbound call."""

    phone_number: str | None = Field(None, max_length=32, description="Number to dial")


class CallResponse(BaseModel):
    success: bool = True
    call_sid: str


class DocumentSummary(BaseModel):
    name: str
    characters: int


class IndexSummary(BaseModel):
    documents: list[DocumentSummary]
    document_count: int
    term_count: int
    last_built: float | None = Field(None, description="Epoch seconds of the last build")


class SearchResult(BaseModel):
    name: str
    match_count: int
    contexts: list[str]


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "outreach-agent"
    documents: int = 0
    sessions: int = 0
