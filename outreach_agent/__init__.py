"""Outreach Agent: a voice and chat assistant for cold outreach.

Architecture Overview
=====================

Every user turn, whether a Twilio webhook or a chat POST, is a stateless
request.  The agent rebuilds the conversation from an in-memory session
store, grounds its reply in a small private document corpus, and decides
whether to propose a meeting.

1. **Retrieval** - documents in ``CORPUS_DIR`` are tokenized into an
   inverted index (term -> documents).  A query keeps documents that match
   at least a quarter of its distinct terms, with short excerpts around each
   match.  The index is rebuilt off the request path and swapped in whole.

2. **Turn graph** - a LangGraph StateGraph runs one turn:
   screen (hang-up / silence) -> context -> generate -> record -> notify.

3. **Sessions** - bounded, FIFO-truncated histories keyed by ``CallSid``
   or the client's ``sessionId``; torn down by the Twilio status callback,
   an explicit goodbye, or an idle sweep.

4. **Notifier** - when the model emits the scheduling marker, the booking
   link is texted once via Twilio and the outcome is acknowledged inline.

Key Design Decisions
--------------------
- **LLM**: Claude via ``langchain-anthropic``; replies are capped at 100
  tokens because most of them are spoken.
- **Search**: lexical only, no embeddings; the corpus is small.
- **Resilience**: a failed generation yields an apology and leaves history
  untouched; a failed SMS still puts the link in the reply.
- **Dual Interface**: FastAPI server (production) + CLI chat loop (development).

Package Structure
-----------------
- ``outreach_agent/agent.py`` - LangGraph turn graph and orchestrator
- ``outreach_agent/config.py`` - Centralized configuration from environment variables
- ``outreach_agent/prompts.py`` - Prompt template and fixed utterances
- ``outreach_agent/server.py`` - FastAPI application
- ``outreach_agent/main.py`` - CLI chat interface
- ``outreach_agent/retrieval/`` - Tokenizer, corpus loading, inverted index, search
- ``outreach_agent/services/`` - Session store, Twilio client, notifier, metrics
- ``outreach_agent/api/`` - FastAPI routes, Twilio webhooks, schemas, TwiML/HTML rendering
"""
