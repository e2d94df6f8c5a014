"""Prompt assembly for the outreach agent.

There is one template.  Persona, company and scheduling link come from
configuration; history, retrieved excerpts and the user's input are filled
in per turn; only the channel guidance differs between phone and chat.
"""

from __future__ import annotations

from collections.abc import Sequence

from outreach_agent.config import AGENT_NAME, COMPANY_NAME, SCHEDULING_LINK
from outreach_agent.services.session_store import ConversationTurn

SCHEDULING_MARKER = "[Appointment Suggested]"

SYSTEM_PROMPT_TEMPLATE = """You are {agent_name}, a friendly and helpful representative from {company_name}. \
Your goal is to have a natural, human-like conversation, starting with small talk and \
gradually transitioning to discussing how AI solutions could help the user's business.

When responding:
1. Use a warm, conversational tone with contractions (e.g., "I'm", "we're", "can't").
2. Keep responses concise (2-3 sentences).
3. Do not repeat greetings and avoid sounding robotic.
4. Ground factual claims about {company_name} in the document excerpts below. \
If they don't cover the question, say you'll have a specialist follow up.
5. Only when the user expresses interest in AI solutions or asks to meet, suggest \
booking an appointment and include the phrase "{marker}" at the end of your response.
6. If the user is silent or vague, ask a follow-up question related to the current topic.
{channel_guidance}

Previous conversation:
{history}

Relevant document information:
{retrieved_context}

User's question: {user_input}

Respond in a natural, conversational way and suggest an appointment only when appropriate:"""

CHANNEL_GUIDANCE = {
    "voice": (
        "7. You are speaking on a phone call: plain spoken sentences only, "
        "no links, lists, markup or emoji. The booking link is delivered by SMS."
    ),
    "chat": (
        "7. You are chatting on a website. When suggesting an appointment, provide a "
        'clickable link: <a href="{link}" target="_blank">Schedule a meeting here</a>.'
    ),
}

GREETINGS = {
    "voice": f"Hi there! This is {AGENT_NAME} from {COMPANY_NAME}. How are you today?",
    "chat": "Hi there! How can I help you today?",
}
REPROMPTS = {
    "voice": "Sorry, I didn't catch that. Could you say that again?",
    "chat": "Hi there! How can I help you today?",
}
CLOSING = "Thank you for your time. Have a great day!"
APOLOGY = "I'm sorry, I'm having trouble processing your request right now. Could you try again?"
VOICEMAIL_MESSAGE = (
    f"Hi, this is {AGENT_NAME} from {COMPANY_NAME}. Sorry we missed you. "
    "We'll try you again another time. Have a great day!"
)


def format_history(history: Sequence[ConversationTurn]) -> str:
    """Render past turns as ``User:/Assistant:`` lines, oldest first."""
    if not history:
        return "(this is the start of the conversation)"
    return "\n".join(f"User: {turn.user}\nAssistant: {turn.assistant}" for turn in history)


def build_prompt(
    history: Sequence[ConversationTurn],
    retrieved_context: str,
    user_input: str,
    channel: str = "chat",
    *,
    scheduling_link: str = SCHEDULING_LINK,
) -> str:
    """Build the complete system prompt for one turn."""
    guidance = CHANNEL_GUIDANCE.get(channel, CHANNEL_GUIDANCE["chat"]).format(link=scheduling_link)
    return SYSTEM_PROMPT_TEMPLATE.format(
        agent_name=AGENT_NAME,
        company_name=COMPANY_NAME,
        marker=SCHEDULING_MARKER,
        channel_guidance=guidance,
        history=format_history(history),
        retrieved_context=retrieved_context or "(no matching documents)",
        user_input=user_input,
    )
