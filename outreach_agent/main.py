"""CLI entry point for the outreach agent.

A terminal chat against the same orchestrator the web widget uses, handy
for checking how the corpus shapes replies without a browser or a phone.

Usage:
    python -m outreach_agent.main                   # normal mode (quiet)
    python -m outreach_agent.main --debug           # debug mode (shows API calls)
    python -m outreach_agent.main --corpus ./docs   # use another document folder
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid

from dotenv import load_dotenv

from outreach_agent.agent import CHAT, InboundTurn, create_turn_orchestrator
from outreach_agent.config import AGENT_NAME, CORPUS_DIR
from outreach_agent.prompts import GREETINGS
from outreach_agent.retrieval.index import IndexManager
from outreach_agent.services.notifier import AppointmentNotifier
from outreach_agent.services.session_store import SessionStore
from outreach_agent.services.telephony import get_telephony_client

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    # Always keep our own logger at INFO minimum so session starts show
    logging.getLogger("outreach_agent").setLevel(logging.DEBUG if debug else logging.INFO)


async def _chat_loop(corpus_dir: str) -> None:
    store = SessionStore()
    index_manager = IndexManager(corpus_dir)
    await index_manager.rebuild()
    print(f"  Indexed {index_manager.current.document_count} documents from {corpus_dir}\n")

    notifier = AppointmentNotifier(store, get_telephony_client())
    orchestrator = create_turn_orchestrator(store, index_manager, notifier)
    session_id = str(uuid.uuid4())
    logger.info("Started new session: %s", session_id)
    print(f"{AGENT_NAME}: {GREETINGS[CHAT]}\n")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye! Have a great day!")
            break

        if user_input.lower() == "new":
            session_id = str(uuid.uuid4())
            print(f"\n>> New session started: {session_id[:8]}...\n")
            continue

        try:
            result = await orchestrator.handle(
                InboundTurn(session_key=session_id, channel=CHAT, text=user_input)
            )
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\n{AGENT_NAME}: I'm sorry, something went wrong: {e}")
            print("     Please try again or type 'new' to start a fresh session.\n")
            continue

        print(f"\n{AGENT_NAME}: {result.reply}\n")
        if result.terminate:
            session_id = str(uuid.uuid4())
            print(f">> Conversation ended. New session started: {session_id[:8]}...\n")


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Outreach agent CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument(
        "--corpus", default=CORPUS_DIR,
        help=f"Folder of documents to answer from (default: {CORPUS_DIR})",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Outreach Agent - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new session.")
    print("=" * 60 + "\n")

    try:
        asyncio.run(_chat_loop(args.corpus))
    except KeyboardInterrupt:
        print("\n\nGoodbye!")


if __name__ == "__main__":
    main()
