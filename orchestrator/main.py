"""CLI entry point for the clinic booking orchestrator.

A terminal chat loop over :meth:`Agent.process_message` for local testing.
For production, use the FastAPI server (``orchestrator/server.py``).

Usage:
    python -m orchestrator.main                 # normal mode (quiet)
    python -m orchestrator.main --debug         # debug mode (shows API calls)
    python -m orchestrator.main --reindex-faq   # load the bundled FAQ seed first
    python -m orchestrator.main --session abc   # resume or name a session
"""

from __future__ import annotations

import argparse
import logging
import uuid

from dotenv import load_dotenv

from orchestrator.agent import Agent, create_orchestrator_agent
from orchestrator.models import TurnResult
from orchestrator.services.embeddings import get_embedding_service
from orchestrator.services.faq_indexer import FAQIndexer
from orchestrator.services.vector_store import get_vector_store

logger = logging.getLogger(__name__)

ASSISTANT = "Clara"
COMMANDS = {
    "/new": "start a new session",
    "/slots": "show what has been collected so far",
    "/help": "show this list",
    "/quit": "exit",
}


def _configure_logging(debug: bool = False) -> None:
    """WARNING by default, DEBUG with --debug; our own loggers stay at INFO."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        for noisy in ("httpx", "httpcore", "chromadb", "openai", "anthropic"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("orchestrator").setLevel(logging.DEBUG if debug else logging.INFO)


def _print_banner() -> None:
    rule = "=" * 60
    print(f"\n{rule}\n  Bright Smile Clinics - Booking Assistant CLI\n{rule}")
    for command, help_text in COMMANDS.items():
        print(f"  {command:<8} {help_text}")
    print(rule + "\n")


def _print_slots(agent: Agent, session_id: str) -> None:
    session = agent.store.get(session_id)
    known = session.slots.known() if session else {}
    if not known:
        print(">> Nothing collected yet.\n")
        return
    for field, value in known.items():
        print(f"   {field:<10} {value}")
    print()


def _print_turn(result: TurnResult, debug: bool) -> None:
    print(f"\n{ASSISTANT}: {result.response}\n")
    if debug and result.function_calls:
        for executed in result.function_calls:
            status = "ok" if executed.result.success else executed.result.error_message
            print(f"   [{executed.call.name}] {status}")
        print()
    if result.needs_human:
        print(">> Handed off to a human attendant.\n")


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Clinic booking orchestrator CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages and the backend calls made each turn",
    )
    parser.add_argument(
        "--reindex-faq", action="store_true",
        help="Rebuild the FAQ collection from the seed file before chatting",
    )
    parser.add_argument("--session", help="Session id to use for the first conversation")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    if args.reindex_faq:
        count = FAQIndexer(get_embedding_service(), get_vector_store()).reindex()
        print(f">> Indexed {count} FAQ entries.")

    agent = create_orchestrator_agent()
    session_id, _ = agent.initialize_session(args.session)
    logger.info("Started session: %s", session_id)
    _print_banner()

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        command = user_input.lower()
        if not user_input:
            continue
        if command in ("/quit", "quit", "exit", "q"):
            print("\nGoodbye! Have a great day!")
            break
        if command == "/help":
            _print_banner()
            continue
        if command in ("/slots", "slots"):
            _print_slots(agent, session_id)
            continue
        if command in ("/new", "new"):
            session_id, _ = agent.initialize_session(str(uuid.uuid4()))
            print(f"\n>> New session started: {session_id[:8]}...\n")
            continue

        try:
            result = agent.process_message(session_id, user_input)
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break

        _print_turn(result, args.debug)
        if result.session_completed:
            session_id, _ = agent.initialize_session(str(uuid.uuid4()))
            print(f">> Booking complete. New session started: {session_id[:8]}...\n")


if __name__ == "__main__":
    main()
