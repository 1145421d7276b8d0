#!/usr/bin/env python3
"""Persona chat CLI."""

import argparse
import asyncio
import json
import logging
import sys
from typing import List

from config.settings import Settings
from llm.errors import ApiError, build_user_facing_error_message
from memory.sqlite_store import SQLiteMemoryStore
from orchestrator import ChatOrchestrator
from schemas.messages import ConversationMessage, Speaker

HELP_TEXT = """Commands:
  /attach PATH   attach a file to the next message
  /memories      show stored memories
  /document      show the co-edited document
  /export PATH   write this conversation to a JSON file
  /quit          leave the chat
Mention a persona with @Name to address it directly."""


def print_message(message: ConversationMessage):
    """Print a persona reply; tool traffic is only logged."""
    if message.speaker != Speaker.MODEL:
        return
    text = message.visible_text().strip()
    if text:
        print(f"\n{message.persona_name}: {text}\n")
    for call in message.tool_calls():
        logging.getLogger(__name__).debug(f"{message.persona_name} called {call.name}({call.args})")


def print_error(error: str):
    print(f"[error] {error}", file=sys.stderr)


def list_conversations(store: SQLiteMemoryStore):
    conversations = store.list_conversations()
    if not conversations:
        print("No stored conversations.")
    for conversation in conversations:
        updated = conversation.updated_at.strftime("%Y-%m-%d %H:%M")
        print(f"  {conversation.conversation_id}  {updated}  {conversation.title or '(untitled)'}")


async def chat(orchestrator: ChatOrchestrator):
    """Interactive read-eval-print loop."""
    visible = ", ".join(f"@{p.name} ({p.description})" for p in orchestrator.personas.visible())
    print(f"Conversation {orchestrator.conversation_id}. In the room: {visible}")
    print("Type /help for commands.\n")

    pending_attachments: List[str] = []
    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except EOFError:
            break

        line = line.strip()
        if not line:
            continue
        if line in ("/quit", "/exit"):
            break
        if line == "/help":
            print(HELP_TEXT)
            continue
        if line.startswith("/attach "):
            pending_attachments.append(line[len("/attach "):].strip())
            print(f"Attached {pending_attachments[-1]}")
            continue
        if line == "/memories":
            for key, value in orchestrator.store.get_all_memories().items():
                print(f"  {key}: {value}")
            continue
        if line == "/document":
            print(orchestrator.store.get_document() or "(empty)")
            continue
        if line.startswith("/export "):
            path = line[len("/export "):].strip()
            bundle = orchestrator.store.export_conversation(orchestrator.conversation_id)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(bundle, f, indent=2)
            print(f"Exported {len(bundle['messages'])} messages to {path}")
            continue

        try:
            await orchestrator.send(line, attachments=pending_attachments)
        except ApiError as e:
            print_error(build_user_facing_error_message(e))
            continue
        pending_attachments = []

        if orchestrator.follow_up_questions:
            print("You might ask:")
            for question in orchestrator.follow_up_questions:
                print(f"  - {question}")

    await orchestrator.shutdown()


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Persona Chat - talk to a room of AI personas"
    )
    parser.add_argument(
        "--conversation-id",
        "-c",
        type=str,
        help="Resume an existing conversation (default: start a new one)"
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default="data/conversations.db",
        help="Path to the SQLite database (default: data/conversations.db)"
    )
    parser.add_argument(
        "--model",
        type=str,
        default="gemini-2.5-flash",
        help="Completion model (default: gemini-2.5-flash)"
    )
    parser.add_argument(
        "--persona",
        "-p",
        type=str,
        default="general",
        help="Persona answering messages without @mentions (default: general)"
    )
    parser.add_argument(
        "--max-concurrent",
        type=int,
        default=3,
        help="Maximum concurrent persona requests (default: 3)"
    )
    parser.add_argument(
        "--system-prompt",
        type=str,
        default="",
        help="Custom system prompt added to every persona"
    )
    parser.add_argument(
        "--follow-up",
        action="store_true",
        help="Suggest follow-up questions after each turn"
    )
    parser.add_argument(
        "--import",
        dest="import_path",
        type=str,
        help="Import a conversation exported with /export and resume it"
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List stored conversations and exit"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    if args.list:
        list_conversations(SQLiteMemoryStore(db_path=args.db_path))
        return

    conversation_id = args.conversation_id
    if args.import_path:
        try:
            with open(args.import_path, "r", encoding="utf-8") as f:
                bundle = json.load(f)
            conversation_id = SQLiteMemoryStore(db_path=args.db_path).import_conversation(bundle, conversation_id)
        except (OSError, ValueError) as e:
            print(f"Error: could not import {args.import_path}: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Imported conversation {conversation_id}")

    settings = Settings(
        conversation_id=conversation_id,
        db_path=args.db_path,
        model=args.model,
        default_persona=args.persona,
        max_concurrent_requests=args.max_concurrent,
        custom_system_prompt=args.system_prompt,
        follow_up_enabled=args.follow_up,
        verbose=args.verbose,
    )

    if not settings.api_key:
        print("Error: GEMINI_API_KEY is not set", file=sys.stderr)
        sys.exit(1)

    try:
        orchestrator = ChatOrchestrator(settings=settings, on_message=print_message, on_error=print_error)
        asyncio.run(chat(orchestrator))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
