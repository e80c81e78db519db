"""Command line access to conversations, messages and the real-time feed."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, TextIO

from . import session_store
from .api_client import MessagingApi, MessagingError
from .config import ClientConfig
from .events import EventBus, RealtimeEvent
from .realtime import RealtimeConnection
from .redact import redact_mapping
from .render import MessageRenderer
from .store import ConversationStore

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"not serializable: {type(value).__name__}")


def event_to_json(event: RealtimeEvent) -> str:
    payload = asdict(event) if is_dataclass(event) else {}
    return json.dumps({"type": type(event).__name__, **payload}, default=_json_default, sort_keys=True)


def _resolve_config(args: argparse.Namespace) -> ClientConfig:
    return session_store.config_from_session(
        Path(args.session_file),
        base_url=args.base_url,
        user_id=args.user_id,
        session_cookie=args.cookie,
    )


async def _with_store(config: ClientConfig, action: Callable[[ConversationStore], Awaitable[int]]) -> int:
    async with MessagingApi(config) as api:
        store = ConversationStore(api, user_id=config.user_id, config=config)
        try:
            return await action(store)
        finally:
            store.close()


async def _list_conversations(store: ConversationStore, output: TextIO) -> int:
    for conversation in await store.load_conversations():
        peer = conversation.peer.label if conversation.peer else "?"
        preview = conversation.last_message.content.replace("\n", " ") if conversation.last_message else ""
        output.write(f"{conversation.id}\t{peer}\t{conversation.unread_count}\t{preview}\n")
    return 0


async def _show_messages(store: ConversationStore, conversation_id: str, output: TextIO) -> int:
    await store.load_conversations()
    if not await store.open_conversation(conversation_id):
        output.write(f"unknown conversation: {conversation_id}\n")
        return 1
    for message in store.messages:
        output.write(f"{message.created_at.isoformat()} {message.sender.label}: {message.content}\n")
    return 0


async def _send(store: ConversationStore, conversation_id: str, text: str, output: TextIO) -> int:
    await store.load_conversations()
    message = await store.send(conversation_id, text)
    output.write(f"{message.id}\n")
    return 0


async def _delete(store: ConversationStore, conversation_id: str, message_id: str, output: TextIO) -> int:
    await store.load_conversations()
    if not await store.open_conversation(conversation_id):
        output.write(f"unknown conversation: {conversation_id}\n")
        return 1
    target = next((message for message in store.messages if message.id == message_id), None)
    if target is None:
        output.write(f"unknown message: {message_id}\n")
        return 1
    await store.delete(target)
    output.write("deleted\n")
    return 0


async def _tail(config: ClientConfig, output: TextIO, limit: int | None) -> int:
    bus = EventBus()
    seen = 0
    async with MessagingApi(config) as api:
        connection = RealtimeConnection(api.session, config, bus)
        done = asyncio.Event()

        def printer(event: RealtimeEvent) -> None:
            nonlocal seen
            output.write(event_to_json(event) + "\n")
            output.flush()
            seen += 1
            if limit is not None and seen >= limit:
                done.set()

        bus.subscribe(printer)
        runner = asyncio.create_task(connection.run())
        try:
            await done.wait()
        finally:
            await connection.stop()
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)
    return 0


def _run_session(args: argparse.Namespace, output: TextIO) -> int:
    path = Path(args.session_file)
    if args.session_command == "save":
        try:
            saved = session_store.SavedSession(args.base_url or "", args.user_id or "", args.cookie or "")
        except ValueError as exc:
            output.write(f"session save needs --base-url, --user-id and --cookie: {exc}\n")
            return 2
        session_store.save_session(saved, path)
        output.write(f"saved {path}\n")
        return 0
    if args.session_command == "clear":
        removed = session_store.clear_session(path)
        output.write("cleared\n" if removed else "no session\n")
        return 0
    saved = session_store.load_session(path)
    if saved is None:
        output.write("no session\n")
        return 1
    output.write(json.dumps(redact_mapping(saved.to_json()), indent=2, sort_keys=True) + "\n")
    return 0


def _run_render(args: argparse.Namespace, output: TextIO) -> int:
    renderer = MessageRenderer(image_base_url=ClientConfig.from_env().emoji_base_url)
    output.write(renderer.render(args.text, preserve_line_breaks=not args.inline) + "\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dm-client", description="Direct messaging client")
    parser.add_argument("--base-url", default=None, help="API base URL")
    parser.add_argument("--user-id", default=None, help="Id of the signed-in user")
    parser.add_argument("--cookie", default=None, help="Session cookie value")
    parser.add_argument(
        "--session-file",
        default=str(session_store.SESSION_PATH),
        help="Where the saved session lives",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    session_parser = subparsers.add_parser("session", help="Save, show or clear the stored session")
    session_parser.add_argument("session_command", choices=["save", "show", "clear"])

    subparsers.add_parser("conversations", help="List conversations, most recent first")

    messages_parser = subparsers.add_parser("messages", help="Print the newest page of a conversation")
    messages_parser.add_argument("conversation_id")

    send_parser = subparsers.add_parser("send", help="Send a message")
    send_parser.add_argument("conversation_id")
    send_parser.add_argument("text")

    delete_parser = subparsers.add_parser("delete", help="Delete one of your messages")
    delete_parser.add_argument("conversation_id")
    delete_parser.add_argument("message_id")

    render_parser = subparsers.add_parser("render", help="Render message text to safe markup")
    render_parser.add_argument("text")
    render_parser.add_argument("--inline", action="store_true", help="Collapse line breaks (preview form)")

    tail_parser = subparsers.add_parser("tail", help="Print real-time events as JSON lines")
    tail_parser.add_argument("--limit", type=int, default=None, help="Stop after this many events")
    return parser


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]
    output = output or sys.stdout
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    if args.command == "session":
        return _run_session(args, output)
    if args.command == "render":
        return _run_render(args, output)

    config = _resolve_config(args)
    try:
        if args.command == "conversations":
            return asyncio.run(_with_store(config, lambda store: _list_conversations(store, output)))
        if args.command == "messages":
            return asyncio.run(_with_store(config, lambda store: _show_messages(store, args.conversation_id, output)))
        if args.command == "send":
            return asyncio.run(
                _with_store(config, lambda store: _send(store, args.conversation_id, args.text, output))
            )
        if args.command == "delete":
            return asyncio.run(
                _with_store(config, lambda store: _delete(store, args.conversation_id, args.message_id, output))
            )
        return asyncio.run(_tail(config, output, args.limit))
    except MessagingError as exc:
        output.write(f"error: {exc}\n")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
