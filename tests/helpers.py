import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from dm_client.api_client import DeleteResult
from dm_client.config import ClientConfig
from dm_client.models import Conversation, Message, MessagePage, Pagination, UserSummary

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def user(user_id: str) -> UserSummary:
    return UserSummary(id=user_id, username=user_id)


def message(message_id: str, conversation_id: str, sender: str, seconds: float, content: str | None = None) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        content=content if content is not None else f"text of {message_id}",
        sender=user(sender),
        created_at=at(seconds),
    )


def conversation(
    conversation_id: str,
    peer: str,
    seconds: float = 0,
    *,
    unread: int = 0,
    last_message: Message | None = None,
) -> Conversation:
    return Conversation(
        id=conversation_id,
        participants=[user(peer)],
        updated_at=at(seconds),
        last_message=last_message,
        unread_count=unread,
    )


class FakeHandle:
    def __init__(self, when: float, seq: int, callback: Callable[[], None]) -> None:
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """Virtual clock exposing a ``call_later`` compatible with TimerScheduler."""

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = 0
        self._handles: List[FakeHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        self._seq += 1
        handle = FakeHandle(self.now + delay, self._seq, callback)
        self._handles.append(handle)
        return handle

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and not h.fired and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self.now = handle.when
            handle.fired = True
            handle.callback()
        self.now = target

    @property
    def active(self) -> int:
        return sum(1 for h in self._handles if not h.cancelled and not h.fired)


class FakeApi:
    """In-memory stand-in for MessagingApi used by the store tests.

    ``gates`` hold a call until the matching event is set; ``errors`` make the
    named call raise.
    """

    def __init__(self, config: ClientConfig | None = None) -> None:
        self.config = config or ClientConfig(user_id="me")
        self.conversations: List[Conversation] = []
        self.pages: Dict[Tuple[str, int], MessagePage] = {}
        self.calls: List[tuple] = []
        self.typing_calls: List[Tuple[str, bool]] = []
        self.gates: Dict[str, asyncio.Event] = {}
        self.errors: Dict[str, Exception] = {}
        self.delete_results: Dict[str, DeleteResult] = {}
        self._sent = 0

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def _enter(self, name: str, *args, gate_key: Optional[str] = None) -> None:
        self.calls.append((name, *args))
        gate = self.gates.get(gate_key or name)
        if gate is not None:
            await gate.wait()
        error = self.errors.get(name)
        if error is not None:
            raise error

    async def list_conversations(self) -> List[Conversation]:
        await self._enter("list_conversations")
        return list(self.conversations)

    async def create_conversation(self, participant_id: str) -> Conversation:
        await self._enter("create_conversation", participant_id)
        created = conversation(f"conv-{participant_id}", participant_id, 100)
        self.conversations.append(created)
        return created

    async def fetch_messages(self, conversation_id: str, page: int = 1, limit: int | None = None) -> MessagePage:
        await self._enter("fetch_messages", conversation_id, page, gate_key=f"fetch_messages:{conversation_id}")
        return self.pages.get((conversation_id, page), MessagePage(messages=[], pagination=Pagination(page=page)))

    async def send_message(self, conversation_id: str, content: str) -> Message:
        await self._enter("send_message", conversation_id, content)
        self._sent += 1
        return Message(
            id=f"sent-{self._sent}",
            conversation_id=conversation_id,
            content=content,
            sender=user(self.config.user_id),
            created_at=at(1000 + self._sent),
        )

    async def delete_message(self, conversation_id: str, message_id: str) -> DeleteResult:
        await self._enter("delete_message", conversation_id, message_id)
        return self.delete_results.get(message_id, DeleteResult())

    async def mark_read(self, conversation_id: str) -> bool:
        await self._enter("mark_read", conversation_id)
        return True

    async def send_typing(self, conversation_id: str, is_typing: bool) -> None:
        self.typing_calls.append((conversation_id, is_typing))
        await self._enter("send_typing", conversation_id, is_typing)
