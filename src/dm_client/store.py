"""Conversation list, active conversation and reconciliation of real-time events."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from .api_client import MessagingApi, MessagingError, NotFoundError, ValidationError
from .config import ClientConfig
from .events import MessageDeleted, MessageReceived
from .models import Conversation, Message, Pagination, sort_messages
from .scheduler import BackgroundTasks, TimerScheduler
from .typing_tracker import TypingTracker

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStore:
    """Owns every Conversation and Message held by the client.

    Async operations suspend on the API; event handlers (``handle_*``) never
    await, so real-time events are applied in arrival order. Races between an
    API response and an event carrying the same message are settled by
    message id.
    """

    def __init__(
        self,
        api: MessagingApi,
        *,
        user_id: str,
        config: ClientConfig | None = None,
        typing: TypingTracker | None = None,
        scheduler: TimerScheduler | None = None,
        tasks: BackgroundTasks | None = None,
        now_func: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.api = api
        self.user_id = user_id
        self.config = config or api.config
        self.tasks = tasks or BackgroundTasks()
        self.typing = typing or TypingTracker(
            api.send_typing,
            user_id=user_id,
            scheduler=scheduler,
            tasks=self.tasks,
            idle_s=self.config.typing_idle_s,
            expiry_s=self.config.typing_expiry_s,
        )
        self._now = now_func
        self.conversations: List[Conversation] = []
        self.messages: List[Message] = []
        self.active_conversation_id: Optional[str] = None
        self.pending_conversation_id: Optional[str] = None
        self.pagination: Optional[Pagination] = None
        self._deleting: Set[str] = set()

    # -- queries -------------------------------------------------------

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        for conversation in self.conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    @property
    def active_conversation(self) -> Optional[Conversation]:
        if self.active_conversation_id is None:
            return None
        return self.get_conversation(self.active_conversation_id)

    @property
    def unread_total(self) -> int:
        return sum(conversation.unread_count for conversation in self.conversations)

    def is_deleting(self, message_id: str) -> bool:
        return message_id in self._deleting

    def _move_to_front(self, conversation: Conversation) -> None:
        others = [item for item in self.conversations if item.id != conversation.id]
        self.conversations = [conversation, *others]

    def _has_message(self, message_id: str) -> bool:
        return any(message.id == message_id for message in self.messages)

    def _merge_messages(self, incoming: List[Message]) -> int:
        known: Dict[str, Message] = {message.id: message for message in self.messages}
        added = 0
        for message in incoming:
            if message.id in known:
                continue
            known[message.id] = message
            added += 1
        if added:
            self.messages = sort_messages(list(known.values()))
        return added

    # -- API-backed operations ----------------------------------------

    async def load_conversations(self) -> List[Conversation]:
        conversations = await self.api.list_conversations()
        self.conversations = sorted(conversations, key=lambda item: item.updated_at, reverse=True)
        pending = self.pending_conversation_id
        if pending is not None and self.get_conversation(pending) is not None:
            self.pending_conversation_id = None
            await self.open_conversation(pending)
        return self.conversations

    async def start_conversation(self, participant_id: str) -> Conversation:
        conversation = await self.api.create_conversation(participant_id)
        existing = self.get_conversation(conversation.id)
        if existing is None:
            self._move_to_front(conversation)
        else:
            conversation = existing
        await self.open_conversation(conversation.id)
        return conversation

    async def open_conversation(self, conversation_id: str) -> bool:
        """Make ``conversation_id`` active and load its newest page of messages.

        An id the store does not know yet is parked as pending and opened by the
        next ``load_conversations`` that returns it; ``False`` is returned then.
        """

        if self.get_conversation(conversation_id) is None:
            self.pending_conversation_id = conversation_id
            return False

        self.pending_conversation_id = None
        if self.active_conversation_id != conversation_id:
            self.typing.set_active_conversation(conversation_id)
            self.active_conversation_id = conversation_id
            self.messages = []
            self.pagination = None

        page = await self.api.fetch_messages(conversation_id, page=1, limit=self.config.page_limit)
        if self.active_conversation_id != conversation_id:
            logger.debug("discarding stale message page for %s", conversation_id)
            return False
        self._merge_messages(page.messages)
        self.pagination = page.pagination
        try:
            await self.mark_read(conversation_id)
        except MessagingError as exc:
            logger.warning("could not mark %s read: %s", conversation_id, exc)
        return True

    async def load_older_messages(self) -> int:
        conversation_id = self.active_conversation_id
        pagination = self.pagination
        if conversation_id is None or pagination is None or not pagination.has_next_page:
            return 0
        page = await self.api.fetch_messages(conversation_id, page=pagination.page + 1, limit=pagination.limit)
        if self.active_conversation_id != conversation_id:
            logger.debug("discarding stale older page for %s", conversation_id)
            return 0
        self.pagination = page.pagination
        return self._merge_messages(page.messages)

    async def mark_read(self, conversation_id: str) -> None:
        await self.api.mark_read(conversation_id)
        conversation = self.get_conversation(conversation_id)
        if conversation is not None:
            conversation.unread_count = 0

    def validate_content(self, text: str) -> str:
        content = (text or "").strip()
        if not content:
            raise ValidationError("Message content is required")
        if len(content) > self.config.max_message_length:
            raise ValidationError(f"Message is too long (max {self.config.max_message_length} characters)")
        return content

    async def send(self, conversation_id: str, text: str) -> Message:
        content = self.validate_content(text)
        message = await self.api.send_message(conversation_id, content)

        if self.active_conversation_id == conversation_id:
            self._merge_messages([message])
        self.typing.stop_signal()

        conversation = self.get_conversation(conversation_id)
        if conversation is not None:
            conversation.last_message = message
            conversation.updated_at = message.created_at
            conversation.unread_count = 0
            self._move_to_front(conversation)
        return message

    async def delete(self, message: Message) -> bool:
        """Delete one of the user's own messages.

        Returns ``False`` without touching the network when a deletion of the
        same message is already in flight.
        """

        if message.id in self._deleting:
            return False
        self._deleting.add(message.id)
        try:
            try:
                result = await self.api.delete_message(message.conversation_id, message.id)
            except NotFoundError:
                logger.info("message %s already gone", message.id)
                self._apply_deletion(message.conversation_id, message.id, None)
                return True
            self._apply_deletion(message.conversation_id, message.id, result.last_message)
            return True
        finally:
            self._deleting.discard(message.id)

    def _apply_deletion(self, conversation_id: str, message_id: str, last_message: Optional[Message]) -> None:
        if self.active_conversation_id == conversation_id and self._has_message(message_id):
            self.messages = [message for message in self.messages if message.id != message_id]

        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return
        current = conversation.last_message
        if last_message is not None:
            conversation.last_message = last_message
        elif current is not None and current.id == message_id:
            conversation.last_message = None
        conversation.updated_at = self._now()
        self._move_to_front(conversation)

    # -- composer --------------------------------------------------------

    def typing_activity(self) -> None:
        self.typing.signal_typing(True)

    def stop_typing(self) -> None:
        self.typing.signal_typing(False)

    # -- real-time events -------------------------------------------------

    def handle_message_received(self, event: MessageReceived) -> None:
        conversation_id = event.conversation_id
        message = event.message
        own_message = event.echo or message.sender.id == self.user_id
        is_active = self.active_conversation_id == conversation_id

        if message.sender.id != self.user_id:
            self.typing.clear_user(conversation_id, message.sender.id)

        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            logger.debug("message for unknown conversation %s, refetching list", conversation_id)
            self.tasks.spawn(self.load_conversations(), name="refetch-conversations")
            return

        if own_message or is_active:
            unread = 0
        elif event.unread_messages is not None:
            unread = event.unread_messages
        else:
            # best effort; can drift from the server under reordered delivery
            unread = conversation.unread_count + 1

        conversation.last_message = message
        conversation.updated_at = message.created_at
        conversation.unread_count = unread
        self._move_to_front(conversation)

        if is_active:
            self._merge_messages([message])
            if not own_message:
                self.tasks.spawn(self.mark_read(conversation_id), name=f"mark-read:{conversation_id}")

    def handle_message_deleted(self, event: MessageDeleted) -> None:
        self._apply_deletion(event.conversation_id, event.message_id, event.last_message)

    # -- teardown ----------------------------------------------------------

    def close(self) -> None:
        self.typing.close()
        self.tasks.cancel_all()
        self.active_conversation_id = None
        self.pending_conversation_id = None
        self.messages = []
