"""Typing indicators: the local user's outgoing signal and remote users' incoming ones."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, FrozenSet, Optional, Set

from .api_client import MessagingError
from .scheduler import BackgroundTasks, TimerScheduler

logger = logging.getLogger(__name__)

SendTypingStatus = Callable[[str, bool], Awaitable[None]]

_OWN_STOP_KEY = ("own-typing-stop",)


class TypingTracker:
    """Tracks who is typing where.

    Remote entries live in ``conversation_id -> {user_id}`` and each entry owns
    exactly one expiry timer keyed ``(conversation_id, user_id)``. A
    conversation with nobody typing has no entry at all.

    The local signal is a single flag for the active conversation plus one
    inactivity timer. At most one "start" push is made per typing burst.
    """

    def __init__(
        self,
        send_status: SendTypingStatus,
        *,
        user_id: str,
        scheduler: TimerScheduler | None = None,
        tasks: BackgroundTasks | None = None,
        idle_s: float = 3.0,
        expiry_s: float = 5.0,
    ) -> None:
        self._send_status = send_status
        self.user_id = user_id
        self.scheduler = scheduler or TimerScheduler()
        self.tasks = tasks or BackgroundTasks()
        self.idle_s = idle_s
        self.expiry_s = expiry_s
        self._typing: Dict[str, Set[str]] = {}
        self.active_conversation_id: Optional[str] = None
        self.is_signaling = False

    # -- local signal -------------------------------------------------

    def set_active_conversation(self, conversation_id: Optional[str]) -> None:
        previous = self.active_conversation_id
        if previous == conversation_id:
            return
        if previous is not None and self.is_signaling:
            self._push(previous, False)
        self.is_signaling = False
        self.scheduler.cancel(_OWN_STOP_KEY)
        self.active_conversation_id = conversation_id

    def signal_typing(self, is_typing: bool = True) -> None:
        conversation_id = self.active_conversation_id
        if conversation_id is None:
            return
        if not is_typing:
            self.stop_signal()
            return
        if not self.is_signaling:
            self.is_signaling = True
            self._push(conversation_id, True)
        self.scheduler.schedule(_OWN_STOP_KEY, self.idle_s, self.stop_signal)

    def stop_signal(self) -> None:
        self.scheduler.cancel(_OWN_STOP_KEY)
        if not self.is_signaling:
            return
        self.is_signaling = False
        if self.active_conversation_id is not None:
            self._push(self.active_conversation_id, False)

    def _push(self, conversation_id: str, is_typing: bool) -> None:
        self.tasks.spawn(self._send_quietly(conversation_id, is_typing), name=f"typing:{conversation_id}")

    async def _send_quietly(self, conversation_id: str, is_typing: bool) -> None:
        try:
            await self._send_status(conversation_id, is_typing)
        except MessagingError as exc:
            # remote indicators expire on their own
            logger.debug("typing push for %s dropped: %s", conversation_id, exc)

    # -- remote signals -----------------------------------------------

    def handle_remote(self, conversation_id: str, user_id: str, is_typing: bool) -> None:
        if user_id == self.user_id:
            return
        if not is_typing:
            self.clear_user(conversation_id, user_id)
            return
        self._typing.setdefault(conversation_id, set()).add(user_id)
        self.scheduler.schedule(
            (conversation_id, user_id),
            self.expiry_s,
            lambda: self._expire(conversation_id, user_id),
        )

    def _expire(self, conversation_id: str, user_id: str) -> None:
        logger.debug("typing indicator for %s in %s expired", user_id, conversation_id)
        self._discard(conversation_id, user_id)

    def clear_user(self, conversation_id: str, user_id: str) -> None:
        self.scheduler.cancel((conversation_id, user_id))
        self._discard(conversation_id, user_id)

    def _discard(self, conversation_id: str, user_id: str) -> None:
        users = self._typing.get(conversation_id)
        if users is None:
            return
        users.discard(user_id)
        if not users:
            del self._typing[conversation_id]

    def typing_in(self, conversation_id: str) -> FrozenSet[str]:
        return frozenset(self._typing.get(conversation_id, ()))

    def is_typing(self, conversation_id: str, user_id: str) -> bool:
        return user_id in self._typing.get(conversation_id, ())

    @property
    def conversations_with_typing(self) -> FrozenSet[str]:
        return frozenset(self._typing)

    def close(self) -> None:
        """Drop every timer and indicator; nothing fires after this returns."""

        self.scheduler.cancel_all()
        self._typing.clear()
        self.is_signaling = False
        self.active_conversation_id = None
