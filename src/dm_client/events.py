"""Real-time event variants and the bus they are published on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

from .models import Message


@dataclass(frozen=True)
class MessageReceived:
    """``message:new`` from a peer, or ``message:sent`` echoed to the sender (``echo``)."""

    conversation_id: str
    message: Message
    unread_messages: Optional[int] = None
    echo: bool = False


@dataclass(frozen=True)
class MessageDeleted:
    conversation_id: str
    message_id: str
    last_message: Optional[Message] = None
    deleted_by: Optional[str] = None


@dataclass(frozen=True)
class TypingChanged:
    conversation_id: str
    user_id: str
    is_typing: bool


@dataclass(frozen=True)
class PresenceSnapshot:
    user_ids: FrozenSet[str]


@dataclass(frozen=True)
class PresenceChanged:
    user_id: str
    status: str

    @property
    def online(self) -> bool:
        return self.status == "online"


@dataclass(frozen=True)
class ConnectionAck:
    pass


RealtimeEvent = Union[
    MessageReceived,
    MessageDeleted,
    TypingChanged,
    PresenceSnapshot,
    PresenceChanged,
    ConnectionAck,
]


def _str_field(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{key} required")
    return value


def _parse_message_event(data: Dict[str, Any], *, echo: bool) -> MessageReceived:
    unread = data.get("unreadMessages")
    if unread is not None and (not isinstance(unread, int) or isinstance(unread, bool) or unread < 0):
        raise ValueError("unreadMessages must be a non-negative integer")
    return MessageReceived(
        conversation_id=_str_field(data, "conversationId"),
        message=Message.from_json(data.get("message")),
        unread_messages=unread,
        echo=echo,
    )


def _parse_deleted_event(data: Dict[str, Any]) -> MessageDeleted:
    last_message = data.get("lastMessage")
    deleted_by = data.get("deletedBy")
    return MessageDeleted(
        conversation_id=_str_field(data, "conversationId"),
        message_id=_str_field(data, "messageId"),
        last_message=Message.from_json(last_message) if last_message else None,
        deleted_by=deleted_by if isinstance(deleted_by, str) else None,
    )


def _parse_typing_event(data: Dict[str, Any]) -> TypingChanged:
    is_typing = data.get("isTyping")
    if not isinstance(is_typing, bool):
        raise ValueError("isTyping must be a boolean")
    return TypingChanged(
        conversation_id=_str_field(data, "conversationId"),
        user_id=_str_field(data, "userId"),
        is_typing=is_typing,
    )


def _parse_presence_state(data: Dict[str, Any]) -> PresenceSnapshot:
    user_ids = data.get("userIds") or []
    if not isinstance(user_ids, list) or any(not isinstance(user_id, str) for user_id in user_ids):
        raise ValueError("userIds must be a list of strings")
    return PresenceSnapshot(user_ids=frozenset(user_ids))


def _parse_presence_update(data: Dict[str, Any]) -> PresenceChanged:
    status = data.get("status")
    return PresenceChanged(
        user_id=_str_field(data, "userId"),
        status=status if isinstance(status, str) else "offline",
    )


_PARSERS: Dict[str, Callable[[Dict[str, Any]], RealtimeEvent]] = {
    "message:new": lambda data: _parse_message_event(data, echo=False),
    "message:sent": lambda data: _parse_message_event(data, echo=True),
    "message:deleted": _parse_deleted_event,
    "message:typing": _parse_typing_event,
    "presence:state": _parse_presence_state,
    "presence:update": _parse_presence_update,
    "connection:ack": lambda data: ConnectionAck(),
}


def parse_frame(frame: Any) -> Optional[RealtimeEvent]:
    """Turn a ``{"event": name, "data": {...}}`` frame into an event variant.

    Unknown event names yield ``None``. A known event with a malformed payload
    raises ``ValueError``.
    """

    if not isinstance(frame, dict):
        raise ValueError("frame must be an object")
    name = frame.get("event")
    parser = _PARSERS.get(name) if isinstance(name, str) else None
    if parser is None:
        return None
    data = frame.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"{name}: data must be an object")
    return parser(data)


Callback = Callable[[RealtimeEvent], None]


@dataclass(eq=False)
class Subscription:
    callback: Callback

    def deliver(self, event: RealtimeEvent) -> None:
        self.callback(event)


class EventBus:
    """Single subscription point; events are delivered synchronously in publish order."""

    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []

    def subscribe(self, callback: Callback) -> Subscription:
        subscription = Subscription(callback=callback)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return

    def publish(self, event: RealtimeEvent) -> None:
        for subscription in list(self._subscriptions):
            subscription.deliver(event)

    def __len__(self) -> int:
        return len(self._subscriptions)
