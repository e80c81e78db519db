"""Direct messaging client core: conversations, typing, presence and rendering."""

from .api_client import (
    MessagingApi,
    MessagingError,
    NotAuthorizedError,
    NotFoundError,
    TransientNetworkError,
    ValidationError,
)
from .config import ClientConfig
from .events import EventBus, parse_frame
from .presence import PresenceTracker
from .realtime import RealtimeConnection, RealtimeRouter
from .render import MessageRenderer, render_message
from .shortcodes import ShortcodeMap
from .store import ConversationStore
from .typing_tracker import TypingTracker

__all__ = [
    "ClientConfig",
    "ConversationStore",
    "EventBus",
    "MessageRenderer",
    "MessagingApi",
    "MessagingError",
    "NotAuthorizedError",
    "NotFoundError",
    "PresenceTracker",
    "RealtimeConnection",
    "RealtimeRouter",
    "ShortcodeMap",
    "TransientNetworkError",
    "TypingTracker",
    "ValidationError",
    "parse_frame",
    "render_message",
]
