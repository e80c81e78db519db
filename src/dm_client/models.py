"""Conversation and message records parsed from the messaging API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or epoch milliseconds into an aware UTC datetime."""

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        raise ValueError(f"invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise ValueError(f"invalid timestamp: {value!r}") from exc
    if not isinstance(value, str) or not value:
        raise ValueError(f"invalid timestamp: {value!r}")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _require_str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{key} required")
    return value


def _require_dict(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{what} must be an object")
    return value


@dataclass(frozen=True)
class UserSummary:
    id: str
    username: str = ""
    display_name: Optional[str] = None
    avatar: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.username or self.id

    @classmethod
    def from_json(cls, payload: Any) -> "UserSummary":
        payload = _require_dict(payload, "user")
        profile = payload.get("profile") or {}
        if not isinstance(profile, dict):
            profile = {}
        return cls(
            id=_require_str(payload, "id"),
            username=str(payload.get("username") or ""),
            display_name=profile.get("displayName") or None,
            avatar=profile.get("avatar") or None,
        )


@dataclass(frozen=True)
class Message:
    id: str
    conversation_id: str
    content: str
    sender: UserSummary
    created_at: datetime
    is_edited: bool = False
    updated_at: Optional[datetime] = None

    @classmethod
    def from_json(cls, payload: Any) -> "Message":
        payload = _require_dict(payload, "message")
        content = payload.get("content")
        if not isinstance(content, str):
            raise ValueError("content required")
        updated_at = payload.get("updatedAt")
        return cls(
            id=_require_str(payload, "id"),
            conversation_id=_require_str(payload, "conversationId"),
            content=content,
            sender=UserSummary.from_json(payload.get("sender")),
            created_at=parse_timestamp(payload.get("createdAt")),
            is_edited=bool(payload.get("isEdited", False)),
            updated_at=parse_timestamp(updated_at) if updated_at is not None else None,
        )


def sort_messages(messages: List[Message]) -> List[Message]:
    """Return ``messages`` ordered by creation time, oldest first."""

    return sorted(messages, key=lambda message: message.created_at)


@dataclass
class Conversation:
    id: str
    participants: List[UserSummary]
    updated_at: datetime
    last_message: Optional[Message] = None
    unread_count: int = 0

    @property
    def peer(self) -> Optional[UserSummary]:
        return self.participants[0] if self.participants else None

    @classmethod
    def from_json(cls, payload: Any) -> "Conversation":
        payload = _require_dict(payload, "conversation")
        participants: List[UserSummary] = []
        for entry in payload.get("otherParticipants") or []:
            entry = _require_dict(entry, "participant")
            participants.append(UserSummary.from_json(entry.get("user")))
        last_message = payload.get("lastMessage")
        unread = payload.get("unreadCount", 0)
        if not isinstance(unread, int) or isinstance(unread, bool) or unread < 0:
            raise ValueError("unreadCount must be a non-negative integer")
        return cls(
            id=_require_str(payload, "id"),
            participants=participants,
            updated_at=parse_timestamp(payload.get("updatedAt")),
            last_message=Message.from_json(last_message) if last_message else None,
            unread_count=unread,
        )


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    limit: int = 50
    total: int = 0
    has_next_page: bool = False

    @classmethod
    def from_json(cls, payload: Any) -> "Pagination":
        payload = _require_dict(payload or {}, "pagination")
        try:
            return cls(
                page=int(payload.get("page", 1)),
                limit=int(payload.get("limit", 50)),
                total=int(payload.get("total", 0)),
                has_next_page=bool(payload.get("hasNextPage", False)),
            )
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValueError(f"invalid pagination: {exc}") from exc


@dataclass(frozen=True)
class MessagePage:
    messages: List[Message] = field(default_factory=list)
    pagination: Pagination = field(default_factory=Pagination)

    @classmethod
    def from_json(cls, payload: Any) -> "MessagePage":
        payload = _require_dict(payload, "message page")
        raw_messages = payload.get("messages")
        if not isinstance(raw_messages, list):
            raise ValueError("messages must be a list")
        return cls(
            messages=[Message.from_json(item) for item in raw_messages],
            pagination=Pagination.from_json(payload.get("pagination")),
        )
