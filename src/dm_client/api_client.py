"""aiohttp client for the conversation and message endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import aiohttp

from .config import ClientConfig
from .models import Conversation, Message, MessagePage
from .redact import redact_text

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})
CSRF_HEADER = "X-CSRF-Token"
CSRF_PATH = "/api/csrf-token"

T = TypeVar("T")


class MessagingError(Exception):
    """Base class for failures raised by the messaging client."""

    status: Optional[int] = None

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        if status is not None:
            self.status = status


class ValidationError(MessagingError):
    status = 400


class NotAuthorizedError(MessagingError):
    status = 403


class NotFoundError(MessagingError):
    status = 404


class TransientNetworkError(MessagingError):
    pass


@dataclass(frozen=True)
class DeleteResult:
    last_message: Optional[Message] = None


def _build_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


def _parse(what: str, parser: Callable[[Any], T], payload: Any) -> T:
    try:
        return parser(payload)
    except ValueError as exc:
        raise TransientNetworkError(f"malformed {what}: {exc}") from exc


def _error_for_status(status: int, payload: Any) -> MessagingError:
    message = None
    if isinstance(payload, dict):
        message = payload.get("error") or payload.get("message")
    if not isinstance(message, str) or not message:
        message = f"request failed with status {status}"
    if status == 400:
        return ValidationError(message)
    if status in (401, 403):
        return NotAuthorizedError(message, status=status)
    if status == 404:
        return NotFoundError(message)
    return TransientNetworkError(message, status=status)


class CsrfTokenCache:
    """Holds the CSRF token for one API session.

    The token is fetched lazily on the first unsafe request and shared by all
    callers; concurrent callers wait on the same in-flight fetch. ``invalidate``
    forgets the token so the next unsafe request fetches a fresh one, ``reset``
    additionally abandons an in-flight fetch.
    """

    def __init__(self) -> None:
        self._token: Optional[str] = None
        self._pending: Optional[asyncio.Future] = None

    @property
    def token(self) -> Optional[str]:
        return self._token

    async def get(self, fetch: Callable[[], Awaitable[str]]) -> str:
        if self._token is not None:
            return self._token
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._fill(fetch))
        return await asyncio.shield(self._pending)

    async def _fill(self, fetch: Callable[[], Awaitable[str]]) -> str:
        task = asyncio.current_task()
        try:
            token = await fetch()
            self._token = token
            return token
        finally:
            if self._pending is task:
                self._pending = None

    def invalidate(self) -> None:
        self._token = None

    def reset(self) -> None:
        self._token = None
        pending, self._pending = self._pending, None
        if pending is not None and not pending.done():
            pending.cancel()


class MessagingApi:
    """Request/response access to conversations, messages, read markers and typing."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        csrf: CsrfTokenCache | None = None,
    ) -> None:
        self.config = config
        self.csrf = csrf or CsrfTokenCache()
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "MessagingApi":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def session(self) -> aiohttp.ClientSession:
        return self._ensure_session()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            cookies = None
            if self.config.session_cookie:
                cookies = {self.config.cookie_name: self.config.session_cookie}
            self._session = aiohttp.ClientSession(
                cookies=cookies,
                cookie_jar=aiohttp.CookieJar(unsafe=True),
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_s),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
        self.csrf.reset()

    def on_focus(self) -> None:
        """Window-focus hook: the server may have rotated the token meanwhile."""

        self.csrf.invalidate()

    async def list_conversations(self) -> List[Conversation]:
        payload = await self._request("GET", "/api/conversations")
        if not isinstance(payload, list):
            raise TransientNetworkError("malformed conversation list")
        return [_parse("conversation", Conversation.from_json, item) for item in payload]

    async def create_conversation(self, participant_id: str) -> Conversation:
        payload = await self._request("POST", "/api/conversations", json_body={"participantId": participant_id})
        return _parse("conversation", Conversation.from_json, payload)

    async def fetch_messages(self, conversation_id: str, page: int = 1, limit: int | None = None) -> MessagePage:
        params = {"page": str(page), "limit": str(limit or self.config.page_limit)}
        payload = await self._request("GET", f"/api/conversations/{conversation_id}/messages", params=params)
        return _parse("message page", MessagePage.from_json, payload)

    async def send_message(self, conversation_id: str, content: str) -> Message:
        payload = await self._request(
            "POST",
            f"/api/conversations/{conversation_id}/messages",
            json_body={"content": content},
        )
        return _parse("message", Message.from_json, payload)

    async def delete_message(self, conversation_id: str, message_id: str) -> DeleteResult:
        payload = await self._request("DELETE", f"/api/conversations/{conversation_id}/messages/{message_id}")
        last_message = payload.get("lastMessage") if isinstance(payload, dict) else None
        return DeleteResult(last_message=_parse("message", Message.from_json, last_message) if last_message else None)

    async def mark_read(self, conversation_id: str) -> bool:
        payload = await self._request("POST", f"/api/conversations/{conversation_id}/read")
        return bool(isinstance(payload, dict) and payload.get("success"))

    async def send_typing(self, conversation_id: str, is_typing: bool) -> None:
        await self._request(
            "POST",
            f"/api/conversations/{conversation_id}/typing",
            json_body={"isTyping": is_typing},
        )

    async def _fetch_csrf_token(self) -> str:
        url = _build_url(self.config.base_url, CSRF_PATH)
        try:
            async with self.session.get(url, headers={"Accept": "application/json"}) as response:
                if response.status != 200:
                    raise TransientNetworkError(
                        f"Failed to retrieve CSRF token: {response.status}", status=response.status
                    )
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as exc:
            raise TransientNetworkError(f"Failed to retrieve CSRF token: {exc}") from exc
        token = payload.get("csrfToken") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise TransientNetworkError("CSRF token missing in response")
        return token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        params: Dict[str, str] | None = None,
    ) -> Any:
        method = method.upper()
        headers: Dict[str, str] = {"Accept": "application/json"}
        if method not in SAFE_METHODS:
            headers[CSRF_HEADER] = await self.csrf.get(self._fetch_csrf_token)
        url = _build_url(self.config.base_url, path)

        try:
            async with self.session.request(method, url, json=json_body, params=params, headers=headers) as response:
                status = response.status
                raw = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            self.csrf.invalidate()
            logger.warning("%s %s failed: %s", method, path, redact_text(str(exc)))
            raise TransientNetworkError(f"{method} {path} failed: {exc}") from exc

        if status == 403:
            self.csrf.invalidate()
        try:
            payload = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            if status < 400:
                raise TransientNetworkError(f"{method} {path} returned malformed json", status=status)
            payload = {}

        if status >= 400:
            error = _error_for_status(status, payload)
            logger.warning("%s %s -> %s: %s", method, path, status, redact_text(str(error)))
            raise error
        return payload
