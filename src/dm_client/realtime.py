"""Feed real-time frames from the WebSocket into the bus, and the bus into the stores."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import aiohttp

from .config import ClientConfig
from .events import (
    EventBus,
    MessageDeleted,
    MessageReceived,
    PresenceChanged,
    PresenceSnapshot,
    RealtimeEvent,
    Subscription,
    TypingChanged,
    parse_frame,
)
from .presence import PresenceTracker
from .store import ConversationStore
from .typing_tracker import TypingTracker

logger = logging.getLogger(__name__)


class RealtimeRouter:
    """Routes each event variant to the component that owns its state."""

    def __init__(
        self,
        store: ConversationStore,
        presence: PresenceTracker,
        typing: Optional[TypingTracker] = None,
    ) -> None:
        self.store = store
        self.presence = presence
        self.typing = typing or store.typing
        self._subscription: Optional[Subscription] = None

    def bind(self, bus: EventBus) -> Subscription:
        self._subscription = bus.subscribe(self.dispatch)
        return self._subscription

    def unbind(self, bus: EventBus) -> None:
        if self._subscription is not None:
            bus.unsubscribe(self._subscription)
            self._subscription = None

    def dispatch(self, event: RealtimeEvent) -> None:
        if isinstance(event, MessageReceived):
            self.store.handle_message_received(event)
        elif isinstance(event, MessageDeleted):
            self.store.handle_message_deleted(event)
        elif isinstance(event, TypingChanged):
            self.typing.handle_remote(event.conversation_id, event.user_id, event.is_typing)
        elif isinstance(event, PresenceSnapshot):
            self.presence.apply_snapshot(event.user_ids)
        elif isinstance(event, PresenceChanged):
            self.presence.apply_delta(event.user_id, event.status)


def publish_text_frame(bus: EventBus, raw: str) -> Optional[RealtimeEvent]:
    try:
        event = parse_frame(json.loads(raw))
    except (ValueError, TypeError, OverflowError, RecursionError) as exc:
        logger.warning("dropping malformed realtime frame: %s", exc)
        return None
    if event is None:
        logger.debug("ignoring unknown realtime frame")
        return None
    bus.publish(event)
    return event


async def pump(ws: aiohttp.ClientWebSocketResponse, bus: EventBus) -> int:
    """Publish every text frame from ``ws`` until the socket closes.

    Returns the number of events published.
    """

    published = 0
    async for msg in ws:
        if msg.type == aiohttp.WSMsgType.TEXT:
            if publish_text_frame(bus, msg.data) is not None:
                published += 1
        elif msg.type in {aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR}:
            break
    return published


class RealtimeConnection:
    """Keeps a WebSocket open to the real-time feed, reconnecting after drops."""

    def __init__(self, session: aiohttp.ClientSession, config: ClientConfig, bus: EventBus) -> None:
        self.session = session
        self.config = config
        self.bus = bus
        self.connected = asyncio.Event()
        self._stopping = False
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    async def run(self) -> None:
        while not self._stopping:
            try:
                async with self.session.ws_connect(self.config.ws_url, heartbeat=30.0) as ws:
                    self._ws = ws
                    self.connected.set()
                    logger.info("realtime connected to %s", self.config.ws_url)
                    await pump(ws, self.bus)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.warning("realtime connection failed: %s", exc)
            finally:
                self._ws = None
                self.connected.clear()
            if self._stopping:
                break
            await asyncio.sleep(self.config.reconnect_delay_s)

    async def stop(self) -> None:
        self._stopping = True
        if self._ws is not None:
            await self._ws.close()
