"""Event publisher: in-process hooks plus an optional WebSocket feed.

Hooks run synchronously in publish order, so in-process consumers (tests,
cache refreshers) see every event. When the WebSocket server is running,
events are also broadcast to connected clients, filtered by the event types
and households each client subscribed to.
"""

import asyncio
import contextlib
import json
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
import websockets
from websockets.asyncio.server import Server, ServerConnection

from ledger_scheduler.config import get_settings
from ledger_scheduler.events.types import EventType, SchedulerEvent

logger = structlog.get_logger(__name__)

EventHook = Callable[[SchedulerEvent], None]


@dataclass(eq=False)
class Subscriber:
    """A connected WebSocket client and its filters."""

    websocket: ServerConnection
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    event_types: set[EventType] = field(default_factory=set)
    households: set[UUID] = field(default_factory=set)

    @property
    def client_id(self) -> str:
        addr = self.websocket.remote_address
        if isinstance(addr, tuple):
            return f"{addr[0]}:{addr[1]}"
        return str(addr)

    def wants(self, event: SchedulerEvent) -> bool:
        """No filters means everything; otherwise both filters must pass."""
        if self.event_types and event.event_type not in self.event_types:
            return False
        if self.households and event.household_id not in self.households:
            return False
        return True


class EventPublisher:
    """Fan-out point for scheduler events.

    Usage:
        publisher = EventPublisher()
        publisher.add_event_hook(my_handler)
        await publisher.start()          # optional WebSocket feed
        publisher.publish(event)
        await publisher.stop()
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        buffer_size: int = 200,
    ):
        if not host or not port:
            settings = get_settings()
            host = host or settings.ws_host
            port = port or settings.ws_port
        self._host = host
        self._port = port

        self._server: Server | None = None
        self._subscribers: set[Subscriber] = set()
        self._event_buffer: deque[SchedulerEvent] = deque(maxlen=buffer_size)
        self._event_hooks: list[EventHook] = []
        self._pending: set[asyncio.Task[None]] = set()
        self._is_running = False

        self._logger = logger.bind(component="event_publisher")

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def client_count(self) -> int:
        return len(self._subscribers)

    @property
    def recent_events(self) -> list[SchedulerEvent]:
        """Recently published events, oldest first."""
        return list(self._event_buffer)

    def events_of(self, event_type: EventType) -> list[SchedulerEvent]:
        return [e for e in self._event_buffer if e.event_type is event_type]

    def add_event_hook(self, hook: EventHook) -> None:
        self._event_hooks.append(hook)

    def remove_event_hook(self, hook: EventHook) -> None:
        if hook in self._event_hooks:
            self._event_hooks.remove(hook)

    def publish(self, event: SchedulerEvent) -> None:
        """Record an event, run hooks, and queue a broadcast if serving."""
        self._event_buffer.append(event)

        for hook in self._event_hooks:
            try:
                hook(event)
            except Exception as e:
                self._logger.error(
                    "event_hook_error", event_type=event.event_type.value, error=str(e)
                )

        if self._is_running and self._subscribers:
            task = asyncio.get_running_loop().create_task(self._broadcast(event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    # === WebSocket feed ===

    async def start(self) -> None:
        """Start the WebSocket server."""
        if self._is_running:
            self._logger.warning("publisher_already_running")
            return

        self._server = await websockets.serve(
            self._handle_client,
            self._host,
            self._port,
            ping_interval=30,
            ping_timeout=10,
        )
        self._is_running = True
        self._logger.info("publisher_started", address=f"ws://{self._host}:{self._port}")

    async def stop(self) -> None:
        """Stop the server, flushing queued broadcasts first."""
        if not self._is_running:
            return

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

        await asyncio.gather(
            *(s.websocket.close(1001, "Server shutting down") for s in self._subscribers),
            return_exceptions=True,
        )
        self._subscribers.clear()

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        self._is_running = False
        self._logger.info("publisher_stopped")

    async def _handle_client(self, websocket: ServerConnection) -> None:
        subscriber = Subscriber(websocket=websocket)
        self._subscribers.add(subscriber)
        self._logger.info("client_connected", client_id=subscriber.client_id)

        if self._event_buffer:
            history = {
                "type": "event_history",
                "events": [e.to_dict() for e in self._event_buffer if subscriber.wants(e)],
            }
            await websocket.send(json.dumps(history))

        try:
            async for message in websocket:
                await self._handle_message(subscriber, message)
        except websockets.ConnectionClosed as e:
            self._logger.info(
                "client_disconnected", client_id=subscriber.client_id, code=e.code
            )
        finally:
            self._subscribers.discard(subscriber)

    async def _handle_message(self, subscriber: Subscriber, message: str | bytes) -> None:
        """Handle ``subscribe`` and ``ping`` messages from a client."""
        try:
            data = json.loads(message)
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._logger.warning("invalid_message", client_id=subscriber.client_id)
            return
        if not isinstance(data, dict):
            return

        msg_type = data.get("type", "")
        if msg_type == "ping":
            await subscriber.websocket.send(json.dumps({"type": "pong"}))
        elif msg_type == "subscribe":
            for et in data.get("event_types", []):
                with contextlib.suppress(ValueError):
                    subscriber.event_types.add(EventType(et))
            for hid in data.get("household_ids", []):
                with contextlib.suppress(ValueError, TypeError):
                    subscriber.households.add(UUID(hid))
            await subscriber.websocket.send(
                json.dumps(
                    {
                        "type": "subscribed",
                        "event_types": sorted(et.value for et in subscriber.event_types),
                        "household_ids": sorted(str(h) for h in subscriber.households),
                    }
                )
            )
        else:
            self._logger.warning(
                "unknown_message_type", client_id=subscriber.client_id, msg_type=msg_type
            )

    async def _broadcast(self, event: SchedulerEvent) -> None:
        message = json.dumps(event.to_dict())
        targets = [s for s in list(self._subscribers) if s.wants(event)]
        results = await asyncio.gather(
            *(s.websocket.send(message) for s in targets), return_exceptions=True
        )
        for subscriber, result in zip(targets, results):
            if isinstance(result, websockets.ConnectionClosed):
                self._subscribers.discard(subscriber)
            elif isinstance(result, Exception):
                self._logger.error(
                    "send_error", client_id=subscriber.client_id, error=str(result)
                )

    def get_status(self) -> dict[str, Any]:
        return {
            "is_running": self._is_running,
            "host": self._host,
            "port": self._port,
            "client_count": len(self._subscribers),
            "buffer_size": len(self._event_buffer),
        }
