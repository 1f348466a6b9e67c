"""Publish/subscribe fan-out of graph changes to WebSocket clients."""
from fastapi import WebSocket
from typing import Any, Dict, Iterable, Optional, Protocol, Set
import asyncio
import json
import logging

logger = logging.getLogger("mind_mesh")

# Individual node create/update/delete events
NODES_CHANNEL = "/topic/nodes"
# Full node list after a connection is made
GRAPH_CHANNEL = "/topic/graph"

CHANNELS = (NODES_CHANNEL, GRAPH_CHANNEL)


class Broadcaster(Protocol):
    def publish(self, channel: str, payload: Any) -> None: ...


class WebSocketBroadcaster:
    """
    Keeps a per-channel set of sockets and pushes every published message to
    all of them.

    publish() is synchronous and never waits for delivery: the HTTP handlers
    that call it run in worker threads, so it hands the send off to the event
    loop that owns the sockets.
    """

    def __init__(self):
        self.subscriptions: Dict[str, Set[WebSocket]] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # Strong references to in-flight sends so they are not collected early
        self._pending: Set[asyncio.Task] = set()

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    async def subscribe(self, websocket: WebSocket, channels: Iterable[str]) -> None:
        """Register an accepted socket on the given channels."""
        self.bind_loop(asyncio.get_running_loop())
        channels = list(channels)
        for channel in channels:
            self.subscriptions.setdefault(channel, set()).add(websocket)
        logger.info(f"WebSocket subscribed to {sorted(channels)}")

    def unsubscribe(self, websocket: WebSocket) -> None:
        """Remove a socket from every channel."""
        for channel in list(self.subscriptions):
            self.subscriptions[channel].discard(websocket)
            if not self.subscriptions[channel]:
                del self.subscriptions[channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self.subscriptions.get(channel, ()))

    def publish(self, channel: str, payload: Any) -> None:
        if not self.subscriptions.get(channel):
            return
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning(f"No event loop bound; dropping message for {channel}")
            return

        message = json.dumps({"channel": channel, "payload": payload}, default=str)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            task = loop.create_task(self._send(channel, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            asyncio.run_coroutine_threadsafe(self._send(channel, message), loop)

    async def _send(self, channel: str, message: str) -> None:
        """Send to every subscriber of a channel, dropping sockets that fail."""
        disconnected = set()
        for websocket in list(self.subscriptions.get(channel, ())):
            try:
                await websocket.send_text(message)
            except Exception as e:
                logger.warning(f"Failed to send WebSocket message on {channel}: {e}")
                disconnected.add(websocket)

        for ws in disconnected:
            self.unsubscribe(ws)


broadcaster = WebSocketBroadcaster()
