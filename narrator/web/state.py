"""ReaderState — fans engine events out to WebSocket clients."""
import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)

QUEUE_SIZE = 50

# Engine events forwarded to the browser, with the payload key for their argument
FORWARDED_EVENTS = {
    "playing": "playing",
    "timings_loaded": "words",
    "status": "status",
    "duration": "duration",
    "rate": "rate",
}


def _offer(q: asyncio.Queue, item) -> bool:
    """put_nowait, evicting the oldest item when full. False if it still won't fit."""
    try:
        q.put_nowait(item)
        return True
    except asyncio.QueueFull:
        pass
    try:
        q.get_nowait()
        q.put_nowait(item)
    except (asyncio.QueueEmpty, asyncio.QueueFull):
        return False
    return True


class ReaderState:
    """One bounded queue per connected client; a slow client loses old events."""

    def __init__(self):
        self._clients: dict[str, asyncio.Queue] = {}
        self._unhooks: list = []

    def subscribe(self, client_id: str) -> asyncio.Queue:
        """Queue of (event, data) tuples for one client."""
        self._clients[client_id] = asyncio.Queue(maxsize=QUEUE_SIZE)
        return self._clients[client_id]

    def unsubscribe(self, client_id: str):
        self._clients.pop(client_id, None)

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def publish(self, event: str, data: Any):
        stuck = [cid for cid, q in self._clients.items() if not _offer(q, (event, data))]
        for cid in stuck:
            logger.warning("Dropping WS client %s (queue stuck)", cid)
            self._clients.pop(cid, None)

    def bind(self, engine):
        """Forward the engine's events to every subscriber."""
        self.unbind()
        for event, key in FORWARDED_EVENTS.items():
            self._unhooks.append(engine.events.on(
                event, lambda value, e=event, k=key: self.publish(e, {k: value}),
            ))
        self._unhooks.append(engine.on_word_index_change(
            lambda index: self.publish("word_index", {
                "index": index,
                "position": engine.text_position(index),
            }),
        ))
        self._unhooks.append(engine.events.on("error", lambda info: self.publish("error", info)))

    def unbind(self):
        for unhook in self._unhooks:
            unhook()
        self._unhooks = []
