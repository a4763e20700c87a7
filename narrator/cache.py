"""Module 3 — Session cache.

Maps a lesson id to its generated Session. Concurrent requests for the same
id share one in-flight fetch; failures are not cached.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .errors import GenerationError
from .models import Session

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[Session]]


class SessionCache:
    def __init__(self, fetch: Fetcher):
        self._fetch = fetch
        self._sessions: dict[str, Session] = {}
        self._pending: dict[str, asyncio.Task] = {}
        self._pins: dict[str, int] = {}
        self.fetch_count = 0

    def __contains__(self, content_id: str) -> bool:
        return content_id in self._sessions or content_id in self._pending

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, content_id: str) -> Optional[Session]:
        return self._sessions.get(content_id)

    def in_flight(self, content_id: str) -> bool:
        return content_id in self._pending

    async def request(self, content_id: str) -> Session:
        """Return the session for content_id, generating it at most once."""
        cached = self._sessions.get(content_id)
        if cached is not None:
            logger.debug("Session cache hit: %s", content_id)
            return cached

        task = self._pending.get(content_id)
        if task is None:
            logger.info("Requesting speech session for %s", content_id)
            self.fetch_count += 1
            task = asyncio.create_task(self._run_fetch(content_id))
            self._pending[content_id] = task
            task.add_done_callback(lambda t, cid=content_id: self._settle(cid, t))
        else:
            logger.debug("Joining in-flight request for %s", content_id)

        # Shield so one caller being cancelled doesn't kill the shared fetch
        return await asyncio.shield(task)

    async def _run_fetch(self, content_id: str) -> Session:
        try:
            return await self._fetch(content_id)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(str(e) or e.__class__.__name__) from e

    def _settle(self, content_id: str, task: asyncio.Task):
        failed = task.cancelled() or task.exception() is not None
        # A discarded id no longer owns this task; drop the result
        if self._pending.get(content_id) is not task:
            return
        del self._pending[content_id]
        if not failed:
            self._sessions[content_id] = task.result()

    # ── Binding / eviction ───────────────────────────────────────────────────

    def pin(self, content_id: str):
        """Mark a session as bound to a player; pinned ids can't be discarded."""
        self._pins[content_id] = self._pins.get(content_id, 0) + 1

    def unpin(self, content_id: str):
        count = self._pins.get(content_id, 0) - 1
        if count > 0:
            self._pins[content_id] = count
        else:
            self._pins.pop(content_id, None)

    def is_pinned(self, content_id: str) -> bool:
        return content_id in self._pins

    def discard(self, content_id: str) -> bool:
        """Forget a lesson's session. An in-flight fetch keeps running but its
        result is dropped. Returns False if the session is still bound."""
        if self.is_pinned(content_id):
            logger.debug("Not discarding %s — still bound to a player", content_id)
            return False
        removed = self._sessions.pop(content_id, None) is not None
        removed = self._pending.pop(content_id, None) is not None or removed
        if removed:
            logger.debug("Discarded session %s", content_id)
        return removed

    def close(self):
        """Cancel every in-flight fetch (shutdown)."""
        for task in self._pending.values():
            if not task.done():
                task.cancel()
        self._pending.clear()
