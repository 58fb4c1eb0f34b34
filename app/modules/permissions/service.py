import asyncio
import logging
from typing import Callable, List, Optional

from app.modules.permissions.cache import CacheSnapshot, SessionPermissionCache
from app.modules.permissions.resolver import PermissionResolver

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[CacheSnapshot], None]


class PermissionService:
    """
    Keeps one session's permission cache fresh.

    Every trigger (login, explicit refresh, change feed, focus regain,
    periodic reconciliation) funnels into resolve_and_swap(). Background
    triggers go through request_refresh(), which coalesces bursts into at
    most one running and one pending resolution.
    """

    def __init__(self, resolver: PermissionResolver, cache: SessionPermissionCache, user_id: str):
        self.resolver = resolver
        self.cache = cache
        self.user_id = user_id
        self._listeners: List[SnapshotListener] = []
        self._worker: Optional[asyncio.Task] = None
        self._pending = False
        self._closed = False

    def add_listener(self, listener: SnapshotListener) -> None:
        """Called with the new snapshot after every applied resolution."""
        self._listeners.append(listener)

    async def resolve_and_swap(self) -> bool:
        """Resolve and install the result unless a newer resolution already landed."""
        if self._closed:
            return False
        sequence = self.cache.next_sequence()
        result = await self.resolver.resolve(self.user_id)
        if self._closed or not self.cache.apply(sequence, result):
            return False
        if result.error is not None:
            logger.warning(f"Permissions for user {self.user_id} reset to empty after read failure")
        for listener in list(self._listeners):
            try:
                listener(self.cache.snapshot)
            except Exception as e:
                logger.error(f"Permission snapshot listener failed: {e}")
        return True

    def request_refresh(self) -> None:
        """Schedule a background resolution; safe to call from sync callbacks."""
        if self._closed:
            return
        if self._worker is not None and not self._worker.done():
            self._pending = True
            return
        self._pending = False
        self._worker = asyncio.ensure_future(self._drain())

    async def _drain(self) -> None:
        while True:
            self._pending = False
            try:
                await self.resolve_and_swap()
            except Exception as e:
                logger.error(f"Background permission refresh failed for user {self.user_id}: {e}")
            if not self._pending or self._closed:
                break

    async def wait_idle(self) -> None:
        """Wait for any scheduled background resolution to finish."""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    async def close(self) -> None:
        self._closed = True
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
