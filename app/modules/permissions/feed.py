import asyncio
import logging
from typing import Any, Dict, Optional, Set

from app.config import settings
from app.modules.permissions.cache import CacheSnapshot
from app.modules.permissions.repository import (
    ChangeEvent, ChangeScope, PermissionStore,
    PROFILES_TABLE, ROLE_DEFAULTS_TABLE, USER_OVERRIDES_TABLE
)
from app.modules.permissions.schemas import Role
from app.modules.permissions.service import PermissionService

logger = logging.getLogger(__name__)


class ChangeFeedListener:
    """
    Realtime subscriptions that keep one session's permissions current.

    Scopes: the user's own overrides, the user's profile row, and the role
    defaults of the user's current role. Delivery is best effort; missed
    events are covered by focus-regain re-resolution and by the periodic
    reconciliation loop started here.
    """

    def __init__(
        self,
        store: PermissionStore,
        service: PermissionService,
        user_id: str,
        reconcile_interval: Optional[float] = None,
    ):
        self.store = store
        self.service = service
        self.user_id = user_id
        self.reconcile_interval = (
            settings.permission_reconcile_interval_sec if reconcile_interval is None else reconcile_interval
        )
        self._handles: Dict[str, Any] = {}
        self._role: Optional[Role] = None
        self._tasks: Set[asyncio.Task] = set()
        self._reconciler: Optional[asyncio.Task] = None
        self._running = False
        self._rescope_lock = asyncio.Lock()
        self.service.add_listener(self._on_snapshot)

    @property
    def subscribed_role(self) -> Optional[Role]:
        return self._role

    @property
    def scopes(self):
        return set(self._handles)

    async def start(self, role: Optional[Role]) -> None:
        self._running = True
        await self._subscribe("overrides", ChangeScope(USER_OVERRIDES_TABLE, "user_id", self.user_id))
        await self._subscribe("profile", ChangeScope(PROFILES_TABLE, "id", self.user_id))
        await self._rescope(role)
        if self.reconcile_interval and self.reconcile_interval > 0:
            self._reconciler = asyncio.ensure_future(self._reconcile_loop())

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._tasks)
        if self._reconciler is not None:
            tasks.append(self._reconciler)
            self._reconciler = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        for name in list(self._handles):
            await self._unsubscribe(name)
        self._role = None

    async def _subscribe(self, name: str, scope: ChangeScope) -> None:
        try:
            self._handles[name] = await self.store.subscribe(scope, self._handle_change)
        except Exception as e:
            # Focus regain and periodic reconciliation still bound staleness
            logger.error(f"Change feed subscription to {scope.table} ({scope.filter}) failed: {e}")

    async def _unsubscribe(self, name: str) -> None:
        handle = self._handles.pop(name, None)
        if handle is None:
            return
        try:
            await self.store.unsubscribe(handle)
        except Exception as e:
            logger.warning(f"Failed to unsubscribe change feed scope {name}: {e}")

    async def _rescope(self, role: Optional[Role]) -> None:
        """Point the role-defaults subscription at role."""
        async with self._rescope_lock:
            if role is self._role and "role" in self._handles:
                return
            await self._unsubscribe("role")
            self._role = role
            if role is not None and self._running:
                await self._subscribe("role", ChangeScope(ROLE_DEFAULTS_TABLE, "role", role.value))

    async def wait_idle(self) -> None:
        """Wait for re-subscriptions and the resolutions they triggered."""
        while True:
            await self.service.wait_idle()
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _handle_change(self, event: ChangeEvent) -> None:
        if not self._running:
            return
        logger.debug(f"Change feed {event.event_type} on {event.table} for user {self.user_id}")
        if event.table == PROFILES_TABLE:
            new_role = Role.parse(event.record.get("role")) if event.record else None
            if new_role is not None and new_role is not self._role:
                logger.info(f"Role of user {self.user_id} changed to {new_role.value}; re-subscribing")
                self._spawn(self._rescope(new_role))
        self.service.request_refresh()

    def _on_snapshot(self, snapshot: CacheSnapshot) -> None:
        # Catches role changes whose feed event was dropped
        if not self._running or snapshot.profile is None:
            return
        if snapshot.profile.role is not self._role:
            self._spawn(self._rescope(snapshot.profile.role))

    async def _reconcile_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.reconcile_interval)
            logger.debug(f"Periodic permission reconciliation for user {self.user_id}")
            self.service.request_refresh()
