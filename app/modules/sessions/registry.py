import logging
import secrets
from typing import Awaitable, Callable, Dict, Optional, Tuple

from app.core.exceptions import SessionNotFoundError
from app.database.supabase_client import create_session_client
from app.modules.auth.service import AuthBackend, SupabaseAuthBackend
from app.modules.permissions.repository import PermissionStore, SupabasePermissionStore
from app.modules.sessions.manager import SessionLifecycleManager
from app.modules.sessions.storage import InMemorySessionStorage, SessionStorage

logger = logging.getLogger(__name__)

BackendFactory = Callable[[], Awaitable[Tuple[AuthBackend, PermissionStore]]]


async def supabase_backends() -> Tuple[AuthBackend, PermissionStore]:
    """One Supabase client per session, shared by its auth backend and store."""
    client = await create_session_client()
    return SupabaseAuthBackend(client), SupabasePermissionStore(client)


class SessionRegistry:
    """Live sessions of this process, keyed by an unguessable session id."""

    def __init__(
        self,
        backend_factory: BackendFactory = supabase_backends,
        storage: Optional[SessionStorage] = None,
        **manager_options
    ):
        self.backend_factory = backend_factory
        self.storage = storage or InMemorySessionStorage()
        self.manager_options = manager_options
        self._sessions: Dict[str, SessionLifecycleManager] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def login(self, email: str, password: str) -> SessionLifecycleManager:
        auth, store = await self.backend_factory()
        session_id = secrets.token_urlsafe(24)
        manager = SessionLifecycleManager(session_id, auth, store, self.storage, **self.manager_options)
        manager.on_logout.append(self._forget)
        await manager.login(email, password)
        self._sessions[session_id] = manager
        return manager

    def get(self, session_id: str) -> SessionLifecycleManager:
        manager = self._sessions.get(session_id)
        if manager is None or not manager.is_authenticated:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return manager

    def _forget(self, manager: SessionLifecycleManager) -> None:
        self._sessions.pop(manager.session_id, None)

    async def close_all(self) -> None:
        for manager in list(self._sessions.values()):
            try:
                await manager.logout()
            except Exception as e:
                logger.error(f"Error closing session {manager.session_id}: {e}")
        self._sessions.clear()
