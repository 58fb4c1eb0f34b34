import asyncio
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from app.config.permissions_config import PAGES, PAGE_CATEGORY, PERMISSION_MATRIX
from app.core.exceptions import CredentialRefreshError, InvalidCredentialsError, PermissionReadError
from app.core.rate_limit import limiter
from app.main import app
from app.modules.auth.schemas import Credential
from app.modules.auth.service import AuthBackend
from app.modules.permissions.repository import ChangeEvent, ChangeScope, PermissionStore
from app.modules.permissions.schemas import Permission, Role, RoleDefault, UserOverride, UserProfile
from app.modules.sessions.manager import SessionLifecycleManager
from app.modules.sessions.registry import SessionRegistry
from app.modules.sessions.storage import InMemorySessionStorage

PASSWORD = "Sh1pping!Pass"

USERS = {
    "admin@example.com": ("u-admin", Role.ADMIN),
    "manager@example.com": ("u-manager", Role.MANAGER),
    "user@example.com": ("u-user", Role.USER),
    "viewer@example.com": ("u-viewer", Role.VIEWER),
}


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePermissionStore(PermissionStore):
    """In-memory stand-in for the Supabase tables and realtime channels."""

    def __init__(self):
        self.permissions: Dict[str, Permission] = {}
        self.role_defaults: Dict[Tuple[Role, str], RoleDefault] = {}
        self.overrides: Dict[Tuple[str, str], UserOverride] = {}
        self.profiles: Dict[str, UserProfile] = {}
        self.subscriptions: Dict[int, Tuple[ChangeScope, Callable[[ChangeEvent], None]]] = {}
        self.heartbeats: List[Tuple[str, str, Any]] = []
        self.last_logins: List[Tuple[str, Any]] = []
        self.calls = Counter()
        self.fail_reads = False
        self.fail_subscribe = False
        self.read_delay = 0.0
        self._next_handle = 0

    # --- fixtures helpers ---
    def add_permission(self, key: str, active: bool = True, category: str = PAGE_CATEGORY) -> Permission:
        permission = Permission(id=f"perm-{key}", key=key, name=key, category=category, active=active)
        self.permissions[permission.id] = permission
        return permission

    def permission_id(self, key: str) -> str:
        return f"perm-{key}"

    def set_role_default(self, role: Role, key: str, granted: bool) -> None:
        pid = self.permission_id(key)
        self.role_defaults[(role, pid)] = RoleDefault(role=role, permission_id=pid, granted=granted)

    def set_override(self, user_id: str, key: str, granted: bool) -> None:
        pid = self.permission_id(key)
        self.overrides[(user_id, pid)] = UserOverride(
            id=f"ovr-{user_id}-{key}", user_id=user_id, permission_id=pid, granted=granted, granted_by="u-admin"
        )

    def delete_override(self, user_id: str, key: str) -> None:
        self.overrides.pop((user_id, self.permission_id(key)), None)

    def add_profile(self, user_id: str, role: Optional[Role], is_active: bool = True) -> UserProfile:
        profile = UserProfile(id=user_id, email=f"{user_id}@example.com", role=role, is_active=is_active)
        self.profiles[user_id] = profile
        return profile

    def update_profile(self, user_id: str, **changes) -> UserProfile:
        profile = self.profiles[user_id].model_copy(update=changes)
        self.profiles[user_id] = profile
        return profile

    def emit(self, table: str, record: Dict[str, Any], event_type: str = "UPDATE") -> int:
        """
        Deliver a change event like realtime does; returns deliveries.

        For DELETE, record is the old row: the column filter is not applied
        server side and the payload only has old_record.
        """
        delivered = 0
        for scope, callback in list(self.subscriptions.values()):
            if scope.table != table:
                continue
            if event_type == "DELETE":
                if not scope.admits_delete(record):
                    continue
                event = ChangeEvent(table=table, event_type=event_type, old_record=record)
            elif str(record.get(scope.column)) == scope.value:
                event = ChangeEvent(table=table, event_type=event_type, record=record)
            else:
                continue
            callback(event)
            delivered += 1
        return delivered

    def scopes(self) -> List[ChangeScope]:
        return [scope for scope, _ in self.subscriptions.values()]

    # --- PermissionStore ---
    async def _read(self, name: str):
        self.calls[name] += 1
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        if self.fail_reads:
            raise PermissionReadError(f"{name} unavailable")

    async def read_permission_catalog(self) -> List[Permission]:
        await self._read("catalog")
        return list(self.permissions.values())

    async def read_role_defaults(self, role: Role) -> List[RoleDefault]:
        await self._read("role_defaults")
        return [row for (r, _), row in self.role_defaults.items() if r is role]

    async def read_user_overrides(self, user_id: str) -> List[UserOverride]:
        await self._read("overrides")
        return [row for (uid, _), row in self.overrides.items() if uid == user_id]

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        await self._read("profile")
        return self.profiles.get(user_id)

    async def subscribe(self, scope: ChangeScope, on_change) -> Any:
        if self.fail_subscribe:
            raise ConnectionError("realtime unavailable")
        self._next_handle += 1
        self.subscriptions[self._next_handle] = (scope, on_change)
        return self._next_handle

    async def unsubscribe(self, handle: Any) -> None:
        self.subscriptions.pop(handle, None)

    async def record_heartbeat(self, session_id: str, user_id: str, at) -> None:
        self.heartbeats.append((session_id, user_id, at))

    async def touch_last_login(self, user_id: str, at) -> None:
        self.last_logins.append((user_id, at))


class FakeAuthBackend(AuthBackend):
    def __init__(self, clock: FakeClock, token_lifetime: float = 3600):
        self.clock = clock
        self.token_lifetime = token_lifetime
        self.fail_refresh = False
        self.fail_sign_out = False
        self.sign_in_calls = 0
        self.refresh_calls = 0
        self.sign_out_calls = 0

    def _credential(self, user_id: str, email: str) -> Credential:
        return Credential(
            access_token=f"token-{user_id}-{self.refresh_calls}",
            refresh_token="refresh",
            expires_at=self.clock() + self.token_lifetime,
            user_id=user_id,
            email=email,
        )

    async def sign_in(self, email: str, password: str) -> Credential:
        self.sign_in_calls += 1
        if email not in USERS or password != PASSWORD:
            raise InvalidCredentialsError()
        self._email = email
        return self._credential(USERS[email][0], email)

    async def refresh_credential(self) -> Credential:
        self.refresh_calls += 1
        if self.fail_refresh:
            raise CredentialRefreshError("refresh token revoked")
        return self._credential(USERS[self._email][0], self._email)

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        if self.fail_sign_out:
            raise ConnectionError("network down")


def seed_store(store: FakePermissionStore) -> FakePermissionStore:
    for page in PAGES.values():
        store.add_permission(page["key"])
    for row in PERMISSION_MATRIX["role_defaults"]:
        store.set_role_default(Role(row["role"]), row["permission_key"], row["granted"])
    for user_id, role in USERS.values():
        store.add_profile(user_id, role)
    return store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> FakePermissionStore:
    return seed_store(FakePermissionStore())


@pytest.fixture
def auth(clock) -> FakeAuthBackend:
    return FakeAuthBackend(clock)


@pytest.fixture
def storage() -> InMemorySessionStorage:
    return InMemorySessionStorage()


@pytest.fixture
async def session(auth, store, storage, clock):
    manager = SessionLifecycleManager(
        "sess-1", auth, store, storage,
        clock=clock, start_timers=False, reconcile_interval=0,
    )
    yield manager
    await manager.logout()


@pytest.fixture
def registry(store, clock) -> SessionRegistry:
    async def backends():
        return FakeAuthBackend(clock), store
    return SessionRegistry(backend_factory=backends, clock=clock, start_timers=False, reconcile_interval=0)


@pytest.fixture
def client(registry):
    limiter.reset()
    original = app.state.session_registry
    app.state.session_registry = registry
    # Context manager keeps one event loop alive across requests
    with TestClient(app) as client:
        yield client
    app.state.session_registry = original


def login(client: TestClient, email: str, password: str = PASSWORD) -> str:
    response = client.post("/api/v1/sessions/login", json={"email": email, "password": password})
    assert response.status_code == 201, response.text
    return response.json()["session_id"]
