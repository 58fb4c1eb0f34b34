"""
Session lifecycle: login, hard expiry, token refresh, heartbeat, focus
regain and teardown for one authenticated session.

Expiry is always computed as clock() - persisted login timestamp on each
tick, so suspend/resume or a process restart cannot stretch a session past
the ceiling. Refreshing the credential never moves the login timestamp.
"""

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from app.config import settings
from app.core.exceptions import AccessControlError
from app.modules.auth.schemas import Credential
from app.modules.auth.service import AuthBackend, validate_login_input
from app.modules.permissions.cache import SessionPermissionCache
from app.modules.permissions.feed import ChangeFeedListener
from app.modules.permissions.gate import AccessGate
from app.modules.permissions.repository import PermissionStore, utc_from_timestamp
from app.modules.permissions.resolver import PermissionResolver
from app.modules.permissions.schemas import Role
from app.modules.permissions.service import PermissionService
from app.modules.sessions.storage import SessionStorage, login_timestamp_slot

logger = logging.getLogger(__name__)

SessionListener = Callable[["SessionLifecycleManager"], object]


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"
    LOGGED_OUT = "logged_out"


LIVE_STATES = (SessionState.AUTHENTICATED, SessionState.REFRESHING)


def is_currently_active(last_heartbeat: Optional[datetime], now: Optional[datetime] = None,
                        window_sec: Optional[float] = None) -> bool:
    """True when the last heartbeat falls within the activity window (5 minutes by default)."""
    if last_heartbeat is None:
        return False
    if last_heartbeat.tzinfo is None:
        last_heartbeat = last_heartbeat.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    window = settings.heartbeat_active_window_sec if window_sec is None else window_sec
    return (now - last_heartbeat).total_seconds() <= window


class SessionLifecycleManager:
    def __init__(
        self,
        session_id: str,
        auth: AuthBackend,
        store: PermissionStore,
        storage: SessionStorage,
        clock: Callable[[], float] = time.time,
        max_age_sec: Optional[float] = None,
        expiry_check_interval: Optional[float] = None,
        refresh_check_interval: Optional[float] = None,
        refresh_margin: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        reconcile_interval: Optional[float] = None,
        read_timeout: Optional[float] = None,
        start_timers: bool = True,
    ):
        self.session_id = session_id
        self.auth = auth
        self.store = store
        self.storage = storage
        self.clock = clock
        self.max_age_sec = settings.session_max_age_sec if max_age_sec is None else max_age_sec
        self.expiry_check_interval = expiry_check_interval or settings.session_check_interval_sec
        self.refresh_check_interval = refresh_check_interval or settings.token_refresh_check_interval_sec
        self.refresh_margin = settings.token_refresh_margin_sec if refresh_margin is None else refresh_margin
        self.heartbeat_interval = heartbeat_interval or settings.heartbeat_interval_sec
        self.reconcile_interval = reconcile_interval
        self.read_timeout = read_timeout
        self.start_timers = start_timers

        self.state = SessionState.ANONYMOUS
        self.credential: Optional[Credential] = None
        self.user_id: Optional[str] = None
        self.last_heartbeat: Optional[float] = None
        self.cache = SessionPermissionCache()
        self.gate = AccessGate(self.cache)
        self.permissions: Optional[PermissionService] = None
        self.feed: Optional[ChangeFeedListener] = None
        self._timers: List[asyncio.Task] = []
        self._hidden = False

        self.on_login: List[SessionListener] = []
        self.on_logout: List[SessionListener] = []
        self.on_session_expired: List[SessionListener] = []

    # --- session state ---
    @property
    def is_authenticated(self) -> bool:
        return self.state in LIVE_STATES

    @property
    def user_role(self) -> Optional[Role]:
        profile = self.cache.profile
        if not self.is_authenticated or profile is None:
            return None
        return profile.role

    @property
    def is_admin(self) -> bool:
        profile = self.cache.profile
        return (
            self.is_authenticated
            and profile is not None
            and profile.is_active
            and profile.role is Role.ADMIN
        )

    @property
    def login_timestamp(self) -> Optional[float]:
        raw = self.storage.get(login_timestamp_slot(self.session_id))
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            logger.warning(f"Corrupt login timestamp for session {self.session_id}")
            return None

    def elapsed(self) -> Optional[float]:
        started = self.login_timestamp
        return None if started is None else self.clock() - started

    # --- access gate ---
    def has_permission(self, key: str) -> bool:
        return self.is_authenticated and self.gate.has_permission(key)

    def can_access_page(self, page: str) -> bool:
        return self.is_authenticated and self.gate.can_access_page(page)

    async def refresh_permissions(self) -> bool:
        """Explicit re-resolution; returns whether the result was installed."""
        if not self.is_authenticated or self.permissions is None:
            return False
        return await self.permissions.resolve_and_swap()

    # --- login ---
    async def login(self, email: str, password: str) -> Credential:
        if self.is_authenticated or self.state is SessionState.AUTHENTICATING:
            raise AccessControlError("Session is already signed in")
        clean_email, password = validate_login_input(email, password)

        self.state = SessionState.AUTHENTICATING
        try:
            credential = await self.auth.sign_in(clean_email, password)
        except Exception:
            self.state = SessionState.ANONYMOUS
            raise

        now = self.clock()
        self.storage.set(login_timestamp_slot(self.session_id), repr(now))
        await self._start(credential)
        logger.info(f"Session {self.session_id} signed in as user {credential.user_id}")

        try:
            await self.store.touch_last_login(credential.user_id, utc_from_timestamp(now))
        except Exception as e:
            logger.warning(f"Could not update last login for user {credential.user_id}: {e}")
        await self._emit(self.on_login)
        return credential

    async def restore(self, credential: Credential) -> bool:
        """
        Resume after a process restart using the persisted login timestamp.

        Entry point for an embedding process that persists credentials itself;
        the HTTP surface keeps sessions in memory only and never calls it.
        """
        elapsed = self.elapsed()
        if elapsed is None or elapsed >= self.max_age_sec:
            logger.info(f"Session {self.session_id} cannot be restored; login timestamp missing or expired")
            await self._teardown(expired=True)
            return False
        await self._start(credential)
        await self._emit(self.on_login)
        return True

    async def _start(self, credential: Credential) -> None:
        self.credential = credential
        self.user_id = credential.user_id
        resolver = PermissionResolver(self.store, timeout=self.read_timeout)
        self.permissions = PermissionService(resolver, self.cache, credential.user_id)
        self.feed = ChangeFeedListener(
            self.store, self.permissions, credential.user_id, reconcile_interval=self.reconcile_interval
        )
        self._hidden = False
        self.state = SessionState.AUTHENTICATED

        await self.permissions.resolve_and_swap()
        if not self.is_authenticated:
            return
        await self.feed.start(self.user_role)
        await self.heartbeat()
        if self.start_timers:
            self._timers = [
                asyncio.ensure_future(self._every(self.expiry_check_interval, self.check_expiry, "expiry")),
                asyncio.ensure_future(self._every(self.refresh_check_interval, self.check_token_refresh, "token refresh")),
                asyncio.ensure_future(self._every(self.heartbeat_interval, self.heartbeat, "heartbeat")),
            ]

    async def _every(self, interval: float, action, name: str) -> None:
        while self.is_authenticated:
            await asyncio.sleep(interval)
            if not self.is_authenticated:
                break
            try:
                await action()
            except Exception as e:
                logger.error(f"Session {self.session_id} {name} tick failed: {e}")

    # --- timers ---
    async def check_expiry(self) -> bool:
        """Force logout once the session outlives its ceiling; returns True if it expired."""
        if not self.is_authenticated:
            return False
        elapsed = self.elapsed()
        if elapsed is not None and elapsed < self.max_age_sec:
            return False
        logger.info(f"Session {self.session_id} reached its maximum age; signing out")
        await self._teardown(expired=True)
        return True

    async def check_token_refresh(self) -> bool:
        """Refresh the credential when it is within the refresh margin of its own expiry."""
        if self.state is not SessionState.AUTHENTICATED or self.credential is None:
            return False
        expires_at = self.credential.expires_at
        if expires_at is None or expires_at - self.clock() > self.refresh_margin:
            return False
        return await self.refresh_credential()

    async def refresh_credential(self) -> bool:
        if self.state is not SessionState.AUTHENTICATED:
            return False
        self.state = SessionState.REFRESHING
        try:
            credential = await self.auth.refresh_credential()
        except Exception as e:
            logger.error(f"Credential refresh failed for session {self.session_id}; signing out: {e}")
            await self._teardown()
            return False
        if self.state is not SessionState.REFRESHING:
            return False
        self.credential = credential
        self.state = SessionState.AUTHENTICATED
        logger.debug(f"Session {self.session_id} credential refreshed")
        return True

    async def heartbeat(self) -> bool:
        if not self.is_authenticated:
            return False
        now = self.clock()
        self.last_heartbeat = now
        try:
            await self.store.record_heartbeat(self.session_id, self.user_id, utc_from_timestamp(now))
        except Exception as e:
            logger.warning(f"Heartbeat failed for session {self.session_id}: {e}")
            return False
        return True

    # --- focus / visibility ---
    async def set_visibility(self, visible: bool) -> None:
        was_hidden = self._hidden
        self._hidden = not visible
        if visible and was_hidden:
            await self.focus_regained()

    async def focus_regained(self) -> None:
        """Catch up on anything missed while in the background."""
        if not self.is_authenticated:
            return
        if await self.check_expiry():
            return
        await self.heartbeat()
        await self.refresh_permissions()

    # --- teardown ---
    async def logout(self) -> None:
        await self._teardown()

    async def _teardown(self, expired: bool = False) -> None:
        if self.state is SessionState.LOGGED_OUT:
            return
        # Local state is cleared before any await so a failing network call
        # can never leave the session looking authenticated
        self.state = SessionState.LOGGED_OUT
        self.cache.clear()
        self.credential = None
        self.last_heartbeat = None
        self.storage.delete(login_timestamp_slot(self.session_id))
        current = asyncio.current_task()
        timers, self._timers = self._timers, []
        for timer in timers:
            if timer is not current:
                timer.cancel()
        permissions, self.permissions = self.permissions, None
        feed, self.feed = self.feed, None

        if permissions is not None:
            await permissions.close()
        if feed is not None:
            await feed.stop()
        try:
            await self.auth.sign_out()
        except Exception as e:
            logger.warning(f"Sign-out call failed for session {self.session_id}: {e}")

        logger.info(f"Session {self.session_id} {'expired' if expired else 'signed out'}")
        if expired:
            await self._emit(self.on_session_expired)
        await self._emit(self.on_logout)

    async def _emit(self, listeners: List[SessionListener]) -> None:
        for listener in list(listeners):
            try:
                result = listener(self)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Session {self.session_id} event listener failed: {e}")

    def describe(self) -> dict:
        credential = self.credential
        return {
            "session_id": self.session_id,
            "state": self.state,
            "is_authenticated": self.is_authenticated,
            "user_id": self.user_id if self.is_authenticated else None,
            "email": credential.email if credential else None,
            "role": self.user_role,
            "is_admin": self.is_admin,
            "login_timestamp": self.login_timestamp,
            "credential_expires_at": credential.expires_at if credential else None,
        }
