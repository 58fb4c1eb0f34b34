"""
Permission resolution.

resolve_permissions() is the pure precedence rule:
  inactive profile            -> nothing
  admin                       -> every active catalog key
  otherwise                   -> role default, replaced by the user override when one exists
PermissionResolver wraps it with one batched, time-bounded read of the
backing tables and fails closed on any read error.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from app.config import settings
from app.core.exceptions import PermissionReadError
from app.modules.permissions.repository import PermissionStore
from app.modules.permissions.schemas import (
    Permission, PermissionCategory, PermissionExplanation, PermissionSource,
    Role, RoleDefault, UserOverride, UserProfile
)

logger = logging.getLogger(__name__)

EMPTY: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class ResolutionResult:
    keys: FrozenSet[str] = EMPTY
    profile: Optional[UserProfile] = None
    error: Optional[PermissionReadError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _merge(
    profile: Optional[UserProfile],
    catalog: Iterable[Permission],
    role_defaults: Iterable[RoleDefault],
    overrides: Iterable[UserOverride],
) -> Dict[str, Tuple[bool, PermissionSource]]:
    active = {p.id: p.key for p in catalog if p.active}
    if profile is None or not profile.is_active or profile.role is None:
        return {key: (False, PermissionSource.NONE) for key in active.values()}
    if profile.role is Role.ADMIN:
        return {key: (True, PermissionSource.ADMIN) for key in active.values()}

    merged = {key: (False, PermissionSource.NONE) for key in active.values()}
    for row in role_defaults:
        if row.role is profile.role and row.permission_id in active:
            merged[active[row.permission_id]] = (row.granted, PermissionSource.ROLE)
    for row in overrides:
        if row.user_id == profile.id and row.permission_id in active:
            merged[active[row.permission_id]] = (row.granted, PermissionSource.USER)
    return merged


def resolve_permissions(
    profile: Optional[UserProfile],
    catalog: Iterable[Permission],
    role_defaults: Iterable[RoleDefault],
    overrides: Iterable[UserOverride],
) -> FrozenSet[str]:
    """Effective permission keys for profile. Pure; safe under any read interleaving."""
    merged = _merge(profile, catalog, role_defaults, overrides)
    return frozenset(key for key, (granted, _) in merged.items() if granted)


def explain_permissions(
    profile: Optional[UserProfile],
    catalog: Iterable[Permission],
    role_defaults: Iterable[RoleDefault],
    overrides: Iterable[UserOverride],
) -> List[PermissionExplanation]:
    merged = _merge(profile, catalog, role_defaults, overrides)
    return [
        PermissionExplanation(permission_key=key, granted=granted, source=source)
        for key, (granted, source) in sorted(merged.items())
    ]


class PermissionResolver:
    def __init__(self, store: PermissionStore, timeout: Optional[float] = None):
        self.store = store
        self.timeout = settings.permission_read_timeout_sec if timeout is None else timeout

    async def _read_inputs(self, user_id: str):
        profile = await self.store.get_profile(user_id)
        if profile is None or not profile.is_active or profile.role is None:
            return profile, [], [], []
        if profile.role is Role.ADMIN:
            catalog = await self.store.read_permission_catalog()
            return profile, catalog, [], []
        catalog, role_defaults, overrides = await asyncio.gather(
            self.store.read_permission_catalog(),
            self.store.read_role_defaults(profile.role),
            self.store.read_user_overrides(user_id),
        )
        return profile, catalog, role_defaults, overrides

    async def _bounded(self, coro):
        """Await coro under the read timeout, normalizing every failure to PermissionReadError."""
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except PermissionReadError:
            raise
        except asyncio.TimeoutError as e:
            raise PermissionReadError(f"Permission read timed out after {self.timeout}s") from e
        except Exception as e:
            raise PermissionReadError(f"Permission read failed: {e}") from e

    async def resolve(self, user_id: str) -> ResolutionResult:
        """Resolve user_id's permission set; any read failure yields an empty set plus the error."""
        try:
            profile, catalog, role_defaults, overrides = await self._bounded(self._read_inputs(user_id))
        except PermissionReadError as e:
            logger.error(f"Permission resolution failed for user {user_id}, denying all: {e}")
            return ResolutionResult(keys=EMPTY, error=e)

        if profile is None:
            logger.warning(f"No profile found for user {user_id}; no permissions granted")
        keys = resolve_permissions(profile, catalog, role_defaults, overrides)
        logger.debug(f"Resolved {len(keys)} permission(s) for user {user_id}")
        return ResolutionResult(keys=keys, profile=profile)

    async def explain(self, user_id: str) -> List[PermissionExplanation]:
        """Per-key breakdown with the source that decided it. Raises PermissionReadError."""
        profile, catalog, role_defaults, overrides = await self._bounded(self._read_inputs(user_id))
        if profile is None or not profile.is_active or profile.role is None:
            # Still list every key as denied
            catalog = await self._bounded(self.store.read_permission_catalog())
        return explain_permissions(profile, catalog, role_defaults, overrides)

    async def list_by_category(self) -> List[PermissionCategory]:
        """Active catalog grouped by category. Raises PermissionReadError."""
        catalog = await self._bounded(self.store.read_permission_catalog())
        grouped = defaultdict(list)
        for permission in catalog:
            if permission.active:
                grouped[permission.category].append(permission)
        return [
            PermissionCategory(category=category, permissions=sorted(perms, key=lambda p: p.name))
            for category, perms in sorted(grouped.items())
        ]
