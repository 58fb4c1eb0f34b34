"""
Data access for permission resolution.

PermissionStore is the collaborator the resolver, change feed and session
manager depend on; SupabasePermissionStore is the production implementation.
Every read raises PermissionReadError on failure so callers can fail closed.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError
from supabase import AsyncClient

from app.core.exceptions import PermissionReadError
from app.modules.permissions.schemas import Permission, Role, RoleDefault, UserOverride, UserProfile

logger = logging.getLogger(__name__)

PERMISSIONS_TABLE = "permissions"
ROLE_DEFAULTS_TABLE = "role_permissions"
USER_OVERRIDES_TABLE = "user_permissions"
PROFILES_TABLE = "user_profiles"
SESSIONS_TABLE = "user_sessions"


@dataclass(frozen=True)
class ChangeScope:
    """One realtime subscription: a table filtered on a single column."""
    table: str
    column: str
    value: str

    @property
    def filter(self) -> str:
        return f"{self.column}=eq.{self.value}"

    def admits_delete(self, old_record: Dict[str, Any]) -> bool:
        """
        Realtime does not apply column filters to DELETE events, so deletes are
        matched here. Without REPLICA IDENTITY FULL the old record only carries
        the primary key; such a delete is admitted and costs one extra resolution.
        """
        value = (old_record or {}).get(self.column)
        return value is None or str(value) == self.value


@dataclass
class ChangeEvent:
    table: str
    event_type: str  # INSERT | UPDATE | DELETE
    record: Dict[str, Any] = field(default_factory=dict)
    old_record: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, table: str, payload: Dict[str, Any]) -> "ChangeEvent":
        """Normalize a postgres_changes payload; realtime versions nest it under "data"."""
        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        return cls(
            table=data.get("table", table),
            event_type=str(data.get("type") or data.get("eventType") or "UPDATE").upper(),
            record=data.get("record") or data.get("new") or {},
            old_record=data.get("old_record") or data.get("old") or {},
        )


ChangeCallback = Callable[[ChangeEvent], None]


class PermissionStore(ABC):
    @abstractmethod
    async def read_permission_catalog(self) -> List[Permission]:
        """All catalog rows, active and inactive."""
        pass

    @abstractmethod
    async def read_role_defaults(self, role: Role) -> List[RoleDefault]:
        pass

    @abstractmethod
    async def read_user_overrides(self, user_id: str) -> List[UserOverride]:
        pass

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        pass

    @abstractmethod
    async def subscribe(self, scope: ChangeScope, on_change: ChangeCallback) -> Any:
        """Register on_change for mutations matching scope; returns an opaque handle."""
        pass

    @abstractmethod
    async def unsubscribe(self, handle: Any) -> None:
        pass

    @abstractmethod
    async def record_heartbeat(self, session_id: str, user_id: str, at: datetime) -> None:
        pass

    @abstractmethod
    async def touch_last_login(self, user_id: str, at: datetime) -> None:
        pass


def _parse_rows(model, rows: List[Dict[str, Any]], what: str, level: int = logging.WARNING) -> list:
    parsed = []
    for row in rows or []:
        try:
            parsed.append(model(**row))
        except ValidationError as e:
            logger.log(level, f"Skipping malformed {what} row {row.get('id')}: {e.errors()[0].get('msg')}")
    return parsed


class SupabasePermissionStore(PermissionStore):
    def __init__(self, supabase: AsyncClient):
        self.supabase = supabase

    async def read_permission_catalog(self) -> List[Permission]:
        try:
            result = await self.supabase.table(PERMISSIONS_TABLE)\
                .select("id, permission_key, name, description, category, is_active")\
                .order("category")\
                .order("name")\
                .execute()
        except Exception as e:
            raise PermissionReadError(f"Failed to read permission catalog: {e}") from e
        # A dropped catalog key is lost for every user, admins included
        return _parse_rows(Permission, result.data, "permission", level=logging.ERROR)

    async def read_role_defaults(self, role: Role) -> List[RoleDefault]:
        try:
            result = await self.supabase.table(ROLE_DEFAULTS_TABLE)\
                .select("id, role, permission_id, granted")\
                .eq("role", role.value)\
                .execute()
        except Exception as e:
            raise PermissionReadError(f"Failed to read role defaults for {role.value}: {e}") from e
        return _parse_rows(RoleDefault, result.data, "role default")

    async def read_user_overrides(self, user_id: str) -> List[UserOverride]:
        try:
            result = await self.supabase.table(USER_OVERRIDES_TABLE)\
                .select("id, user_id, permission_id, granted, granted_by, granted_at, notes")\
                .eq("user_id", user_id)\
                .execute()
        except Exception as e:
            raise PermissionReadError(f"Failed to read overrides for user {user_id}: {e}") from e
        return _parse_rows(UserOverride, result.data, "user override")

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        try:
            result = await self.supabase.table(PROFILES_TABLE)\
                .select("id, email, full_name, role, is_active, last_login")\
                .eq("id", user_id)\
                .limit(1)\
                .execute()
        except Exception as e:
            raise PermissionReadError(f"Failed to read profile for user {user_id}: {e}") from e
        if not result.data:
            return None
        try:
            return UserProfile(**result.data[0])
        except ValidationError as e:
            raise PermissionReadError(f"Malformed profile for user {user_id}") from e

    async def subscribe(self, scope: ChangeScope, on_change: ChangeCallback) -> Any:
        channel = self.supabase.channel(f"{scope.table}:{scope.value}:{uuid.uuid4().hex[:8]}")

        def handle(payload):
            on_change(ChangeEvent.from_payload(scope.table, payload))

        def handle_delete(payload):
            event = ChangeEvent.from_payload(scope.table, payload)
            if scope.admits_delete(event.old_record):
                on_change(event)

        for event_type in ("INSERT", "UPDATE"):
            channel.on_postgres_changes(
                event_type,
                schema="public",
                table=scope.table,
                filter=scope.filter,
                callback=handle,
            )
        # Filters are ignored for deletes; match on the old record instead
        channel.on_postgres_changes(
            "DELETE",
            schema="public",
            table=scope.table,
            callback=handle_delete,
        )
        await channel.subscribe()
        logger.debug(f"Subscribed to {scope.table} where {scope.filter}")
        return channel

    async def unsubscribe(self, handle: Any) -> None:
        await self.supabase.remove_channel(handle)

    async def record_heartbeat(self, session_id: str, user_id: str, at: datetime) -> None:
        await self.supabase.table(SESSIONS_TABLE).upsert({
            "session_id": session_id,
            "user_id": user_id,
            "last_heartbeat": at.isoformat(),
        }, on_conflict="session_id").execute()

    async def touch_last_login(self, user_id: str, at: datetime) -> None:
        await self.supabase.table(PROFILES_TABLE)\
            .update({"last_login": at.isoformat()})\
            .eq("id", user_id)\
            .execute()


def utc_from_timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)
