import logging
import re
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime

from app.core.exceptions import InvalidPermissionKeyError

logger = logging.getLogger(__name__)

PERMISSION_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)+$")


def is_valid_permission_key(key) -> bool:
    return isinstance(key, str) and bool(PERMISSION_KEY_PATTERN.match(key))


def validate_permission_key(key: str) -> str:
    """Return key unchanged or raise InvalidPermissionKeyError"""
    if not is_valid_permission_key(key):
        raise InvalidPermissionKeyError(f"Invalid permission key: {key!r}")
    return key


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"
    VIEWER = "viewer"

    @classmethod
    def parse(cls, value) -> Optional["Role"]:
        """Map a raw role string to Role; unknown values map to None."""
        if isinstance(value, Role):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class PermissionSource(str, Enum):
    ADMIN = "admin"
    ROLE = "role"
    USER = "user"
    NONE = "none"


class Permission(BaseModel):
    id: str
    key: str = Field(alias="permission_key")
    name: str
    description: Optional[str] = None
    category: str = "general"
    active: bool = Field(default=True, alias="is_active")

    @field_validator("key")
    @classmethod
    def _check_key(cls, value: str) -> str:
        if not is_valid_permission_key(value):
            raise ValueError(f"invalid permission key {value!r}")
        return value

    class Config:
        populate_by_name = True
        frozen = True


class RoleDefault(BaseModel):
    id: Optional[str] = None
    role: Role
    permission_id: str
    granted: bool

    class Config:
        frozen = True


class UserOverride(BaseModel):
    id: Optional[str] = None
    user_id: str
    permission_id: str
    granted: bool
    granted_by: Optional[str] = None
    granted_at: Optional[datetime] = None
    notes: Optional[str] = None

    class Config:
        frozen = True


class UserProfile(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = None
    role: Optional[Role] = None
    is_active: bool = False
    last_login: Optional[datetime] = None

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value):
        role = Role.parse(value)
        if role is None and value is not None:
            logger.warning(f"Unknown role {value!r} on user profile; no permissions will be granted")
        return role

    class Config:
        frozen = True


# --- API responses ---
class PermissionSetResponse(BaseModel):
    session_id: str
    permissions: List[str]
    last_error: Optional[str] = None


class PermissionCheckResponse(BaseModel):
    permission_key: str
    granted: bool


class PageAccessResponse(BaseModel):
    page: str
    permission_key: Optional[str] = None
    allowed: bool


class PermissionExplanation(BaseModel):
    permission_key: str
    granted: bool
    source: PermissionSource


class PermissionCategory(BaseModel):
    category: str
    permissions: List[Permission]
