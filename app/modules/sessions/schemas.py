from pydantic import BaseModel
from typing import Optional

from app.modules.permissions.schemas import Role
from app.modules.sessions.manager import SessionState


class SessionResponse(BaseModel):
    session_id: str
    state: SessionState
    is_authenticated: bool
    user_id: Optional[str] = None
    email: Optional[str] = None
    role: Optional[Role] = None
    is_admin: bool = False
    login_timestamp: Optional[float] = None
    credential_expires_at: Optional[float] = None


class VisibilityRequest(BaseModel):
    visible: bool
