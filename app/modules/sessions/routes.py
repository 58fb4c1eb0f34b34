from fastapi import APIRouter, Depends, HTTPException, Request
from app.config import settings
from app.core.dependencies import get_current_session, get_session_registry
from app.core.exceptions import AccessControlError, InvalidCredentialsError
from app.core.rate_limit import limiter
from app.modules.auth.schemas import LoginRequest
from app.modules.sessions.manager import SessionLifecycleManager
from app.modules.sessions.registry import SessionRegistry
from app.modules.sessions.schemas import SessionResponse, VisibilityRequest
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("/login", response_model=SessionResponse, status_code=201)
@limiter.limit(settings.login_rate_limit)
async def login(
    request: Request,
    login_data: LoginRequest,
    registry: SessionRegistry = Depends(get_session_registry)
):
    """Sign in and open a session; permissions are resolved before this returns"""
    try:
        session = await registry.login(login_data.email, login_data.password)
    except InvalidCredentialsError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except AccessControlError as e:
        logger.error(f"Login failed: {e}")
        raise HTTPException(status_code=500, detail="Authentication service unavailable")
    return session.describe()


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session: SessionLifecycleManager = Depends(get_current_session)):
    """Current session state"""
    return session.describe()


@router.post("/{session_id}/logout", status_code=200)
async def logout(session: SessionLifecycleManager = Depends(get_current_session)):
    """End the session; local state is cleared even if the sign-out call fails"""
    await session.logout()
    return {"message": "Logged out successfully"}


@router.post("/{session_id}/visibility", response_model=SessionResponse)
async def set_visibility(
    visibility: VisibilityRequest,
    session: SessionLifecycleManager = Depends(get_current_session)
):
    """Report tab/window visibility; becoming visible again re-syncs permissions"""
    await session.set_visibility(visibility.visible)
    return session.describe()
