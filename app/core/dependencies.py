"""
Core dependencies for route protection and permission checking
"""

from fastapi import Depends, HTTPException, Request, status
from app.core.exceptions import SessionNotFoundError
from app.modules.sessions.manager import SessionLifecycleManager
from app.modules.sessions.registry import SessionRegistry
import logging

logger = logging.getLogger(__name__)


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.session_registry


def get_current_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry)
) -> SessionLifecycleManager:
    """Resolve the live session named in the path"""
    try:
        return registry.get(session_id)
    except SessionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found or expired"
        )


def require_page(page: str):
    """Factory function to create page access dependency"""
    def check_page(
        session: SessionLifecycleManager = Depends(get_current_session)
    ) -> SessionLifecycleManager:
        if not session.can_access_page(page):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"You do not have access to the {page} page"
            )
        return session
    return check_page
