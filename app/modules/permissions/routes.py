from fastapi import APIRouter, Depends, HTTPException
from app.core.dependencies import get_current_session, require_page
from app.core.exceptions import PermissionReadError
from app.modules.permissions.resolver import PermissionResolver
from app.modules.permissions.schemas import (
    PageAccessResponse, PermissionCategory, PermissionCheckResponse,
    PermissionExplanation, PermissionSetResponse, validate_permission_key
)
from app.modules.sessions.manager import SessionLifecycleManager
from typing import List

router = APIRouter(prefix="/sessions/{session_id}", tags=["permissions"])


def _permission_set(session: SessionLifecycleManager) -> PermissionSetResponse:
    error = session.cache.last_error
    return PermissionSetResponse(
        session_id=session.session_id,
        permissions=sorted(session.cache.keys),
        last_error=str(error) if error else None
    )


@router.get("/permissions", response_model=PermissionSetResponse)
async def get_permissions(session: SessionLifecycleManager = Depends(get_current_session)):
    """Cached resolved permission set for the session"""
    return _permission_set(session)


@router.post("/permissions/refresh", response_model=PermissionSetResponse)
async def refresh_permissions(session: SessionLifecycleManager = Depends(get_current_session)):
    """Re-resolve now instead of waiting for the change feed"""
    await session.refresh_permissions()
    return _permission_set(session)


@router.get("/permissions/explain", response_model=List[PermissionExplanation])
async def explain_permissions(session: SessionLifecycleManager = Depends(get_current_session)):
    """Per-key breakdown showing whether the role default or a user override decided it"""
    try:
        return await PermissionResolver(session.store).explain(session.user_id)
    except PermissionReadError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/permissions/catalog", response_model=List[PermissionCategory])
async def get_catalog(session: SessionLifecycleManager = Depends(require_page("users"))):
    """Active permission catalog grouped by category (user management page)"""
    try:
        return await PermissionResolver(session.store).list_by_category()
    except PermissionReadError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/permissions/{permission_key}", response_model=PermissionCheckResponse)
async def check_permission(
    permission_key: str,
    session: SessionLifecycleManager = Depends(get_current_session)
):
    """Allow/deny for one permission key; malformed keys are rejected with 400"""
    validate_permission_key(permission_key)
    return PermissionCheckResponse(
        permission_key=permission_key,
        granted=session.has_permission(permission_key)
    )


@router.get("/pages/{page}", response_model=PageAccessResponse)
async def check_page(
    page: str,
    session: SessionLifecycleManager = Depends(get_current_session)
):
    """Allow/deny for a dashboard page; unknown pages are denied"""
    return PageAccessResponse(
        page=page,
        permission_key=session.gate.permission_for_page(page),
        allowed=session.can_access_page(page)
    )
