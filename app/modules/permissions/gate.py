import logging
from typing import Dict, Optional

from app.config.permissions_config import PAGE_PERMISSIONS
from app.modules.permissions.cache import SessionPermissionCache
from app.modules.permissions.schemas import is_valid_permission_key

logger = logging.getLogger(__name__)


class AccessGate:
    """Boolean authorization queries against a session's permission cache. Never raises."""

    def __init__(self, cache: SessionPermissionCache, page_permissions: Optional[Dict[str, str]] = None):
        self.cache = cache
        self.page_permissions = PAGE_PERMISSIONS if page_permissions is None else page_permissions

    def has_permission(self, key: str) -> bool:
        if not is_valid_permission_key(key):
            logger.warning(f"Permission check with malformed key {key!r}; denying")
            return False
        return key in self.cache

    def permission_for_page(self, page: str) -> Optional[str]:
        if not isinstance(page, str):
            return None
        return self.page_permissions.get(page)

    def can_access_page(self, page: str) -> bool:
        key = self.permission_for_page(page)
        if key is None:
            logger.warning(f"No permission mapped for page {page!r}; denying")
            return False
        return key in self.cache

    @property
    def can_access_user_management(self) -> bool:
        return self.can_access_page("users")

    @property
    def can_access_pnl(self) -> bool:
        return self.can_access_page("pnl")

    @property
    def can_access_configuration(self) -> bool:
        return self.can_access_page("configuration")
