"""
Error taxonomy for permission resolution and session access control.

Recoverable errors (PermissionReadError) are absorbed at the resolver and
change feed boundary and never reach the access gate. Terminal errors
(CredentialRefreshError) end the session through the forced-logout path.
"""


class AccessControlError(Exception):
    """Base class for access-control errors"""
    retryable = False


# --- Recoverable ---
class PermissionReadError(AccessControlError):
    """Catalog, role default, override or profile read failed or timed out"""
    retryable = True


# --- Terminal for the session ---
class CredentialRefreshError(AccessControlError):
    """Underlying credential could not be refreshed"""
    pass


# --- Caller errors ---
class InvalidCredentialsError(AccessControlError):
    """Login rejected; message is deliberately generic"""

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)


class SessionNotFoundError(AccessControlError):
    """No live session with the given id"""
    pass


class InvalidPermissionKeyError(AccessControlError, ValueError):
    """Permission key is not a dotted lowercase identifier"""
    pass
