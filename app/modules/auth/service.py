import logging
import re
from abc import ABC, abstractmethod
from typing import Tuple

from supabase import AsyncClient

from app.core.exceptions import CredentialRefreshError, InvalidCredentialsError
from app.modules.auth.schemas import Credential

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
EMAIL_MAX_LENGTH = 254  # RFC 5321
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


def sanitize_email(email: str) -> str:
    """Trim, lower-case and strip angle brackets"""
    return re.sub(r"[<>]", "", (email or "").strip().lower())[:EMAIL_MAX_LENGTH]


def validate_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email)) and len(email) <= EMAIL_MAX_LENGTH


def validate_login_input(email: str, password: str) -> Tuple[str, str]:
    """Return the sanitized email and password, or raise InvalidCredentialsError"""
    clean_email = sanitize_email(email)
    if not validate_email(clean_email):
        raise InvalidCredentialsError("Invalid email format")
    if not password or len(password) < PASSWORD_MIN_LENGTH or len(password) > PASSWORD_MAX_LENGTH:
        raise InvalidCredentialsError("Invalid password format")
    return clean_email, password


class AuthBackend(ABC):
    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Credential:
        pass

    @abstractmethod
    async def refresh_credential(self) -> Credential:
        """Raise CredentialRefreshError when the credential cannot be renewed"""
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass


class SupabaseAuthBackend(AuthBackend):
    """Supabase Auth bound to one session's client; tokens live on the client."""

    def __init__(self, supabase: AsyncClient):
        self.supabase = supabase

    @staticmethod
    def _to_credential(auth_response) -> Credential:
        session = auth_response.session
        user = auth_response.user or session.user
        return Credential(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=float(session.expires_at) if session.expires_at else None,
            user_id=user.id,
            email=user.email or "",
        )

    async def sign_in(self, email: str, password: str) -> Credential:
        try:
            auth_response = await self.supabase.auth.sign_in_with_password({
                "email": email,
                "password": password
            })
        except Exception as e:
            # Detail stays in the log; callers only see the generic message
            logger.error(f"Login failed for {email}: {type(e).__name__}")
            raise InvalidCredentialsError() from e

        if not auth_response.user or not auth_response.session:
            raise InvalidCredentialsError("Authentication failed")
        return self._to_credential(auth_response)

    async def refresh_credential(self) -> Credential:
        try:
            auth_response = await self.supabase.auth.refresh_session()
        except Exception as e:
            raise CredentialRefreshError(f"Session refresh failed: {type(e).__name__}") from e
        if not auth_response or not auth_response.session:
            raise CredentialRefreshError("Session refresh returned no session")
        return self._to_credential(auth_response)

    async def sign_out(self) -> None:
        await self.supabase.auth.sign_out()
