"""
Access Guard - resolves who is calling and what they may touch.

Three kinds of caller:
  - SERVICE: presented the shared service key (x-api-key or Bearer). Skips
    ownership checks.
  - USER: presented a session token known to the session provider. Must be
    the consultation's patient or doctor.
  - ANONYMOUS: no credential. May only run a photo analysis on public
    URLs; nothing is read from or written to a consultation.
"""
import hmac
import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

from .errors import AccessDeniedError, AuthenticationError
from .persistence import Consultation

logger = logging.getLogger(__name__)

SERVICE = "service"
USER = "user"
ANONYMOUS = "anonymous"

SERVICE_USER_ID = "system"


@dataclass(frozen=True)
class Principal:
    user_id: Optional[str]
    is_service: bool
    is_authenticated: bool
    kind: str

    @classmethod
    def service(cls) -> "Principal":
        return cls(user_id=SERVICE_USER_ID, is_service=True, is_authenticated=True, kind=SERVICE)

    @classmethod
    def user(cls, user_id: str) -> "Principal":
        return cls(user_id=user_id, is_service=False, is_authenticated=True, kind=USER)

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls(user_id=None, is_service=False, is_authenticated=False, kind=ANONYMOUS)


class SessionProvider(Protocol):
    async def resolve(self, token: str) -> Optional[str]:
        """Return the user id for a session token, or None."""
        ...


class InMemorySessionProvider:
    """Token -> user id map standing in for the identity provider."""

    def __init__(self, sessions: Optional[dict[str, str]] = None):
        self.sessions = dict(sessions or {})

    def add_session(self, token: str, user_id: str) -> None:
        self.sessions[token] = user_id

    async def resolve(self, token: str) -> Optional[str]:
        return self.sessions.get(token)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.title())
    return value.strip() if isinstance(value, str) else None


def _bearer_token(headers: Mapping[str, str]) -> Optional[str]:
    auth = _header(headers, "authorization")
    if not auth:
        return None
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class AccessGuard:
    def __init__(self, service_api_key: Optional[str], sessions: SessionProvider):
        self.service_api_key = service_api_key
        self.sessions = sessions

    def _is_service_key(self, candidate: str) -> bool:
        if not self.service_api_key:
            return False
        return hmac.compare_digest(candidate.encode(), self.service_api_key.encode())

    async def authenticate(self, headers: Mapping[str, str]) -> Principal:
        """Identify the caller from request headers.

        A wrong x-api-key or an unknown session token is a 401, never a
        silent downgrade to anonymous.
        """
        api_key = _header(headers, "x-api-key")
        if api_key:
            if self._is_service_key(api_key):
                return Principal.service()
            logger.warning("Rejected request with invalid x-api-key")
            raise AuthenticationError("Invalid API key")

        token = _bearer_token(headers)
        if token is None:
            return Principal.anonymous()
        if self._is_service_key(token):
            return Principal.service()

        user_id = await self.sessions.resolve(token)
        if not user_id:
            raise AuthenticationError("Invalid or expired session")
        return Principal.user(user_id)

    def authorize_consultation_access(self, principal: Principal, consultation: Consultation) -> bool:
        if principal.is_service:
            return True
        if not principal.is_authenticated or not principal.user_id:
            return False
        return principal.user_id in (consultation.patient_id, consultation.doctor_id)

    def require_authenticated(self, principal: Principal) -> None:
        if not principal.is_authenticated:
            raise AuthenticationError("Authentication required")

    def require_consultation_access(self, principal: Principal, consultation: Consultation) -> None:
        """Raise 403 unless the caller may read and write this consultation.

        Callers are expected to have passed require_authenticated already.
        """
        if not self.authorize_consultation_access(principal, consultation):
            logger.warning(f"User {principal.user_id} denied access to consultation {consultation.id}")
            raise AccessDeniedError("Access denied to this consultation")
