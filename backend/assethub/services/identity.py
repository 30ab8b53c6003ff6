"""Identity resolution strategies.

The pipeline only needs an opaque user id and a role; how the caller is
authenticated is up to the injected provider.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from assethub.config import get_settings
from assethub.utils.security import decode_token

settings = get_settings()

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    def owns(self, owner_id: str | None) -> bool:
        """Owner check used by every mutating operation."""
        return self.is_admin or (owner_id is not None and owner_id == self.user_id)


class IdentityProvider(ABC):
    @abstractmethod
    async def resolve(self, request: Request) -> Identity:
        """Identity of the caller; raises 401 when there is none."""


class JwtIdentityProvider(IdentityProvider):
    """Bearer-token identities signed with the configured secret."""

    def _unauthorized(self, detail: str) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

    async def resolve(self, request: Request) -> Identity:
        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise self._unauthorized("Not authenticated")

        payload = decode_token(token)
        if payload is None or payload.get("type") != "access":
            raise self._unauthorized("Invalid or expired token")

        user_id = payload.get("sub")
        if not user_id:
            raise self._unauthorized("Invalid token subject")
        return Identity(user_id=str(user_id), role=payload.get("role") or "user")


class FixedIdentityProvider(IdentityProvider):
    """Always the same caller. For offline operation and tests."""

    def __init__(self, user_id: str | None = None, role: str | None = None):
        self.identity = Identity(
            user_id=user_id or settings.fixed_user_id,
            role=role or settings.fixed_user_role,
        )

    async def resolve(self, request: Request) -> Identity:
        return self.identity


def get_identity_provider() -> IdentityProvider:
    """Provider selected by AUTH_MODE (FastAPI dependency, override in tests)."""
    if settings.auth_mode == "fixed":
        return FixedIdentityProvider()
    return JwtIdentityProvider()
