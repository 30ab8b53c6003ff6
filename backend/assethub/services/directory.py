"""Read-only lookups against the client and owner directories."""
import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from assethub.config import get_settings
from assethub.models.client import Client
from assethub.models.user import User

settings = get_settings()
logger = logging.getLogger(__name__)


class ClientDirectory:
    """slug <-> id resolution for clients."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, client_id: str) -> Client | None:
        result = await self.db.execute(select(Client).where(Client.id == client_id))
        return result.scalar_one_or_none()

    async def id_for_slug(self, slug: str) -> str | None:
        """Case-insensitive slug lookup."""
        if not slug or not slug.strip():
            return None
        result = await self.db.execute(
            select(Client.id).where(func.lower(Client.slug) == slug.strip().lower())
        )
        return result.scalar_one_or_none()

    async def slug_for(self, client_id: str) -> str | None:
        result = await self.db.execute(select(Client.slug).where(Client.id == client_id))
        return result.scalar_one_or_none()

    async def resolve(self, client_id: str | None = None, client_slug: str | None = None) -> str | None:
        """Canonical client id from an id and/or a slug, or None when unknown.

        An id is tried first; a value that is not a known id is retried as a
        slug so callers may pass either in the ``clientId`` field.
        """
        if client_id:
            client_id = client_id.strip()
            if await self.get(client_id) is not None:
                return client_id
            slug_match = await self.id_for_slug(client_id)
            if slug_match is not None:
                return slug_match
        if client_slug:
            return await self.id_for_slug(client_slug)
        return None


class OwnerDirectory:
    """Lookups against the users table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def exists(self, user_id: str) -> bool:
        result = await self.db.execute(select(User.id).where(User.id == user_id))
        return result.scalar_one_or_none() is not None

    async def ensure_fallback_owner(self) -> str:
        """Create or reuse the configured fallback owner; returns its id."""
        fallback_id = settings.fallback_owner_id
        if await self.exists(fallback_id):
            return fallback_id

        result = await self.db.execute(select(User.id).where(User.email == settings.fallback_owner_email))
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing

        self.db.add(User(
            id=fallback_id,
            email=settings.fallback_owner_email,
            username="fallback-owner",
            is_active=True,
        ))
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent request created it first.
            await self.db.rollback()
            if not await self.exists(fallback_id):
                raise
        logger.warning("Created fallback owner %s", fallback_id)
        return fallback_id
