"""User repository — data access layer for account lookups and updates."""

from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth_backend.models.user import User

# Columns callers may patch through ``update_by_id``
UPDATABLE_FIELDS = frozenset(
    {"name", "phone", "password_hash", "role", "is_email_verified", "two_fa_enabled", "is_active"}
)


class UserRepository:
    """Encapsulates all database queries related to users."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, **fields: Any) -> User:
        user = User(**fields)
        self._session.add(user)
        await self._session.flush()
        return user

    async def find_by_id(self, user_id: str) -> User | None:
        stmt = select(User).where(User.id == user_id, User.is_active.is_(True))
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_email(self, email: str) -> User | None:
        """Look up an active user by email, case-insensitively."""
        stmt = select(User).where(
            func.lower(User.email) == email.strip().lower(), User.is_active.is_(True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_role(self, role: str) -> User | None:
        stmt = select(User).where(User.role == role).limit(1)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def is_email_taken(self, email: str) -> bool:
        stmt = select(func.count(User.id)).where(
            func.lower(User.email) == email.strip().lower()
        )
        result = await self._session.execute(stmt)
        return (result.scalar() or 0) > 0

    async def update_by_id(self, user_id: str, **patch: Any) -> User | None:
        """Apply *patch* to the user and return the refreshed row."""
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            return None
        user = await self._session.get(User, user_id, populate_existing=True)
        return user
