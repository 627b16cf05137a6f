"""Seed script — populates the database with sample accounts for testing."""

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from auth_backend.database.engine import async_session_factory, init_db
from auth_backend.models.user import User
from auth_backend.services.auth_service import hash_password

SAMPLE_PASSWORD = "password123"

SAMPLE_USERS = [
    {"name": "Alice Johnson", "email": "alice@example.com", "phone": "+15551234567"},
    {"name": "Bob Smith", "email": "bob@example.com", "phone": "+15559876543"},
    {"name": "Carol Davis", "email": "carol@example.com", "phone": None},
]


async def seed() -> None:
    """Insert verified sample users into the database."""
    await init_db()
    password_hash = hash_password(SAMPLE_PASSWORD)
    async with async_session_factory() as session:
        session: AsyncSession
        for fields in SAMPLE_USERS:
            session.add(User(**fields, password_hash=password_hash, is_email_verified=True))
        await session.commit()
    print(f"✅ Seeded {len(SAMPLE_USERS)} users (password: {SAMPLE_PASSWORD}).")


if __name__ == "__main__":
    asyncio.run(seed())
