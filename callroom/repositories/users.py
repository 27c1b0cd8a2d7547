"""User repository helpers for the authentication service."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.user import User


async def get_by_username(session: AsyncSession, username: str) -> User | None:
    """Return a user record by username."""

    result = await session.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def create_user(session: AsyncSession, *, username: str, password_hash: str) -> User:
    """Insert a new user and flush so the identifier is usable immediately."""

    user = User(id=str(uuid4()), username=username, password_hash=password_hash)
    session.add(user)
    await session.flush()
    return user
