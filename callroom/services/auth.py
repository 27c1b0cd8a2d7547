"""Account signup and login backed by the user repository."""
from __future__ import annotations

import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.security import hash_password, verify_password
from ..repositories import users as users_repo
from ..schemas import auth as schemas

logger = logging.getLogger(__name__)

USER_EXISTS = "User already exists"
INVALID_CREDENTIALS = "Invalid credentials"


async def signup(payload: schemas.Credentials, session: AsyncSession) -> schemas.SessionUser:
    """Create an account; 400 when the username is taken."""

    async with session.begin():
        existing = await users_repo.get_by_username(session, payload.username)
        if existing is not None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=USER_EXISTS)
        try:
            user = await users_repo.create_user(
                session,
                username=payload.username,
                password_hash=hash_password(payload.password),
            )
        except IntegrityError as exc:
            logger.info("Concurrent signup for %r rejected: %s", payload.username, exc)
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=USER_EXISTS) from exc

    logger.info("Account created for %s", user.username)
    return schemas.SessionUser(id=user.id, username=user.username)


async def login(payload: schemas.Credentials, session: AsyncSession) -> schemas.SessionUser:
    """Verify credentials; 400 with a generic message on any mismatch."""

    user = await users_repo.get_by_username(session, payload.username)
    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_CREDENTIALS)
    return schemas.SessionUser(id=user.id, username=user.username)
