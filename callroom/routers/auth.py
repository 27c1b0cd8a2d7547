"""Signup, login and logout endpoints using a cookie session."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.session import get_session
from ..schemas import auth as schemas
from ..services import auth as auth_service

router = APIRouter()

SESSION_KEY = "user"


@router.post("/signup", response_model=schemas.AuthResponse)
async def signup(
    payload: schemas.Credentials,
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> schemas.AuthResponse:
    """Register an account and start a session for it."""

    user = await auth_service.signup(payload, session)
    request.session[SESSION_KEY] = user.model_dump()
    return schemas.AuthResponse(message="Signup successful")


@router.post("/login", response_model=schemas.AuthResponse)
async def login(
    payload: schemas.Credentials,
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> schemas.AuthResponse:
    """Start a session for valid credentials."""

    user = await auth_service.login(payload, session)
    request.session[SESSION_KEY] = user.model_dump()
    return schemas.AuthResponse(message="Login successful")


@router.post("/logout", response_model=schemas.AuthResponse)
async def logout(request: Request) -> schemas.AuthResponse:
    request.session.clear()
    return schemas.AuthResponse(message="Logged out")


@router.get("/me", response_model=schemas.SessionUser)
async def me(request: Request) -> schemas.SessionUser:
    """Return the user bound to the current session."""

    user = request.session.get(SESSION_KEY)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not logged in")
    return schemas.SessionUser(**user)
