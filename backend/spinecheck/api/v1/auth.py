"""Operator auth: login, me."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.api.deps import get_current_user
from spinecheck.config import settings
from spinecheck.core.auth import create_access_token, verify_password
from spinecheck.db.session import get_db
from spinecheck.models.user import User

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

ACCESS_TOKEN_EXPIRE_SECONDS = settings.access_token_expire_minutes * 60


class LoginBody(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    id: int
    email: str
    role: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until access token expires
    user: UserOut


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login with email and password",
    responses={
        401: {"description": "Invalid email or password"},
    },
)
async def login(
    session: Annotated[AsyncSession, Depends(get_db)],
    body: LoginBody,
) -> TokenResponse:
    email = (body.email or "").strip().lower()
    password = body.password or ""
    if not email or not password:
        raise HTTPException(status_code=401, detail="Email and password required")
    r = await session.execute(select(User).where(User.email == email))
    user = r.scalar_one_or_none()
    if not user or not user.password_hash:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not verify_password(password, user.password_hash):
        logger.info("Login failed for user_id=%s", user.id)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return TokenResponse(
        access_token=create_access_token(user.id, user.email, user.role),
        expires_in=ACCESS_TOKEN_EXPIRE_SECONDS,
        user=UserOut(id=user.id, email=user.email, role=user.role),
    )


@router.get(
    "/me",
    response_model=UserOut,
    summary="Get current authenticated user",
    responses={
        401: {"description": "Not authenticated or invalid token"},
    },
)
async def me(user: Annotated[User, Depends(get_current_user)]) -> UserOut:
    return UserOut(id=user.id, email=user.email, role=user.role)
