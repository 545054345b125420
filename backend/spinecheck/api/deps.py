"""FastAPI dependencies: operator from JWT or admin password, dispatch trigger token."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.config import settings
from spinecheck.core.auth import decode_token, secret_matches
from spinecheck.db.session import get_db
from spinecheck.models.user import ROLE_ADMIN, User


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:].strip() or None


async def get_current_user(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    token = _bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user_id_str = payload.get("sub")
    if not user_id_str:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        user_id = int(user_id_str)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")
    r = await session.execute(select(User).where(User.id == user_id))
    user = r.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


async def get_current_operator(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
) -> User | None:
    """
    Admin operator. Accepts an admin JWT, or X-Admin-Password when ADMIN_PASSWORD is set
    (returns None: the action is audited without a user id). Anything else is 401.
    """
    if secret_matches(request.headers.get("X-Admin-Password"), settings.admin_password):
        return None
    user = await get_current_user(request, session)
    if user.role != ROLE_ADMIN:
        raise HTTPException(status_code=401, detail="Operator access required")
    return user


def require_dispatch_token(request: Request) -> None:
    """Scheduled trigger: shared secret as Bearer token or X-Dispatch-Token header."""
    provided = _bearer_token(request) or request.headers.get("X-Dispatch-Token")
    if not secret_matches(provided, settings.checkins_dispatch_token):
        raise HTTPException(status_code=401, detail="Unauthorized")
