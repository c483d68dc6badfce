"""Auth dependencies — JWT validation, RBAC enforcement."""

from __future__ import annotations

import uuid
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.auth.service import decode_access_token, get_active_session
from site_manager.common.constants import ADMIN_HR_ROLES, UserRole
from site_manager.common.exceptions import ForbiddenException
from site_manager.database import get_db
from site_manager.users.models import User


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


async def resolve_token_user(db: AsyncSession, token: str) -> Optional[User]:
    """Return the active user behind *token*, or ``None``.

    Shared by the HTTP dependency and the WebSocket handshake.
    """
    try:
        payload = decode_access_token(token)
    except JWTError:
        return None
    if await get_active_session(db, token) is None:
        return None
    result = await db.execute(
        select(User).where(
            User.id == uuid.UUID(payload["sub"]),
            User.is_active.is_(True),
        ),
    )
    return result.scalars().first()


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Validate JWT, verify session, return the authenticated User."""
    token = _extract_bearer(request)

    try:
        payload = decode_access_token(token)
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if await get_active_session(db, token) is None:
        raise HTTPException(status_code=401, detail="Session invalid or expired.")

    result = await db.execute(
        select(User).where(
            User.id == uuid.UUID(payload["sub"]),
            User.is_active.is_(True),
        ),
    )
    user = result.scalars().first()
    if user is None:
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")

    # The stored role wins over the token claim so role changes apply at once
    request.state.user_role = user.role
    request.state.access_token = token
    return user


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: UserRole) -> Callable:
    """Return a FastAPI dependency that enforces exact role membership."""

    async def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed_roles:
            raise ForbiddenException(
                detail=f"Role '{user.role.value}' is not permitted. Required: {[r.value for r in allowed_roles]}.",
            )
        return user

    return _check


def is_admin_or_hr(user: User) -> bool:
    return user.role in ADMIN_HR_ROLES
