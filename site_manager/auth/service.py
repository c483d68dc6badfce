"""Auth service — password hashing, OTP sign-up, JWT and session lifecycle."""

from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.auth.models import PendingRegistration, UserSession
from site_manager.auth.schemas import RegisterRequest
from site_manager.common.constants import UserRole
from site_manager.common.exceptions import (
    BadRequestException,
    ConflictError,
    ServiceUnavailableException,
    UnauthorizedException,
)
from site_manager.common.models import as_utc
from site_manager.config import settings
from site_manager.mail.service import EmailService
from site_manager.users.models import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ── Passwords ───────────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


# ── JWT helpers ─────────────────────────────────────────────────────

def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def create_access_token(user_id: uuid.UUID, role: UserRole) -> tuple[str, int]:
    """Return (encoded_jwt, expires_in_seconds)."""
    expires_in = settings.JWT_EXPIRY_DAYS * 86400
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "type": "access",
        "jti": uuid.uuid4().hex,
        "exp": datetime.now(timezone.utc) + timedelta(days=settings.JWT_EXPIRY_DAYS),
    }
    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, expires_in


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and type-check an access token. Raises ``jose.JWTError``."""
    payload = jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
    )
    if payload.get("type") != "access":
        raise JWTError("Invalid token type.")
    return payload


# ── Session management ──────────────────────────────────────────────

async def create_session(
    db: AsyncSession,
    user: User,
    ip: Optional[str],
    user_agent: Optional[str],
) -> tuple[str, int]:
    """Issue an access token and persist its session row."""
    access_token, expires_in = create_access_token(user.id, user.role)
    session = UserSession(
        user_id=user.id,
        token_hash=_hash_token(access_token),
        ip_address=ip,
        user_agent=user_agent,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    )
    db.add(session)
    await db.flush()
    return access_token, expires_in


async def get_active_session(db: AsyncSession, token: str) -> Optional[UserSession]:
    result = await db.execute(
        select(UserSession).where(
            UserSession.token_hash == _hash_token(token),
            UserSession.is_revoked.is_(False),
            UserSession.expires_at > datetime.now(timezone.utc),
        ),
    )
    return result.scalars().first()


async def revoke_session(db: AsyncSession, token: str) -> None:
    session = await get_active_session(db, token)
    if session is not None:
        session.is_revoked = True
        await db.flush()


async def revoke_all_sessions(db: AsyncSession, user_id: uuid.UUID) -> None:
    result = await db.execute(
        select(UserSession).where(
            UserSession.user_id == user_id,
            UserSession.is_revoked.is_(False),
        ),
    )
    for session in result.scalars().all():
        session.is_revoked = True
    await db.flush()


# ── Lookups ─────────────────────────────────────────────────────────

async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(
        select(User).where(User.email == email.strip().lower()),
    )
    return result.scalars().first()


# ── OTP sign-up ─────────────────────────────────────────────────────

def generate_otp() -> str:
    """Six-digit numeric code."""
    return str(100000 + secrets.randbelow(900000))


async def _get_pending(db: AsyncSession, email: str) -> Optional[PendingRegistration]:
    result = await db.execute(
        select(PendingRegistration)
        .where(PendingRegistration.email == email.strip().lower())
        .order_by(PendingRegistration.created_at.desc()),
    )
    return result.scalars().first()


async def start_registration(
    db: AsyncSession,
    body: RegisterRequest,
) -> PendingRegistration:
    """Store a pending sign-up and email its verification code."""
    email = body.email.lower()
    if await get_user_by_email(db, email) is not None:
        raise ConflictError("email", email)

    await db.execute(
        delete(PendingRegistration).where(PendingRegistration.email == email),
    )

    user_data = body.model_dump(exclude={"password"}, mode="json")
    user_data["email"] = email
    user_data["password_hash"] = hash_password(body.password)

    pending = PendingRegistration(
        email=email,
        otp_code=generate_otp(),
        user_data=user_data,
        attempts=0,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=settings.OTP_EXPIRY_MINUTES),
    )
    db.add(pending)
    await db.flush()

    sent = await EmailService.send_otp_email(email, pending.otp_code, body.first_name)
    if not sent:
        # Raising rolls the pending row back with the request transaction.
        raise ServiceUnavailableException("Failed to send verification email. Please try again.")
    return pending


async def verify_registration(
    db: AsyncSession,
    email: str,
    otp_code: str,
) -> User:
    """Check the OTP and turn the pending sign-up into a real account.

    Failed checks are committed before raising so attempt counters and
    deletions survive the error response.
    """
    pending = await _get_pending(db, email)
    if pending is None:
        raise BadRequestException("No pending verification found for this email", code="OTP_NOT_FOUND")

    if as_utc(pending.expires_at) < datetime.now(timezone.utc):
        await db.delete(pending)
        await db.commit()
        raise BadRequestException("OTP has expired. Please request a new one.", code="OTP_EXPIRED")

    if pending.attempts >= settings.OTP_MAX_ATTEMPTS:
        await db.delete(pending)
        await db.commit()
        raise BadRequestException(
            "Maximum verification attempts exceeded. Please register again.",
            code="OTP_ATTEMPTS_EXCEEDED",
        )

    if not secrets.compare_digest(pending.otp_code, otp_code.strip()):
        pending.attempts += 1
        attempts_left = settings.OTP_MAX_ATTEMPTS - pending.attempts
        await db.commit()
        raise BadRequestException(
            f"Invalid OTP code. {attempts_left} attempt(s) left.",
            code="OTP_INVALID",
            errors={"attempts_left": attempts_left},
        )

    data = dict(pending.user_data)
    if await get_user_by_email(db, data["email"]) is not None:
        await db.delete(pending)
        await db.commit()
        raise ConflictError("email", data["email"])

    user = User(
        first_name=data["first_name"],
        last_name=data["last_name"],
        email=data["email"],
        password_hash=data["password_hash"],
        role=UserRole(data.get("role") or UserRole.worker.value),
        phone=data.get("phone"),
        address=data.get("address"),
        is_active=True,
    )
    db.add(user)
    await db.delete(pending)
    await db.flush()

    if not await EmailService.send_welcome_email(user.email, user.first_name):
        logger.warning("Welcome email to %s was not delivered", user.email)
    return user


async def resend_otp(db: AsyncSession, email: str) -> PendingRegistration:
    pending = await _get_pending(db, email)
    if pending is None:
        raise BadRequestException("No pending verification found for this email", code="OTP_NOT_FOUND")

    pending.otp_code = generate_otp()
    pending.attempts = 0
    pending.expires_at = datetime.now(timezone.utc) + timedelta(minutes=settings.OTP_EXPIRY_MINUTES)
    await db.flush()

    sent = await EmailService.send_otp_email(
        pending.email, pending.otp_code, pending.user_data.get("first_name", ""),
    )
    if not sent:
        raise ServiceUnavailableException("Failed to send verification email. Please try again.")
    return pending


# ── Credentials ─────────────────────────────────────────────────────

async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    """Return the user for valid credentials, or raise 401."""
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        raise UnauthorizedException("Invalid credentials")
    if not user.is_active:
        raise UnauthorizedException("Account is deactivated. Please contact an administrator.")

    user.last_login = datetime.now(timezone.utc)
    await db.flush()
    return user


async def change_password(
    db: AsyncSession,
    user: User,
    current_password: str,
    new_password: str,
) -> None:
    if not verify_password(current_password, user.password_hash):
        raise BadRequestException("Current password is incorrect", code="INVALID_PASSWORD")
    user.password_hash = hash_password(new_password)
    await db.flush()
