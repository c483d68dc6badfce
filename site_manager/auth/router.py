"""Auth router — OTP sign-up, login, logout, current user profile."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.auth.dependencies import get_current_user
from site_manager.auth.schemas import (
    ChangePasswordRequest,
    LoginRequest,
    MessageResponse,
    ProfileUpdate,
    RegisterRequest,
    RegisterResponse,
    ResendOtpRequest,
    TokenResponse,
    UserInfo,
    VerifyOtpRequest,
)
from site_manager.auth.service import (
    authenticate,
    change_password,
    create_session,
    resend_otp,
    revoke_session,
    start_registration,
    verify_registration,
)
from site_manager.common.audit import client_info, create_audit_entry
from site_manager.common.rate_limit import AUTH_RATE_LIMIT, limiter
from site_manager.config import settings
from site_manager.database import get_db
from site_manager.users.models import User

router = APIRouter(prefix="", tags=["auth"])


def _otp_window() -> str:
    return f"{settings.OTP_EXPIRY_MINUTES} minutes"


# ── POST /register — start OTP sign-up ──────────────────────────────

@router.post("/register", response_model=RegisterResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def register(
    request: Request,
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    pending = await start_registration(db, body)
    return RegisterResponse(
        email=pending.email,
        expires_in=_otp_window(),
        attempts_left=settings.OTP_MAX_ATTEMPTS,
    )


# ── POST /verify-otp — create the account ───────────────────────────

@router.post("/verify-otp", response_model=TokenResponse, status_code=201)
@limiter.limit(AUTH_RATE_LIMIT)
async def verify_otp(
    request: Request,
    body: VerifyOtpRequest,
    db: AsyncSession = Depends(get_db),
):
    user = await verify_registration(db, body.email, body.otp)
    ip, user_agent = client_info(request)
    access_token, expires_in = await create_session(db, user, ip, user_agent)
    await db.refresh(user, ["assigned_sites"])
    return TokenResponse(
        access_token=access_token,
        expires_in=expires_in,
        user=UserInfo.model_validate(user),
    )


# ── POST /resend-otp ────────────────────────────────────────────────

@router.post("/resend-otp", response_model=RegisterResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def resend(
    request: Request,
    body: ResendOtpRequest,
    db: AsyncSession = Depends(get_db),
):
    pending = await resend_otp(db, body.email)
    return RegisterResponse(
        email=pending.email,
        expires_in=_otp_window(),
        attempts_left=settings.OTP_MAX_ATTEMPTS,
    )


# ── POST /login ─────────────────────────────────────────────────────

@router.post("/login", response_model=TokenResponse)
@limiter.limit(AUTH_RATE_LIMIT)
async def login(
    request: Request,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    user = await authenticate(db, body.email, body.password)

    ip, user_agent = client_info(request)
    access_token, expires_in = await create_session(db, user, ip, user_agent)

    await create_audit_entry(
        db,
        action="login",
        entity_type="user_session",
        entity_id=user.id,
        actor_id=user.id,
        new_values={"ip": ip, "user_agent": user_agent},
        ip_address=ip,
        user_agent=user_agent,
    )

    return TokenResponse(
        access_token=access_token,
        expires_in=expires_in,
        user=UserInfo.model_validate(user),
    )


# ── POST /logout ────────────────────────────────────────────────────

@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await revoke_session(db, request.state.access_token)
    return MessageResponse(message="Logged out successfully")


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=UserInfo)
async def me(user: User = Depends(get_current_user)):
    return UserInfo.model_validate(user)


# ── PUT /me ─────────────────────────────────────────────────────────

@router.put("/me", response_model=UserInfo)
async def update_me(
    body: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(user, field, value)
    await db.flush()
    await db.refresh(user)
    return UserInfo.model_validate(user)


# ── PUT /change-password ────────────────────────────────────────────

@router.put("/change-password", response_model=MessageResponse)
async def update_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await change_password(db, user, body.current_password, body.new_password)
    return MessageResponse(message="Password updated successfully")
