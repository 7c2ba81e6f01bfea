# routers/auth.py — Accounts: registration, sessions, email verification, password reset
import os
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, UserRegister, UserLogin, TokenResponse, RefreshRequest, ProfileUpdate, PasswordChange,
    PasswordResetRequest, PasswordResetConfirm, CurrentUser, get_current_user,
    ACCESS_TOKEN_EXPIRE_MINUTES,
)
from database import get_db_session, atomic
from errors import Unauthorized, Conflict, ValidationError, NotFound, envelope
from models import (
    User, UserRole, VerificationToken, TokenType, AuditLog, AuditEventType,
    utcnow, new_uuid, ensure_utc,
)
from reporting import client_to_dict
import account

logger = logging.getLogger("agency-portal.auth")

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])

APP_BASE_URL = os.getenv("APP_BASE_URL", "").rstrip("/")
VERIFIED_REDIRECT = "/dashboard?verified=true"
VERIFY_ERROR_REDIRECT = "/verificar-email?error={code}"


def _build_token_response(user_obj: User) -> TokenResponse:
    token_data = AuthService.token_claims(user_obj)
    return TokenResponse(
        access_token=AuthService.create_access_token(token_data),
        refresh_token=AuthService.create_refresh_token(token_data),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user={
            "id": user_obj.id,
            "email": user_obj.email,
            "name": user_obj.name,
            "role": token_data["role"],
            "email_verified": user_obj.email_verified is not None,
        },
    )


def _audit(db: AsyncSession, event: AuditEventType, user_id: str) -> None:
    db.add(AuditLog(id=new_uuid(), event_type=event, user_id=user_id, resource_type="user", resource_id=user_id))


async def _get_user(db: AsyncSession, user_id: str) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user:
        raise NotFound("User not found")
    return user


@router.post("/register", status_code=201)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db_session),
):
    """Register a client account and issue its email verification token"""
    email = user_data.email.lower()
    existing = await db.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none():
        raise Conflict("Email already registered")

    async with atomic(db):
        user = User(
            id=new_uuid(),
            email=email,
            name=user_data.name,
            password_hash=AuthService.hash_password(user_data.password),
            role=UserRole.CLIENT,
            company=user_data.company,
            phone=user_data.phone,
            marketing_consent=user_data.marketing_consent,
            is_active=True,
        )
        db.add(user)
        await AuthService.issue_one_time_token(db, email, TokenType.VERIFICATION)
        _audit(db, AuditEventType.USER_REGISTER, user.id)

    # Delivery of the verification link happens outside this service
    logger.info(f"User registered: {user.id[:8]}, verification token issued")
    return envelope(_build_token_response(user).model_dump(), "Account created. Check your email to verify it.")


@router.post("/login")
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive tokens"""
    result = await db.execute(select(User).where(User.email == credentials.email.lower()))
    user = result.scalar_one_or_none()
    if not user or not AuthService.verify_password(credentials.password, user.password_hash):
        raise Unauthorized("Invalid credentials")
    if not user.is_active:
        raise Unauthorized("Account is deactivated")

    async with atomic(db):
        user.last_login_at = utcnow()
        # Logging in restarts the inactivity clock
        user.warning_sent_at = None
        _audit(db, AuditEventType.USER_LOGIN, user.id)

    return envelope(_build_token_response(user).model_dump())


@router.post("/refresh")
async def refresh_token(
    refresh_req: RefreshRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Refresh access token using a refresh token"""
    payload = AuthService.verify_token(refresh_req.refresh_token)
    if payload.get("type") != "refresh":
        raise Unauthorized("Invalid token type. Expected refresh token.")

    result = await db.execute(select(User).where(User.id == payload.get("sub")))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise Unauthorized("User not found or inactive")

    return envelope(_build_token_response(user).model_dump())


@router.get("/me")
async def get_current_user_info(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Get current authenticated user information"""
    user_obj = await _get_user(db, user.id)
    data = client_to_dict(user_obj)
    data["role"] = user.role
    return envelope(data)


@router.patch("/me")
async def update_profile(
    data: ProfileUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    user_obj = await _get_user(db, user.id)
    async with atomic(db):
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None and field in ("name", "marketing_consent"):
                continue
            setattr(user_obj, field, value)
    return envelope(client_to_dict(user_obj), "Profile updated")


@router.post("/change-password")
async def change_password(
    data: PasswordChange,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Change the caller's password after checking the current one"""
    await account.change_password(db, user, data)
    return envelope(message="Password changed")


# ============================================================
# EMAIL VERIFICATION
# ============================================================

def _redirect(path: str) -> RedirectResponse:
    return RedirectResponse(url=f"{APP_BASE_URL}{path}", status_code=307)


@router.get("/email-verification")
async def verify_email(
    token: str = Query(default=""),
    db: AsyncSession = Depends(get_db_session),
):
    """Consume a VERIFICATION token; password reset tokens are never accepted here"""
    if not token:
        return _redirect(VERIFY_ERROR_REDIRECT.format(code="token_invalido"))

    try:
        record = (await db.execute(
            select(VerificationToken).where(
                VerificationToken.token == token,
                VerificationToken.type == TokenType.VERIFICATION,
            )
        )).scalar_one_or_none()
        if not record:
            return _redirect(VERIFY_ERROR_REDIRECT.format(code="token_invalido"))

        if ensure_utc(record.expires_at) < utcnow():
            async with atomic(db):
                await db.delete(record)
            return _redirect(VERIFY_ERROR_REDIRECT.format(code="token_expirado"))

        user = (await db.execute(select(User).where(User.email == record.identifier))).scalar_one_or_none()
        if not user:
            return _redirect(VERIFY_ERROR_REDIRECT.format(code="token_invalido"))

        async with atomic(db):
            if user.email_verified is None:
                user.email_verified = utcnow()
            await db.delete(record)
            _audit(db, AuditEventType.USER_VERIFIED, user.id)
    except Exception:
        logger.exception("Email verification failed")
        return _redirect(VERIFY_ERROR_REDIRECT.format(code="erro_servidor"))

    logger.info(f"Email verified for user {user.id[:8]}")
    return _redirect(VERIFIED_REDIRECT)


# ============================================================
# PASSWORD RESET
# ============================================================

@router.post("/password-reset/request")
async def request_password_reset(
    data: PasswordResetRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Same answer whether or not the email exists"""
    email = data.email.lower()
    user = (await db.execute(
        select(User).where(User.email == email, User.is_active.is_(True))
    )).scalar_one_or_none()
    if user:
        async with atomic(db):
            await AuthService.issue_one_time_token(db, email, TokenType.PASSWORD_RESET)
        logger.info(f"Password reset token issued for user {user.id[:8]}")
    return envelope(message="If the email is registered, a reset link has been sent.")


@router.post("/password-reset/confirm")
async def confirm_password_reset(
    data: PasswordResetConfirm,
    db: AsyncSession = Depends(get_db_session),
):
    record = (await db.execute(
        select(VerificationToken).where(
            VerificationToken.token == data.token,
            VerificationToken.type == TokenType.PASSWORD_RESET,
        )
    )).scalar_one_or_none()
    if not record or ensure_utc(record.expires_at) < utcnow():
        raise ValidationError("Invalid or expired token", fields={"token": "Invalid or expired token"})

    user = (await db.execute(select(User).where(User.email == record.identifier))).scalar_one_or_none()
    if not user:
        raise ValidationError("Invalid or expired token", fields={"token": "Invalid or expired token"})

    async with atomic(db):
        user.password_hash = AuthService.hash_password(data.password)
        await db.delete(record)
        _audit(db, AuditEventType.PASSWORD_RESET, user.id)

    return envelope(message="Password updated")
