# auth.py — Authentication and access guard for the agency portal
# Features:
# - JWT access/refresh tokens with JTI
# - 3-tier roles (CLIENT, ADMIN, SUPER_ADMIN)
# - Bearer header or access_token cookie sessions
# - Role guard and stricter verified-email guard
# - One-time tokens for email verification and password reset

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Literal

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from errors import Unauthorized, Forbidden
from models import User, UserRole, ADMIN_ROLES, VerificationToken, TokenType, utcnow

logger = logging.getLogger("agency-portal.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "change-this-to-a-secure-random-key-in-production":
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set or insecure. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 100
VERIFICATION_TOKEN_HOURS = 24
PASSWORD_RESET_TOKEN_HOURS = 1
SESSION_COOKIE = "access_token"

security = HTTPBearer(auto_error=False)


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(BaseModel):
    email: EmailStr
    password: str
    name: str = Field(..., min_length=2, max_length=100)
    company: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)
    marketing_consent: bool = False

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


class CurrentUser(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    role: str
    is_active: bool
    email_verified: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value)


class RefreshRequest(BaseModel):
    refresh_token: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    company: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)
    marketing_consent: Optional[bool] = None


class PasswordChange(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)
    confirm_password: str

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return v

    @model_validator(mode="after")
    def check_passwords(self):
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        if self.new_password == self.current_password:
            raise ValueError("New password must differ from the current one")
        return self


class AccountDeletion(BaseModel):
    password: str = Field(..., min_length=1)
    confirmation: Literal["EXCLUIR CONTA"]


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    token: str = Field(..., min_length=1)
    password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return v


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Password hashing, JWT sessions and one-time tokens"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def _create_token(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + expires_delta,
            "iat": now,
            "type": token_type,
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        delta = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        return AuthService._create_token(data, "access", delta)

    @staticmethod
    def create_refresh_token(data: Dict[str, Any]) -> str:
        return AuthService._create_token(data, "refresh", timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))

    @staticmethod
    def token_claims(user: User) -> Dict[str, Any]:
        role = user.role.value if isinstance(user.role, UserRole) else user.role
        return {"sub": user.id, "email": user.email, "role": role}

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise Unauthorized("Token expired")
        except JWTError:
            raise Unauthorized("Invalid token")

    @staticmethod
    async def issue_one_time_token(db: AsyncSession, email: str, token_type: TokenType) -> VerificationToken:
        """Replace any pending token of the same kind for this identifier. Caller commits."""
        hours = VERIFICATION_TOKEN_HOURS if token_type == TokenType.VERIFICATION else PASSWORD_RESET_TOKEN_HOURS
        await db.execute(
            delete(VerificationToken).where(
                VerificationToken.identifier == email,
                VerificationToken.type == token_type,
            )
        )
        token = VerificationToken(
            identifier=email,
            token=secrets.token_urlsafe(32),
            type=token_type,
            expires_at=utcnow() + timedelta(hours=hours),
        )
        db.add(token)
        return token


def to_current_user(user: User) -> CurrentUser:
    return CurrentUser(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role.value if isinstance(user.role, UserRole) else user.role,
        is_active=user.is_active,
        email_verified=user.email_verified is not None,
    )


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    token = credentials.credentials if credentials else request.cookies.get(SESSION_COOKIE)
    if not token:
        raise Unauthorized()

    payload = AuthService.verify_token(token)
    if payload.get("type") != "access":
        raise Unauthorized("Invalid token type")

    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise Unauthorized("User not found or inactive")

    return to_current_user(user)


def require_role(*roles: UserRole):
    """Dependency factory: require user to have one of the specified roles"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if UserRole(user.role) not in roles:
            raise Forbidden()
        return user
    return _check


def require_verified(*roles: UserRole):
    """Like require_role, and the account's email must be verified"""
    role_check = require_role(*roles)

    async def _check(user: CurrentUser = Depends(role_check)) -> CurrentUser:
        if not user.email_verified:
            raise Forbidden("Email address not verified")
        return user
    return _check


require_admin = require_role(*ADMIN_ROLES)
require_any_user = require_role(*UserRole)
