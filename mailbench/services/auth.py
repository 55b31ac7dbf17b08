"""Authentication service for Mailbench - user directory and JWT sessions."""

from datetime import datetime, timedelta, timezone
from typing import Optional
import secrets
import time
import logging

from authlib.jose import jwt, JoseError
from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError, InvalidHashError
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError as SQLAlchemyIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mailbench.config import get_config
from mailbench.db import get_db
from mailbench.exceptions import ConfigurationError, ConflictError
from mailbench.models.user import User
from mailbench.utils.security import mask_email

logger = logging.getLogger(__name__)

# HTTP Bearer token
security = HTTPBearer(auto_error=False)

# JWT Configuration
JWT_ALGORITHM = "HS256"
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = 24 * 60  # 24 hours
JWT_COOKIE_NAME = "mailbench_token"
JWT_COOKIE_MAX_AGE = 86400  # 24 hours in seconds

# Initialize Argon2 password hasher with recommended parameters
# time_cost=2, memory_cost=102400 (100MB), parallelism=8
ph = PasswordHasher(time_cost=2, memory_cost=102400, parallelism=8)


def normalize_email(email: str) -> str:
    """Trim and lowercase an email address for directory lookups."""
    return email.strip().lower()


# ============================================================================
# Secret Key Management
# ============================================================================

_SECRET_KEY: Optional[str] = None


def get_secret_key() -> str:
    """Return the JWT signing key, loading it on first use.

    Raises:
        ConfigurationError: If JWT_SECRET_KEY is unset in production
    """
    global _SECRET_KEY

    if _SECRET_KEY is None:
        config = get_config()
        if config.jwt_secret_key:
            _SECRET_KEY = config.jwt_secret_key
        elif config.is_production:
            raise ConfigurationError("JWT_SECRET_KEY environment variable is required in production")
        else:
            logger.warning(
                "JWT_SECRET_KEY not set. Using temporary in-memory key (sessions end on restart)"
            )
            _SECRET_KEY = secrets.token_urlsafe(32)

    return _SECRET_KEY


# ============================================================================
# Password Operations
# ============================================================================


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against an Argon2 hash."""
    try:
        ph.verify(hashed_password, plain_password)
        return True
    except (VerifyMismatchError, InvalidHashError):
        return False


def hash_password(password: str) -> str:
    """Hash a password using Argon2id.

    Note: Argon2 has no password length limitation (unlike bcrypt's 72 bytes).
    """
    return ph.hash(password)


# ============================================================================
# JWT Operations
# ============================================================================


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": int(expire.timestamp()), "iat": int(time.time())})
    header = {"alg": JWT_ALGORITHM}
    encoded_jwt = jwt.encode(header, to_encode, get_secret_key())
    return encoded_jwt.decode("utf-8") if isinstance(encoded_jwt, bytes) else encoded_jwt


def get_token_from_request(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """Extract JWT token from cookie or Authorization header.

    Priority:
    1. Cookie (primary method)
    2. Authorization header
    """
    token = request.cookies.get(JWT_COOKIE_NAME)
    if token:
        return token

    if credentials:
        return credentials.credentials

    return None


def decode_token(token: str) -> dict:
    """Decode and validate JWT token.

    Returns:
        Decoded token payload

    Raises:
        HTTPException: If token is invalid or expired
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, get_secret_key())
    except JoseError as e:
        logger.warning("JWT decode error: %s", type(e).__name__)
        raise credentials_exception

    # authlib does not validate expiration automatically
    if "exp" in payload and payload["exp"] < time.time():
        logger.info("JWT token has expired")
        raise credentials_exception

    return payload


# ============================================================================
# User Directory
# ============================================================================


async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    """Look up a registered user by email (trimmed, case-insensitive)."""
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def get_users_by_ids(db: AsyncSession, user_ids: list[str]) -> dict[str, User]:
    """Resolve many user ids at once.

    This is the privileged directory lookup used to show viewer identities
    to account owners. Ids with no matching user are absent from the result.
    """
    if not user_ids:
        return {}

    result = await db.execute(select(User).where(User.id.in_(user_ids)))
    return {user.id: user for user in result.scalars().all()}


async def register_user(
    db: AsyncSession,
    email: str,
    password: str,
    display_name: Optional[str] = None,
) -> User:
    """Create a new user.

    Raises:
        ConflictError: If the email is already registered
    """
    normalized = normalize_email(email)
    if await get_user_by_email(db, normalized):
        raise ConflictError("An account with this email already exists")

    user = User(
        email=normalized,
        display_name=display_name.strip() if display_name else None,
        password_hash=hash_password(password),
    )
    db.add(user)
    try:
        await db.commit()
    except SQLAlchemyIntegrityError:
        await db.rollback()
        raise ConflictError("An account with this email already exists")

    await db.refresh(user)
    logger.info("Registered user %s", mask_email(normalized))
    return user


async def authenticate_user(db: AsyncSession, email: str, password: str) -> Optional[User]:
    """Authenticate a user by email and password.

    Returns:
        User if authenticated, None otherwise
    """
    user = await get_user_by_email(db, email)
    if not user:
        # Same hashing cost as a known email
        ph.hash(password)
        return None

    if not verify_password(password, user.password_hash):
        return None

    now = datetime.now(timezone.utc)
    await db.execute(update(User).where(User.id == user.id).values(last_login=now))
    await db.commit()
    user.last_login = now

    return user


# ============================================================================
# Request Dependencies
# ============================================================================


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    token: Optional[str] = Depends(get_token_from_request),
) -> User:
    """Get the current authenticated user from JWT token.

    Raises:
        HTTPException 401: If token is invalid or missing
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        logger.info("No credentials provided - %s %s", request.method, request.url.path)
        raise credentials_exception

    payload = decode_token(token)

    sub = payload.get("sub")
    if not sub:
        logger.warning("Token missing sub claim")
        raise credentials_exception

    user = await get_user_by_id(db, sub)
    if not user:
        logger.warning("Token subject no longer exists")
        raise credentials_exception

    return user


async def optional_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    token: Optional[str] = Depends(get_token_from_request),
) -> Optional[User]:
    """Return the current user, or None when not authenticated."""
    if not token:
        return None

    try:
        return await get_current_user(request, db, token)
    except HTTPException:
        return None
