"""Authentication API endpoints.

Provides endpoints for user accounts:
- POST /api/v1/auth/register - Create an account (public)
- POST /api/v1/auth/login - Login with email/password (public)
- POST /api/v1/auth/logout - Clear the session cookie
- GET /api/v1/auth/me - Current user profile
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from mailbench.config import AppConfig, get_config
from mailbench.db import get_db
from mailbench.models.user import User
from mailbench.schemas.auth import LoginRequest, RegisterRequest, TokenResponse, UserProfile
from mailbench.services.auth import (
    JWT_COOKIE_MAX_AGE,
    JWT_COOKIE_NAME,
    authenticate_user,
    create_access_token,
    get_current_user,
    register_user,
)
from mailbench.utils.security import mask_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _set_session_cookie(response: Response, token: str, config: AppConfig) -> None:
    response.set_cookie(
        key=JWT_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=config.secure_cookies,
        samesite="lax",
        max_age=JWT_COOKIE_MAX_AGE,
        path="/",
    )


# ============================================================================
# Public Endpoints (No Auth Required)
# ============================================================================


@router.post("/register", response_model=UserProfile, status_code=status.HTTP_201_CREATED)
async def register(
    register_data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create a new user account.

    Registered users can log in, connect Gmail accounts and be added as
    viewers of accounts other users share with them.
    """
    user = await register_user(
        db,
        email=register_data.email,
        password=register_data.password,
        display_name=register_data.display_name,
    )
    return user


@router.post("/login", response_model=TokenResponse)
async def login(
    response: Response,
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db),
    config: AppConfig = Depends(get_config),
):
    """Authenticate a user and set the JWT token in an httpOnly cookie."""
    user = await authenticate_user(db, login_data.email, login_data.password)

    if not user:
        logger.info("Failed login for %s", mask_email(login_data.email))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(data={"sub": user.id, "email": user.email})
    _set_session_cookie(response, access_token, config)

    logger.info("User logged in: %s", user.id)

    return {
        "access_token": access_token,
        "token_type": "bearer",
        "expires_in": JWT_COOKIE_MAX_AGE,
    }


# ============================================================================
# Protected Endpoints (Auth Required)
# ============================================================================


@router.post("/logout")
async def logout(
    response: Response,
    user: User = Depends(get_current_user),
):
    """Logout by clearing the JWT cookie."""
    response.delete_cookie(key=JWT_COOKIE_NAME, path="/")

    logger.info("User logged out: %s", user.id)
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=UserProfile)
async def get_profile(user: User = Depends(get_current_user)):
    """Get the current user's profile."""
    return user
