"""Pydantic schemas for API validation."""

from mailbench.schemas.auth import LoginRequest, RegisterRequest, TokenResponse, UserProfile
from mailbench.schemas.gmail import (
    AccountSummary,
    AccountsResponse,
    MessageSchema,
    SearchRequest,
    SearchResponse,
    ViewerSchema,
)
from mailbench.schemas.api_key import ApiKeyCreate, ApiKeySchema, ApiKeyUpdate

__all__ = [
    "LoginRequest",
    "RegisterRequest",
    "TokenResponse",
    "UserProfile",
    "AccountSummary",
    "AccountsResponse",
    "MessageSchema",
    "SearchRequest",
    "SearchResponse",
    "ViewerSchema",
    "ApiKeyCreate",
    "ApiKeySchema",
    "ApiKeyUpdate",
]
