"""Stored API key schemas.

The encrypted key material is never part of a response model.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Provider = Literal["gemini", "openai", "anthropic"]


class ApiKeyCreate(BaseModel):
    provider: Provider = "gemini"
    api_key: str = Field(..., min_length=1, max_length=512)
    key_name: Optional[str] = Field(None, max_length=255)
    set_as_default: bool = False


class ApiKeyUpdate(BaseModel):
    key_name: Optional[str] = Field(None, max_length=255)
    api_key: Optional[str] = Field(None, min_length=1, max_length=512)
    is_default: Optional[bool] = None


class ApiKeySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider: str
    key_name: Optional[str] = None
    is_active: bool
    is_default: bool
    validation_status: str
    validation_error: Optional[str] = None
    last_validated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ApiKeyListResponse(BaseModel):
    keys: list[ApiKeySchema]


class ApiKeyCreateResponse(BaseModel):
    key: ApiKeySchema
    message: str = "API key created and validated successfully"


class ApiKeyUpdateResponse(BaseModel):
    key: ApiKeySchema


class ApiKeyValidationResponse(BaseModel):
    valid: bool
    validation_status: str
    validation_error: Optional[str] = None


class ApiKeyStatusResponse(BaseModel):
    authenticated: bool
    hasAnyKey: bool
