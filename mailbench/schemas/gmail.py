"""Connected Gmail account, sharing and search schemas.

Request and response bodies use camelCase keys; Python attributes stay
snake_case through field aliases.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AuthUrlResponse(CamelModel):
    auth_url: str = Field(..., alias="authUrl")


class AccountRequest(CamelModel):
    """Body for endpoints addressing a single account."""

    account_id: str = Field(..., min_length=1, alias="accountId")


class RefreshRequest(CamelModel):
    account_id: Optional[str] = Field(None, alias="accountId")


class AddViewerRequest(CamelModel):
    account_id: str = Field(..., min_length=1, alias="accountId")
    viewer_email: str = Field(..., min_length=1, max_length=320, alias="viewerEmail")


class RemoveViewerRequest(CamelModel):
    account_id: str = Field(..., min_length=1, alias="accountId")
    viewer_id: str = Field(..., min_length=1, alias="viewerId")


class SearchRequest(CamelModel):
    account_id: str = Field(..., min_length=1, alias="accountId")
    query: str = Field("", max_length=2000)
    label: Optional[str] = Field(None, max_length=32)
    max_results: int = Field(25, ge=1, le=500, alias="maxResults")
    page_token: Optional[str] = Field(None, alias="pageToken")


class SuccessResponse(BaseModel):
    success: bool = True


class AccountSummary(BaseModel):
    """A connected account as shown to owners and viewers (no token fields)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    email: str
    token_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AccountsResponse(BaseModel):
    owned: list[AccountSummary]
    shared: list[AccountSummary]


class ViewerSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str


class ViewersResponse(BaseModel):
    viewers: list[ViewerSchema]


class AddViewerResponse(BaseModel):
    success: bool = True
    viewer: ViewerSchema


class RefreshAccountResponse(CamelModel):
    success: bool = True
    account_id: str = Field(..., alias="accountId")


class RefreshItem(CamelModel):
    account_id: str = Field(..., alias="accountId")
    success: bool
    status: str
    error: Optional[str] = None


class BatchRefreshResponse(BaseModel):
    success: bool = True
    refreshed: int
    failed: int
    total: int
    results: list[RefreshItem]


class MessageSchema(CamelModel):
    """Deliverability metadata for one message."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    subject: str
    from_: str = Field(..., alias="from")
    snippet: str
    labels: list[str]
    date: str
    sending_ip: Optional[str] = Field(None, alias="sendingIp")
    sending_domain: Optional[str] = Field(None, alias="sendingDomain")


class SearchResponse(CamelModel):
    messages: list[MessageSchema]
    next_page_token: Optional[str] = Field(None, alias="nextPageToken")
