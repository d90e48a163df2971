"""Request and response models for the HTTP API."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class InstagramConfigRequest(BaseModel):
    """Body of POST /api/instagram-config. Missing fields are reported as a 400."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: Optional[str] = Field(default=None, alias="accessToken")
    page_id: Optional[str] = Field(default=None, alias="pageId")
    instagram_account_id: Optional[str] = Field(default=None, alias="instagramAccountId")


class SuccessResponse(BaseModel):
    success: bool = True


class WebhookAck(BaseModel):
    status: str
    accepted: int = 0
    duplicates: int = 0
    rejected: int = 0
