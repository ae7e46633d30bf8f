# kiosk/schemas/media.py
"""Request bodies for storage uploads, avatar generation and badge compositing."""

from pydantic import BaseModel, Field
from typing import Optional


class UploadRequest(BaseModel):
    base64_image: Optional[str] = Field(None, alias="base64Image")
    user_ref: Optional[str] = Field(None, alias="userRef")
    variant: Optional[str] = None    # badges bucket only: card | print

    class Config:
        populate_by_name = True


class GenerateBadgeRequest(BaseModel):
    photo_url: Optional[str] = Field(None, alias="photoUrl")
    visitor_name: str = Field("", alias="visitorName")
    style: str = "photo-shoot"

    class Config:
        populate_by_name = True


class ComposeBadgeRequest(BaseModel):
    image: Optional[str] = None     # avatar or photo: URL or data URL
    name: Optional[str] = None
    last_name: Optional[str] = Field(None, alias="lastName")
    company: Optional[str] = None
    position: Optional[str] = None

    class Config:
        populate_by_name = True
