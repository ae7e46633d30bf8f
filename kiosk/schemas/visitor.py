# kiosk/schemas/visitor.py
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class VisitorCreate(BaseModel):
    # Every field is optional at the schema level so the store can report
    # "<field> is required" with a 400 instead of a generic validation error.
    id: Optional[str] = None
    ref: Optional[str] = None
    name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    event_id: Optional[str] = None
    registered: bool = False
    photo_url: Optional[str] = None
    qr_url: Optional[str] = None


class VisitorIssue(BaseModel):
    """Profile submitted on the QR issuance form; ref and id are server-assigned."""
    name: str = Field(min_length=2)
    last_name: str = Field(min_length=2)
    company: str = Field(min_length=1)
    position: str = Field(min_length=1)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: str = Field(min_length=5)


class VisitorOut(BaseModel):
    id: str
    ref: str
    name: str
    last_name: str
    company: str
    position: str
    email: str
    phone: str
    event_id: str
    registered: bool
    photo_url: Optional[str]
    qr_url: Optional[str]
    badge_url: Optional[str]
    card_url: Optional[str]
    print_url: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RegistrationUpdate(BaseModel):
    ref: Optional[str] = None
    photo_url: Optional[str] = Field(None, alias="photoUrl")
    badge_url: Optional[str] = Field(None, alias="badgeUrl")
    card_url: Optional[str] = Field(None, alias="cardUrl")
    print_url: Optional[str] = Field(None, alias="printUrl")

    class Config:
        populate_by_name = True


class QrUrlUpdate(BaseModel):
    ref: Optional[str] = None
    qr_url: Optional[str] = Field(None, alias="qrUrl")

    class Config:
        populate_by_name = True
