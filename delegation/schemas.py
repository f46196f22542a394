"""
Pydantic schemas for API validation and serialization.

These schemas handle:
1. Request validation (what the frontend sends)
2. Response serialization (what the API returns)

Caller identity never appears in a request schema; it always comes from the
verified bearer token.
"""

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional


def _not_blank(value: str, field: str) -> str:
    if value is None or not value.strip():
        raise ValueError(f"{field} must not be blank")
    return value.strip()


# ============ Request Schemas ============

class BootstrapProfileRequest(BaseModel):
    """
    First-login profile bootstrap.

    Example:
        {"name": "Ada", "surname": "Lovelace", "phone_number": "+44 20 7946 0000"}
    """
    name: str = Field(..., max_length=255)
    surname: str = Field(..., max_length=255)
    phone_number: Optional[str] = Field(None, max_length=64)

    @field_validator('name', 'surname')
    def validate_required(cls, v, info):
        return _not_blank(v, info.field_name)


class UpdateProfileRequest(BaseModel):
    """Partial profile update. `is_admin` is honoured for admin callers only."""
    name: Optional[str] = Field(None, max_length=255)
    surname: Optional[str] = Field(None, max_length=255)
    phone_number: Optional[str] = Field(None, max_length=64)
    is_admin: Optional[bool] = None

    @field_validator('name', 'surname')
    def validate_optional_required(cls, v, info):
        if v is None:
            return v
        return _not_blank(v, info.field_name)


class ReassignCountryRequest(BaseModel):
    """
    Admin country change. `country: null` leaves the participant without one.
    """
    country: Optional[str] = Field(None, max_length=128)


class SendNotificationRequest(BaseModel):
    content: str = Field(..., max_length=10000)


class SendMessageRequest(BaseModel):
    recipient_user_id: str = Field(..., max_length=36)
    content: str = Field(..., max_length=50000)


class CreateDocumentRequest(BaseModel):
    """
    Register an uploaded file. `file_url` is whatever the blob store returned.
    """
    file_name: str = Field(..., max_length=512)
    file_url: str


# ============ Response Schemas ============

class ProfileResponse(BaseModel):
    user_id: str
    name: str
    surname: str
    phone_number: Optional[str] = None
    is_admin: bool
    assigned_country: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class CountryResponse(BaseModel):
    name: str
    assigned_user: Optional[str] = None
    is_free: bool


class ReassignCountryResponse(BaseModel):
    user_id: str
    assigned_country: Optional[str] = None


class DocumentResponse(BaseModel):
    id: str
    user_id: str
    file_name: str
    file_url: str
    created_at: Optional[str] = None
    # Filled for admin listings
    user_name: Optional[str] = None
    user_surname: Optional[str] = None
    assigned_country: Optional[str] = None


class MessageResponse(BaseModel):
    id: str
    sender_user_id: str
    recipient_user_id: str
    sender_country: Optional[str] = None
    recipient_country: Optional[str] = None
    content: str
    created_at: Optional[str] = None


class NotificationResponse(BaseModel):
    id: str
    content: str
    created_at: Optional[str] = None


class ReconcileResponse(BaseModel):
    released: List[str] = Field(default_factory=list)
    relinked: List[str] = Field(default_factory=list)
