"""Box schemas for request/response validation."""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator

from box_organizer.schemas.location import LocationSummary
from box_organizer.schemas.qr_code import QrCodeSummary


def _clean_tags(tags):
    """Strip tags, drop empty ones and duplicates (first occurrence wins)."""
    if tags is None:
        return tags
    return list(dict.fromkeys(tag.strip() for tag in tags if tag and tag.strip()))


class BoxBase(BaseModel):
    """Base box schema."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=10000)
    tags: List[str] = []

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, value):
        return _clean_tags(value) or []


class BoxCreate(BoxBase):
    """Schema for creating a box, optionally placed and labeled at once."""
    location_id: Optional[int] = None
    qr_code_id: Optional[int] = None


class BoxUpdate(BaseModel):
    """
    Schema for updating a box.
    
    Only fields that are explicitly set are applied; an explicit null
    ``location_id`` unplaces the box and an explicit null ``qr_code_id``
    releases its QR code.
    """
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=10000)
    tags: Optional[List[str]] = None
    location_id: Optional[int] = None
    qr_code_id: Optional[int] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, value):
        return _clean_tags(value)


class BoxQuery(BaseModel):
    """Filters and pagination for listing boxes."""
    q: Optional[str] = Field(None, min_length=1)
    location_id: Optional[int] = None
    is_assigned: Optional[bool] = None
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class BoxSummary(BaseModel):
    id: int
    short_id: str
    name: str
    location_id: Optional[int] = None

    class Config:
        from_attributes = True


class BoxResponse(BoxBase):
    """Schema for box response."""
    id: int
    workspace_id: int
    short_id: str
    location_id: Optional[int] = None
    location: Optional[LocationSummary] = None
    qr_code: Optional[QrCodeSummary] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DuplicateCheck(BaseModel):
    """Result of a duplicate box name check."""
    is_duplicate: bool
    count: int
