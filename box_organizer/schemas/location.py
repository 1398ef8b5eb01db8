"""Location schemas for request/response validation."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator


class LocationBase(BaseModel):
    """Base location schema."""
    name: str = Field(..., min_length=1, max_length=64)
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value


class LocationCreate(LocationBase):
    """Schema for creating a location. No parent means a root location."""
    parent_id: Optional[int] = None


class LocationUpdate(BaseModel):
    """Schema for renaming a location and/or changing its description."""
    name: Optional[str] = Field(None, min_length=1, max_length=64)
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def check_not_empty(self):
        if self.name is None and "description" not in self.model_fields_set:
            raise ValueError("At least one of name or description must be provided")
        return self


class LocationSummary(BaseModel):
    """Short location form used in box and scan responses."""
    id: int
    name: str
    path: str

    class Config:
        from_attributes = True


class LocationResponse(LocationBase):
    """Schema for location response."""
    id: int
    workspace_id: int
    path: str
    depth: int
    parent_path: Optional[str] = None
    is_deleted: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
