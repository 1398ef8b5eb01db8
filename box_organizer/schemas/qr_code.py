"""QR code schemas for request/response validation."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from box_organizer.models.qr_code import QrStatus


class QrCodeSummary(BaseModel):
    id: int
    short_id: str

    class Config:
        from_attributes = True


class QrCodeResponse(QrCodeSummary):
    """Schema for QR code response."""
    workspace_id: int
    status: QrStatus
    box_id: Optional[int] = None
    created_at: Optional[datetime] = None
