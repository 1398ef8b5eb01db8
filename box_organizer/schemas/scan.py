"""Scan-to-locate response schema."""
from typing import Optional, List
from pydantic import BaseModel

from box_organizer.schemas.box import BoxSummary
from box_organizer.schemas.location import LocationSummary
from box_organizer.schemas.qr_code import QrCodeResponse


class QrCodeScan(BaseModel):
    """What a scanned label resolves to: the code, its box and where the box is."""
    qr_code: QrCodeResponse
    box: Optional[BoxSummary] = None
    location: Optional[LocationSummary] = None
    breadcrumbs: List[LocationSummary] = []
