"""Box model."""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from box_organizer.database import Base


class Box(Base):
    """
    Box model - a physical container of items.
    
    ``location_id`` is a weak reference: losing the location nulls it. The QR
    code link is stored on the QR side only (``QrCode.box_id``) and read here
    through the ``qr_code`` relationship.
    """
    __tablename__ = "boxes"
    
    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(Integer, nullable=False, index=True)
    short_id = Column(String(20), unique=True, index=True, nullable=False)
    location_id = Column(
        Integer, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    
    # Relationships
    location = relationship("Location")
    qr_code = relationship("QrCode", back_populates="box", uselist=False)
    
    def __repr__(self):
        return f"<Box(id={self.id}, short_id='{self.short_id}', location_id={self.location_id})>"
