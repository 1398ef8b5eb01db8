"""QR code model."""
import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from box_organizer.database import Base


class QrStatus(str, enum.Enum):
    generated = "generated"
    assigned = "assigned"
    printed = "printed"


class QrCode(Base):
    """
    Registry entry for a printable QR label.
    
    ``box_id`` is unique, so a box carries at most one code. It is set exactly
    when the status is ``assigned`` or ``printed``.
    """
    __tablename__ = "qr_codes"
    
    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(Integer, nullable=False, index=True)
    short_id = Column(String(20), unique=True, index=True, nullable=False)
    status = Column(Enum(QrStatus, name="qr_status"), default=QrStatus.generated, nullable=False)
    box_id = Column(
        Integer, ForeignKey("boxes.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    # Relationships
    box = relationship("Box", back_populates="qr_code")
    
    def __repr__(self):
        return f"<QrCode(id={self.id}, short_id='{self.short_id}', status={self.status}, box_id={self.box_id})>"
