"""Location model."""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Index, text
from sqlalchemy.sql import func

from box_organizer.database import Base
from box_organizer.services import paths


class Location(Base):
    """
    Node of a workspace's location tree (room, shelf, bin...).
    
    The hierarchy lives in ``path`` alone: a dot-separated list of normalized
    segments whose prefix is the parent's path. There is no parent foreign key.
    Soft-deleted rows are kept and ignored by tree queries.
    """
    __tablename__ = "locations"
    
    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(Integer, nullable=False, index=True)
    path = Column(String(1024), nullable=False)
    name = Column(String(64), nullable=False)
    description = Column(String(500), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    
    __table_args__ = (
        # A path is unique among the live nodes of a workspace
        Index(
            "uq_locations_workspace_path_live",
            "workspace_id",
            "path",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("is_deleted = false"),
        ),
    )
    
    @property
    def depth(self) -> int:
        return paths.depth_of(self.path)
    
    @property
    def parent_path(self):
        return paths.parent_path_of(self.path)
    
    def __repr__(self):
        return f"<Location(id={self.id}, workspace_id={self.workspace_id}, path='{self.path}')>"
