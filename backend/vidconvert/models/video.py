"""Video metadata database model."""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Index
from vidconvert.database import Base


class Video(Base):
    """A video stored in the object store, uploaded or produced by a job."""

    __tablename__ = "videos"

    video_id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    owner_id = Column(String, nullable=False)
    object_key = Column(String, nullable=False, unique=True)
    filename = Column(String, nullable=False)
    format = Column(String, nullable=False)
    resolution = Column(String, nullable=True)  # None for uploads
    source_job_id = Column(String(32), nullable=True)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("idx_videos_owner_created", "owner_id", "created_at"),
    )
