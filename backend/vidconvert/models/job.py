"""Conversion job database model."""
import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import Column, Integer, String, Text, DateTime, Index
from vidconvert.database import Base
from vidconvert.errors import InvalidTransitionError


class JobStatus(str, Enum):
    """Lifecycle states of a conversion job."""

    QUEUED = "Queued"
    DOWNLOADING = "Downloading"
    CONVERTING = "Converting"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Queued -> Failed covers cancellation before a worker picks the job up
# and jobs interrupted by a restart.
ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.DOWNLOADING, JobStatus.FAILED},
    JobStatus.DOWNLOADING: {JobStatus.CONVERTING, JobStatus.FAILED},
    JobStatus.CONVERTING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def new_job_id() -> str:
    return uuid.uuid4().hex


class ConversionJob(Base):
    """Conversion job model."""

    __tablename__ = "jobs"

    job_id = Column(String(32), primary_key=True, default=new_job_id)

    # Request
    source_key = Column(String, nullable=False)
    owner_id = Column(String, nullable=False)
    target_format = Column(String, nullable=False)
    target_resolution = Column(String, nullable=False)

    # Status tracking
    status = Column(String, nullable=False, default=JobStatus.QUEUED.value)
    progress_percent = Column(Integer, nullable=False, default=0)
    history = Column(Text, nullable=False, default=lambda: json.dumps([JobStatus.QUEUED.value]))

    # Result
    output_key = Column(String, nullable=True)
    output_path = Column(String, nullable=True)
    error_detail = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_jobs_owner_id", "owner_id"),
        Index("idx_jobs_status", "status"),
    )

    @property
    def status_history(self) -> list[str]:
        return json.loads(self.history) if self.history else []

    def transition(self, new_status: JobStatus):
        """
        Move the job to a new status, recording it in the history.

        Args:
            new_status: Status to enter

        Raises:
            InvalidTransitionError: If the lifecycle does not allow the move
        """
        current = JobStatus(self.status)
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Job {self.job_id} cannot move from {current.value} to {new_status.value}"
            )

        self.status = new_status.value
        self.history = json.dumps(self.status_history + [new_status.value])

        now = datetime.now(timezone.utc)
        if new_status == JobStatus.DOWNLOADING:
            self.started_at = now
        elif new_status.is_terminal:
            self.completed_at = now
