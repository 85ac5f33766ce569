"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobCreate(CamelModel):
    """Schema for submitting a conversion job.

    Fields are optional here so that missing values are reported as a
    validation error with a 400 response rather than a schema error.
    """

    source_key: Optional[str] = None
    owner_id: Optional[str] = None
    target_format: Optional[str] = None
    target_resolution: Optional[str] = None


class JobCreateResponse(CamelModel):
    """Schema for job creation response."""

    job_id: str


class JobResponse(CamelModel):
    """Snapshot of a conversion job."""

    job_id: str
    source_key: str
    owner_id: str
    target_format: str
    target_resolution: str
    status: str
    progress_percent: int
    status_history: list[str]
    output_key: Optional[str]
    output_path: Optional[str]
    error_detail: Optional[str]
    created_at: Optional[datetime]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class JobListResponse(CamelModel):
    """Schema for job list response."""

    jobs: list[JobResponse]
    total: int


class VideoResponse(CamelModel):
    """A video record from the catalog."""

    video_id: str
    owner_id: str
    object_key: str
    filename: str
    format: str
    resolution: Optional[str]
    source_job_id: Optional[str]
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class VideoListResponse(CamelModel):
    """Schema for video list response."""

    videos: list[VideoResponse]
    total: int


class VideoUrlResponse(CamelModel):
    """Presigned download URL for a video."""

    video_id: str
    url: str
    expires_in: int
