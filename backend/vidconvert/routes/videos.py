"""Video upload and catalog API endpoints."""
import logging
import uuid
from pathlib import Path
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from vidconvert.config import settings
from vidconvert.dependencies import get_catalog, get_object_store
from vidconvert.errors import DeliveryError
from vidconvert.models.schemas import VideoListResponse, VideoResponse, VideoUrlResponse
from vidconvert.services.object_store import ObjectStore
from vidconvert.services.transcode_engine import TargetFormat
from vidconvert.services.video_catalog import VideoCatalog

logger = logging.getLogger(__name__)

router = APIRouter()

VIDEO_EXTENSIONS = {f".{f.value}" for f in TargetFormat}


@router.post("", response_model=VideoResponse)
async def upload_video(
    file: UploadFile = File(...),
    owner_id: str = Form(..., alias="ownerId"),
    store: ObjectStore = Depends(get_object_store),
    catalog: VideoCatalog = Depends(get_catalog),
):
    """
    Upload a video to the object store and record it in the catalog.

    Only mp4, avi, mov and mkv files are accepted.
    """
    ext = Path(file.filename or "").suffix.lower()
    if ext not in VIDEO_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Videos only (mp4, avi, mov, mkv)")

    if file.size is not None and file.size > settings.MAX_UPLOAD_MB * 1024 * 1024:
        raise HTTPException(status_code=413, detail=f"File exceeds {settings.MAX_UPLOAD_MB} MB")

    key = f"{settings.UPLOAD_PREFIX}/{owner_id}/{uuid.uuid4().hex}{ext}"

    try:
        await store.put(key, file.file, content_type=file.content_type)
        video = await catalog.put(
            owner_id=owner_id,
            object_key=key,
            filename=file.filename,
            format=ext.lstrip("."),
        )
        return VideoResponse.model_validate(video)

    except DeliveryError as e:
        logger.error(f"Error uploading video: {e}")
        raise HTTPException(status_code=502, detail="Error storing video")
    except Exception as e:
        logger.error(f"Error uploading video: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("", response_model=VideoListResponse)
async def list_videos(
    owner_id: str = Query(..., alias="ownerId", description="Owner whose videos to list"),
    catalog: VideoCatalog = Depends(get_catalog),
):
    """
    List an owner's videos, newest first.
    """
    try:
        videos = await catalog.query(owner_id)
        return VideoListResponse(
            videos=[VideoResponse.model_validate(v) for v in videos],
            total=len(videos),
        )
    except Exception as e:
        logger.error(f"Error listing videos: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/{video_id}/url", response_model=VideoUrlResponse)
async def get_video_url(
    video_id: str,
    store: ObjectStore = Depends(get_object_store),
    catalog: VideoCatalog = Depends(get_catalog),
):
    """
    Get a presigned download URL for a video.
    """
    video = await catalog.get(video_id)
    if not video:
        raise HTTPException(status_code=404, detail="Video not found")

    try:
        url = store.presign_url(video.object_key, settings.PRESIGNED_URL_EXPIRES_SECS)
    except Exception as e:
        logger.error(f"Error presigning {video.object_key}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    return VideoUrlResponse(
        video_id=video_id, url=url, expires_in=settings.PRESIGNED_URL_EXPIRES_SECS
    )


@router.delete("/{video_id}")
async def delete_video(
    video_id: str,
    store: ObjectStore = Depends(get_object_store),
    catalog: VideoCatalog = Depends(get_catalog),
):
    """
    Delete a video from the object store and the catalog.
    """
    video = await catalog.get(video_id)
    if not video:
        raise HTTPException(status_code=404, detail="Video not found")

    try:
        await store.delete(video.object_key)
        await catalog.delete(video_id)
    except Exception as e:
        logger.error(f"Error deleting video {video_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    logger.info(f"Deleted video {video_id}")
    return {"success": True, "message": f"Video {video_id} deleted"}
