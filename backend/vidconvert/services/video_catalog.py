"""Video metadata table operations."""

import logging
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
from vidconvert.models.video import Video

logger = logging.getLogger(__name__)


class VideoCatalog:
    """Keyed store of video records, queried by owner."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def put(
        self,
        owner_id: str,
        object_key: str,
        filename: str,
        format: str,
        resolution: Optional[str] = None,
        source_job_id: Optional[str] = None,
    ) -> Video:
        """
        Insert a video record.

        Returns:
            The stored record
        """
        video = Video(
            owner_id=owner_id,
            object_key=object_key,
            filename=filename,
            format=format,
            resolution=resolution,
            source_job_id=source_job_id,
        )
        async with self.session_factory() as db:
            db.add(video)
            await db.commit()
            await db.refresh(video)

        logger.info(f"Catalogued video {video.video_id} ({object_key}) for {owner_id}")
        return video

    async def query(self, owner_id: str) -> list[Video]:
        """Get an owner's videos, newest first."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(Video)
                .where(Video.owner_id == owner_id)
                .order_by(Video.created_at.desc())
            )
            return list(result.scalars().all())

    async def get(self, video_id: str) -> Optional[Video]:
        async with self.session_factory() as db:
            result = await db.execute(select(Video).where(Video.video_id == video_id))
            return result.scalar_one_or_none()

    async def delete(self, video_id: str) -> bool:
        """
        Remove a video record.

        Returns:
            True if a record was deleted
        """
        async with self.session_factory() as db:
            result = await db.execute(select(Video).where(Video.video_id == video_id))
            video = result.scalar_one_or_none()
            if not video:
                return False
            await db.delete(video)
            await db.commit()

        logger.info(f"Removed video {video_id} from catalog")
        return True
