"""Conversion job orchestrator with a bounded pool of background workers."""
import asyncio
import json
import logging
from contextlib import aclosing
from pathlib import Path
from typing import Optional
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from vidconvert.errors import CleanupError, ConversionError, EngineError, ValidationError
from vidconvert.models.job import ConversionJob, JobStatus, new_job_id
from vidconvert.services.object_store import ObjectStore
from vidconvert.services.progress_broadcaster import ProgressBroadcaster, ProgressEvent
from vidconvert.services.status_notifier import StatusNotifier
from vidconvert.services.transcode_engine import (
    Done,
    Failed,
    ProgressTick,
    TargetFormat,
    TranscodeEngine,
    normalize_resolution,
)
from vidconvert.services.video_catalog import VideoCatalog

logger = logging.getLogger(__name__)

DEFAULT_OWNER = "anonymous"


class JobOrchestrator:
    """Owns the lifecycle of conversion jobs from submission to terminal state."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        object_store: ObjectStore,
        engine: TranscodeEngine,
        broadcaster: ProgressBroadcaster,
        notifier: StatusNotifier,
        temp_dir: Path,
        catalog: Optional[VideoCatalog] = None,
        output_prefix: str = "processed",
        max_concurrent_jobs: int = 2,
        notify_grace: float = 5.0,
    ):
        self.session_factory = session_factory
        self.object_store = object_store
        self.engine = engine
        self.broadcaster = broadcaster
        self.notifier = notifier
        self.catalog = catalog
        self.temp_dir = Path(temp_dir)
        self.output_prefix = output_prefix.strip("/")
        self.max_concurrent_jobs = max(1, max_concurrent_jobs)
        self.notify_grace = notify_grace

        self.queue: asyncio.Queue = asyncio.Queue()
        self.active_job_ids: set[str] = set()
        self.cancel_events: dict[str, asyncio.Event] = {}
        self.running = False
        self.worker_tasks: list[asyncio.Task] = []
        self.notify_tasks: set[asyncio.Task] = set()

    async def submit(
        self,
        owner_id: Optional[str],
        source_key: Optional[str],
        target_format: Optional[str],
        target_resolution: Optional[str],
    ) -> str:
        """
        Accept a conversion request and queue it.

        Args:
            owner_id: Opaque caller identity
            source_key: Object-store key of the input video
            target_format: Output container (mp4, avi, mov, mkv)
            target_resolution: 1080p, 720p or 480p; anything else means 1080p

        Returns:
            The new job's ID

        Raises:
            ValidationError: If a required field is missing or the format is unknown
        """
        missing = [
            name
            for name, value in (
                ("sourceKey", source_key),
                ("targetFormat", target_format),
                ("targetResolution", target_resolution),
            )
            if not value
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        try:
            fmt = TargetFormat(target_format.lower())
        except ValueError:
            allowed = ", ".join(f.value for f in TargetFormat)
            raise ValidationError(f"Unsupported target format '{target_format}' (expected one of: {allowed})")

        job = ConversionJob(
            job_id=new_job_id(),
            source_key=source_key,
            owner_id=owner_id or DEFAULT_OWNER,
            target_format=fmt.value,
            target_resolution=normalize_resolution(target_resolution).value,
            status=JobStatus.QUEUED.value,
            progress_percent=0,
            history=json.dumps([JobStatus.QUEUED.value]),
        )

        async with self.session_factory() as db:
            db.add(job)
            await db.commit()

        self.cancel_events[job.job_id] = asyncio.Event()
        await self.queue.put(job.job_id)
        logger.info(
            f"Job {job.job_id} queued: {source_key} -> {fmt.value}@{job.target_resolution}. "
            f"Queue size: {self.queue.qsize()}"
        )
        return job.job_id

    async def status(self, job_id: str) -> Optional[ConversionJob]:
        """Get a snapshot of a job, or None if unknown."""
        async with self.session_factory() as db:
            return await db.get(ConversionJob, job_id)

    async def list_jobs(self, owner_id: Optional[str] = None) -> list[ConversionJob]:
        """List jobs, newest first, optionally for one owner."""
        query = select(ConversionJob).order_by(ConversionJob.created_at.desc())
        if owner_id:
            query = query.where(ConversionJob.owner_id == owner_id)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def cancel(self, job_id: str) -> bool:
        """
        Request cooperative cancellation of a queued or running job.

        The worker honours the request before download, after download, or
        between encoder ticks; the job then ends as Failed.

        Returns:
            True if the request was registered, False if the job is unknown or finished
        """
        event = self.cancel_events.get(job_id)
        if event is None:
            return False

        job = await self.status(job_id)
        if not job or JobStatus(job.status).is_terminal:
            return False

        event.set()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    async def recover_interrupted(self) -> int:
        """
        Fail jobs left unfinished by a previous process.

        Returns:
            Number of jobs marked Failed
        """
        terminal = [JobStatus.COMPLETED.value, JobStatus.FAILED.value]
        async with self.session_factory() as db:
            result = await db.execute(
                select(ConversionJob).where(ConversionJob.status.not_in(terminal))
            )
            jobs = result.scalars().all()
            for job in jobs:
                job.error_detail = "Interrupted by service restart"
                job.transition(JobStatus.FAILED)
            await db.commit()

        if jobs:
            logger.warning(f"Marked {len(jobs)} interrupted jobs as failed")
        return len(jobs)

    async def start(self):
        """Start the worker pool."""
        if self.running:
            logger.warning("Workers already running")
            return

        self.running = True
        self.worker_tasks = [
            asyncio.create_task(self._worker_loop(n)) for n in range(self.max_concurrent_jobs)
        ]
        logger.info(f"Started {self.max_concurrent_jobs} conversion workers")

    async def stop(self):
        """Stop the worker pool."""
        if not self.running:
            return

        self.running = False
        for task in self.worker_tasks:
            task.cancel()
        await asyncio.gather(*self.worker_tasks, return_exceptions=True)
        self.worker_tasks = []
        await self.drain_notifications(self.notify_grace)
        logger.info("Conversion workers stopped")

    async def join(self):
        """Wait until every queued job has been processed."""
        await self.queue.join()

    async def drain_notifications(self, timeout: float):
        """
        Wait for in-flight status notifications, cancelling any still
        running after the timeout.
        """
        if not self.notify_tasks:
            return

        _, pending = await asyncio.wait(set(self.notify_tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Abandoned {len(pending)} status notifications still in flight")

    async def _worker_loop(self, worker_number: int):
        """Background worker that processes jobs one at a time."""
        logger.info(f"Worker {worker_number} started")

        while self.running:
            try:
                try:
                    job_id = await asyncio.wait_for(self.queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                try:
                    await self._process_job(job_id)
                finally:
                    self.queue.task_done()

            except asyncio.CancelledError:
                logger.info(f"Worker {worker_number} cancelled")
                break
            except Exception as e:
                logger.error(f"Error in worker {worker_number}: {e}", exc_info=True)

    async def _process_job(self, job_id: str):
        """
        Drive one job to a terminal state.

        Temp files are named after the job ID and removed before the
        terminal status is stored.
        """
        cancel_event = self.cancel_events.get(job_id) or asyncio.Event()
        self.active_job_ids.add(job_id)
        source_path: Optional[Path] = None
        output_path: Optional[Path] = None

        try:
            async with self.session_factory() as db:
                job = await db.get(ConversionJob, job_id)
                if not job:
                    logger.error(f"Job {job_id} not found in database")
                    return

                source_path = self.temp_dir / f"{job_id}-source{Path(job.source_key).suffix}"
                output_path = self.temp_dir / f"{job_id}-output.{job.target_format}"

                try:
                    if cancel_event.is_set():
                        raise ConversionError("Cancelled before start")
                    await self._run(db, job, source_path, output_path, cancel_event)
                except ConversionError as e:
                    await self._fail(db, job, str(e), source_path, output_path)
                except Exception as e:
                    logger.error(f"Error processing job {job_id}: {e}", exc_info=True)
                    await db.rollback()
                    await db.refresh(job)
                    await self._fail(db, job, "Internal error", source_path, output_path)
        finally:
            self._cleanup(job_id, source_path, output_path)
            self.active_job_ids.discard(job_id)
            self.cancel_events.pop(job_id, None)

    async def _run(
        self,
        db: AsyncSession,
        job: ConversionJob,
        source_path: Path,
        output_path: Path,
        cancel_event: asyncio.Event,
    ):
        await self._transition(db, job, JobStatus.DOWNLOADING)
        self._notify(job.job_id, JobStatus.DOWNLOADING, {
            "video": job.source_key,
            "format": job.target_format,
            "resolution": job.target_resolution,
        })

        await self.object_store.download(job.source_key, source_path)
        if cancel_event.is_set():
            raise ConversionError("Cancelled")

        await self._transition(db, job, JobStatus.CONVERTING)

        events = self.engine.convert(
            source_path, output_path, job.target_format, job.target_resolution, cancel_event
        )
        async with aclosing(events):
            async for event in events:
                if isinstance(event, ProgressTick):
                    if event.percent > job.progress_percent:
                        job.progress_percent = event.percent
                        await db.commit()
                    await self.broadcaster.publish(ProgressEvent.tick(job.job_id, event.percent))
                elif isinstance(event, Failed):
                    raise EngineError(event.error_detail)
                elif isinstance(event, Done):
                    await self._complete(db, job, source_path, Path(event.output_path))

    async def _complete(self, db: AsyncSession, job: ConversionJob, source_path: Path, output_path: Path):
        """Hand the artifact off to the object store, then finish the job."""
        output_key = f"{self.output_prefix}/{job.owner_id}/{job.job_id}.{job.target_format}"
        await self.object_store.upload(output_path, output_key)

        if self.catalog:
            try:
                await self.catalog.put(
                    owner_id=job.owner_id,
                    object_key=output_key,
                    filename=Path(output_key).name,
                    format=job.target_format,
                    resolution=job.target_resolution,
                    source_job_id=job.job_id,
                )
            except SQLAlchemyError as e:
                logger.error(f"Error cataloguing output of job {job.job_id}: {e}")

        # Artifact is durable now
        self._cleanup(job.job_id, source_path, output_path)

        job.output_key = output_key
        job.output_path = str(output_path)
        job.progress_percent = 100
        await self._transition(db, job, JobStatus.COMPLETED)

        await self.broadcaster.publish(ProgressEvent.complete(job.job_id))
        self._notify(job.job_id, JobStatus.COMPLETED, {
            "video": job.source_key,
            "outputFilePath": output_key,
        })

    async def _fail(
        self,
        db: AsyncSession,
        job: ConversionJob,
        detail: str,
        source_path: Optional[Path],
        output_path: Optional[Path],
    ):
        self._cleanup(job.job_id, source_path, output_path)

        if JobStatus(job.status).is_terminal:
            logger.warning(f"Job {job.job_id} already {job.status}; ignoring failure: {detail}")
            return

        job.error_detail = detail
        await self._transition(db, job, JobStatus.FAILED)

        await self.broadcaster.publish(ProgressEvent.error(job.job_id))
        self._notify(job.job_id, JobStatus.FAILED, {
            "video": job.source_key,
            "error": detail,
        })

    async def _transition(self, db: AsyncSession, job: ConversionJob, status: JobStatus):
        job.transition(status)
        await db.commit()
        if status == JobStatus.FAILED:
            logger.info(f"Job {job.job_id} -> {status.value}: {job.error_detail}")
        else:
            logger.info(f"Job {job.job_id} -> {status.value}")

    def _notify(self, job_id: str, status: JobStatus, detail: dict):
        """Send a status notification in the background; the job never waits on it."""
        task = asyncio.create_task(self.notifier.notify(job_id, status, detail))
        self.notify_tasks.add(task)
        task.add_done_callback(self._notification_done)

    def _notification_done(self, task: asyncio.Task):
        self.notify_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Status notification failed: {exc}", exc_info=exc)

    def _cleanup(self, job_id: str, *paths: Optional[Path]):
        """Remove temp files; failures are logged and never change job status."""
        for path in paths:
            if path is None:
                continue
            try:
                self._remove_temp(path)
            except CleanupError as e:
                logger.error(f"Cleanup failed for job {job_id}: {e}")

    @staticmethod
    def _remove_temp(path: Path):
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise CleanupError(f"Could not remove {path}: {e}") from e

    def get_queue_status(self) -> dict:
        """Get current queue status."""
        return {
            "queue_size": self.queue.qsize(),
            "active_job_ids": sorted(self.active_job_ids),
            "running": self.running,
            "max_concurrent_jobs": self.max_concurrent_jobs,
        }
