"""Main FastAPI application."""

import logging
from pathlib import Path
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from vidconvert.config import clean_directory, settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Ensure logging output if Uvicorn hijacked the root logger but didn't set level/handlers as expected
if not logging.getLogger().handlers:
    console = logging.StreamHandler()
    console.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    logging.getLogger().addHandler(console)


def build_services(app: FastAPI):
    """Construct the conversion services from settings onto app.state."""
    from vidconvert.database import AsyncSessionLocal
    from vidconvert.services.job_orchestrator import JobOrchestrator
    from vidconvert.services.object_store import ObjectStore, create_s3_client
    from vidconvert.services.progress_broadcaster import ProgressBroadcaster
    from vidconvert.services.status_notifier import StatusNotifier
    from vidconvert.services.transcode_engine import TranscodeEngine
    from vidconvert.services.video_catalog import VideoCatalog

    app.state.object_store = ObjectStore(
        settings.S3_BUCKET_NAME,
        create_s3_client(settings.AWS_REGION, settings.S3_ENDPOINT_URL),
    )
    app.state.broadcaster = ProgressBroadcaster(send_timeout=settings.BROADCAST_SEND_TIMEOUT)
    app.state.catalog = VideoCatalog(AsyncSessionLocal)
    app.state.orchestrator = JobOrchestrator(
        session_factory=AsyncSessionLocal,
        object_store=app.state.object_store,
        engine=TranscodeEngine(settings.FFMPEG_BINARY, settings.FFPROBE_BINARY),
        broadcaster=app.state.broadcaster,
        notifier=StatusNotifier(settings.SQS_QUEUE_URL, region_name=settings.AWS_REGION),
        temp_dir=Path(settings.TEMP_DIR),
        catalog=app.state.catalog,
        output_prefix=settings.OUTPUT_PREFIX,
        max_concurrent_jobs=settings.MAX_CONCURRENT_JOBS,
    )


def clean_temp_dir():
    clean_directory(Path(settings.TEMP_DIR), "shutdown")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    from vidconvert.database import init_db

    # Startup
    logger.info("Starting conversion service...")

    settings.ensure_directories()
    await init_db()
    logger.info("Database initialized")

    if not hasattr(app.state, "orchestrator"):
        build_services(app)

    orchestrator = app.state.orchestrator
    await orchestrator.recover_interrupted()
    await orchestrator.start()

    yield

    # Shutdown
    logger.info("Shutting down conversion service...")
    await orchestrator.stop()
    await app.state.broadcaster.close()
    clean_temp_dir()


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title="Video Conversion Service",
        description="Asynchronous video conversion with live progress reporting",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from vidconvert.routes import jobs, videos, websocket

    app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])
    app.include_router(videos.router, prefix="/api/videos", tags=["videos"])
    app.include_router(websocket.router, tags=["websocket"])

    @app.get("/api/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        queue_status = request.app.state.orchestrator.get_queue_status()

        return {
            "status": "healthy",
            "queue_size": queue_status["queue_size"],
            "active_jobs": queue_status["active_job_ids"],
            "subscribers": request.app.state.broadcaster.subscriber_count(),
        }

    return app


app = create_app()
