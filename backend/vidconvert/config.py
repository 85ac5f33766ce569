"""Configuration management for the conversion service."""

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)


def clean_directory(path: Path, when: str):
    """
    Remove everything inside a directory, keeping the directory itself.

    Args:
        path: Directory to empty; a missing directory is ignored
        when: Label for log messages, e.g. "startup"
    """
    if not path.exists():
        return
    try:
        for item in path.iterdir():
            if item.is_file():
                item.unlink()
                logger.info(f"Cleaned temp file on {when}: {item.name}")
            elif item.is_dir():
                shutil.rmtree(item)
                logger.info(f"Cleaned temp directory on {when}: {item.name}")
        logger.info(f"Temp directory cleaned on {when}")
    except OSError as e:
        logger.error(f"Error cleaning temp directory on {when}: {e}")


class Settings:
    """Application settings loaded from environment variables."""

    # Paths
    TEMP_DIR: str = os.getenv("TEMP_DIR", "/app/temp")
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "/app/data/app.db")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL", f"sqlite+aiosqlite:///{DATABASE_PATH}"
    )

    # Encoder binaries
    FFMPEG_BINARY: str = os.getenv("FFMPEG_BINARY", "ffmpeg")
    FFPROBE_BINARY: str = os.getenv("FFPROBE_BINARY", "ffprobe")

    # Worker pool
    MAX_CONCURRENT_JOBS: int = int(os.getenv("MAX_CONCURRENT_JOBS", "2"))

    # AWS
    AWS_REGION: str = os.getenv("AWS_REGION") or os.getenv(
        "AWS_DEFAULT_REGION", "us-east-1"
    )
    S3_BUCKET_NAME: str = os.getenv("S3_BUCKET_NAME", "")
    S3_ENDPOINT_URL: str = os.getenv("S3_ENDPOINT_URL", "")
    SQS_QUEUE_URL: str = os.getenv("SQS_QUEUE_URL", "")
    PRESIGNED_URL_EXPIRES_SECS: int = int(
        os.getenv("PRESIGNED_URL_EXPIRES_SECS", "3600")
    )

    # Object key layout
    UPLOAD_PREFIX: str = os.getenv("UPLOAD_PREFIX", "videos")
    OUTPUT_PREFIX: str = os.getenv("OUTPUT_PREFIX", "processed")

    # Uploads
    MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "1000"))

    # Progress channel
    BROADCAST_SEND_TIMEOUT: float = float(os.getenv("BROADCAST_SEND_TIMEOUT", "5.0"))

    # CORS
    CORS_ORIGINS: list = os.getenv("CORS_ORIGINS", "*").split(",")

    @classmethod
    def ensure_directories(cls):
        """Ensure required directories exist and clean temp directory."""
        # Orphaned files from previous runs
        temp_path = Path(cls.TEMP_DIR)
        clean_directory(temp_path, "startup")

        temp_path.mkdir(parents=True, exist_ok=True)
        if cls.DATABASE_URL.startswith("sqlite"):
            Path(cls.DATABASE_PATH).parent.mkdir(parents=True, exist_ok=True)


settings = Settings()
