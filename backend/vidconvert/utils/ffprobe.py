"""FFprobe wrapper for reading a video's duration."""
import asyncio
import json
import logging
from typing import Optional

logger = logging.getLogger(__name__)


async def get_duration(file_path: str, ffprobe_binary: str = "ffprobe") -> Optional[float]:
    """
    Get a video's duration in seconds using ffprobe.

    Args:
        file_path: Path to video file
        ffprobe_binary: ffprobe executable to run

    Returns:
        Duration in seconds, or None if it could not be determined
    """
    try:
        process = await asyncio.create_subprocess_exec(
            ffprobe_binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            file_path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            logger.error(f"FFprobe failed for {file_path}: {stderr.decode(errors='replace')}")
            return None

        data = json.loads(stdout.decode())
        duration = float(data.get("format", {}).get("duration", 0))
        return duration if duration > 0 else None

    except (OSError, ValueError) as e:
        logger.error(f"Error getting duration for {file_path}: {e}")
        return None
