"""Transcode engine adapter around the ffmpeg binary."""

import asyncio
import logging
import os
import signal
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Deque, Optional, Union
from vidconvert.utils.ffprobe import get_duration

logger = logging.getLogger(__name__)


class TargetFormat(str, Enum):
    """Output container families."""

    MP4 = "mp4"
    AVI = "avi"
    MOV = "mov"
    MKV = "mkv"


class TargetResolution(str, Enum):
    """Output resolutions."""

    P1080 = "1080p"
    P720 = "720p"
    P480 = "480p"


SCALE_FILTERS = {
    TargetResolution.P1080: "1920:1080",
    TargetResolution.P720: "1280:720",
    TargetResolution.P480: "640:480",
}

# ffmpeg muxer names for -f
FORMAT_MUXERS = {
    TargetFormat.MP4: "mp4",
    TargetFormat.AVI: "avi",
    TargetFormat.MOV: "mov",
    TargetFormat.MKV: "matroska",
}


def normalize_resolution(resolution: Optional[str]) -> TargetResolution:
    """Map a requested resolution onto a known one; anything unrecognized is 1080p."""
    try:
        return TargetResolution(resolution)
    except ValueError:
        return TargetResolution.P1080


def scale_for_resolution(resolution: Optional[str]) -> str:
    """
    Get the ffmpeg scale filter argument for a resolution.

    Args:
        resolution: Requested resolution, e.g. "720p"

    Returns:
        "W:H" string for the scale filter
    """
    return SCALE_FILTERS[normalize_resolution(resolution)]


@dataclass(frozen=True)
class ProgressTick:
    """Percent-complete signal from the encoder."""

    percent: int


@dataclass(frozen=True)
class Done:
    """Conversion finished; the output file exists at output_path."""

    output_path: str


@dataclass(frozen=True)
class Failed:
    """Conversion failed; no further events follow."""

    error_detail: str


EngineEvent = Union[ProgressTick, Done, Failed]


class TranscodeEngine:
    """Runs ffmpeg and exposes its progress as an async event stream."""

    STDERR_TAIL_LINES = 20

    def __init__(
        self,
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
        terminate_grace: float = 5.0,
    ):
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.terminate_grace = terminate_grace

    def build_command(
        self,
        input_path: str,
        output_path: str,
        target_format: TargetFormat,
        target_resolution: Optional[str],
    ) -> list[str]:
        """
        Build the ffmpeg argument list for one conversion.

        Progress is written as key=value lines to stdout via -progress.
        """
        return [
            self.ffmpeg_binary,
            "-hide_banner",
            "-y",
            "-i", input_path,
            "-vf", f"scale={scale_for_resolution(target_resolution)}",
            "-f", FORMAT_MUXERS[target_format],
            "-progress", "pipe:1",
            "-nostats",
            output_path,
        ]

    async def convert(
        self,
        input_path: Union[str, Path],
        output_path: Union[str, Path],
        target_format: str,
        target_resolution: Optional[str],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[EngineEvent]:
        """
        Convert a local file, yielding progress ticks and one terminal event.

        Ticks are strictly increasing integers in 0-100. The stream always
        ends with exactly one Done or Failed.

        Args:
            input_path: Local source file
            output_path: Where to write the converted file
            target_format: One of the TargetFormat values
            target_resolution: Requested resolution (unknown values mean 1080p)
            cancel_event: Set to stop the encoder between ticks
        """
        input_path = str(input_path)
        output_path = str(output_path)

        if Path(input_path).resolve() == Path(output_path).resolve():
            yield Failed("Output path must differ from input path")
            return

        try:
            fmt = TargetFormat(target_format)
        except ValueError:
            yield Failed(f"Unsupported target format: {target_format}")
            return

        duration = await get_duration(input_path, self.ffprobe_binary) or 0.0
        if duration <= 0:
            logger.warning(f"Unknown duration for {input_path}; progress ticks disabled")

        cmd = self.build_command(input_path, output_path, fmt, target_resolution)
        logger.info(f"Starting encoder: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Could not start encoder {self.ffmpeg_binary}: {e}")
            yield Failed(f"Could not start encoder: {e}")
            return

        stderr_tail: Deque[str] = deque(maxlen=self.STDERR_TAIL_LINES)
        stderr_task = asyncio.create_task(self._drain(process.stderr, stderr_tail))
        last_percent = -1
        finished = False

        try:
            assert process.stdout is not None
            async for line in process.stdout:
                key, _, value = line.decode(errors="replace").strip().partition("=")

                if key in ("out_time_us", "out_time_ms") and duration > 0:
                    percent = self._percent(value, duration)
                    if percent is not None and percent > last_percent:
                        last_percent = percent
                        yield ProgressTick(percent)

                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Cancelling encoder for {input_path}")
                    await self._terminate(process)
                    await stderr_task
                    finished = True
                    yield Failed("Cancelled")
                    return

            returncode = await process.wait()
            await stderr_task
            finished = True
        finally:
            if not finished:
                # Consumer stopped iterating early
                await self._terminate(process)
                stderr_task.cancel()

        if returncode != 0:
            tail = "\n".join(stderr_tail)
            logger.error(f"Encoder failed with exit code {returncode} for {input_path}")
            yield Failed(f"Encoder exited with code {returncode}" + (f": {tail}" if tail else ""))
            return

        if not Path(output_path).exists():
            yield Failed("Encoder finished without producing an output file")
            return

        if last_percent < 100:
            yield ProgressTick(100)
        yield Done(output_path)

    @staticmethod
    def _percent(value: str, duration: float) -> Optional[int]:
        """Convert an out_time_us value to a rounded percentage of duration."""
        try:
            seconds = int(value) / 1_000_000
        except ValueError:
            # "N/A" before the first frame
            return None
        return max(0, min(100, int(seconds / duration * 100 + 0.5)))

    @staticmethod
    async def _drain(stream: Optional[asyncio.StreamReader], tail: Deque[str]):
        if stream is None:
            return
        async for line in stream:
            text = line.decode(errors="replace").strip()
            if text:
                tail.append(text)

    async def _terminate(self, process: asyncio.subprocess.Process):
        """Stop the encoder process group, escalating to SIGKILL."""
        if process.returncode is not None:
            return
        try:
            os.killpg(os.getpgid(process.pid), signal.SIGTERM)
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=self.terminate_grace)
        except asyncio.TimeoutError:
            try:
                os.killpg(os.getpgid(process.pid), signal.SIGKILL)
            except ProcessLookupError:
                pass  # Process already gone
            await process.wait()
