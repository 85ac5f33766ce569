"""Shared test fixtures for the conversion service."""

import asyncio
import os
import shutil
import stat
import tempfile
from pathlib import Path

# Keep settings away from /app before anything imports vidconvert.config
_SETTINGS_DIR = tempfile.mkdtemp(prefix="vidconvert-settings-")
os.environ.setdefault("TEMP_DIR", os.path.join(_SETTINGS_DIR, "temp"))
os.environ.setdefault("DATABASE_PATH", os.path.join(_SETTINGS_DIR, "app.db"))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from vidconvert.database import init_db  # noqa: E402
from vidconvert.errors import DeliveryError, SourceFetchError  # noqa: E402
from vidconvert.services.transcode_engine import Done, Failed, ProgressTick  # noqa: E402


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test isolation."""
    dir_path = tempfile.mkdtemp()
    yield Path(dir_path)
    shutil.rmtree(dir_path, ignore_errors=True)


@pytest.fixture
def work_dir(temp_dir: Path) -> Path:
    """Directory the orchestrator uses for job temp files."""
    path = temp_dir / "work"
    path.mkdir()
    return path


@pytest_asyncio.fixture
async def session_factory(temp_dir: Path):
    """Session factory bound to a fresh sqlite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{temp_dir / 'test.db'}")
    await init_db(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


def write_script(path: Path, body: str) -> Path:
    """Write an executable shell script."""
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class FakeObjectStore:
    """In-memory object store."""

    def __init__(self, objects=None):
        self.objects: dict[str, bytes] = dict(objects or {})
        self.downloads: list[str] = []
        self.fail_uploads = False

    async def download(self, key: str, dest: Path):
        self.downloads.append(key)
        if key not in self.objects:
            raise SourceFetchError(f"Could not fetch {key}: NoSuchKey")
        Path(dest).write_bytes(self.objects[key])

    async def upload(self, path: Path, key: str):
        if self.fail_uploads:
            raise DeliveryError(f"Could not upload {key}: AccessDenied")
        self.objects[key] = Path(path).read_bytes()

    async def put(self, key: str, fileobj, content_type=None):
        self.objects[key] = fileobj.read()

    async def delete(self, key: str):
        self.objects.pop(key, None)

    def presign_url(self, key: str, expires: int) -> str:
        return f"https://bucket.example/{key}?expires={expires}"


class RecordingNotifier:
    """Notifier that records every status message."""

    def __init__(self):
        self.calls: list[tuple] = []

    async def notify(self, job_id, status, detail=None) -> bool:
        self.calls.append((job_id, status, detail))
        return True

    @property
    def statuses(self) -> list:
        return [status for _, status, _ in self.calls]


class FakeEngine:
    """Engine that replays scripted progress and writes the output file.

    If a gate is given, the engine pauses after the first tick until the
    gate is set; ``paused`` is set when it gets there. With ``step`` it
    pauses after every tick and clears the gate each time it resumes.
    """

    def __init__(self, ticks=(10, 50, 100), fail_with=None, gate=None, step=False):
        self.ticks = list(ticks)
        self.fail_with = fail_with
        self.gate = gate
        self.step = step
        self.paused = asyncio.Event()
        self.calls: list[tuple] = []
        self.inputs_seen: list[bool] = []

    async def convert(self, input_path, output_path, target_format, target_resolution, cancel_event=None):
        self.calls.append((str(input_path), str(output_path), target_format, target_resolution))
        self.inputs_seen.append(Path(input_path).exists())

        for n, percent in enumerate(self.ticks):
            yield ProgressTick(percent)
            if self.gate is not None and (n == 0 or self.step):
                self.paused.set()
                await self.gate.wait()
                if self.step:
                    self.gate.clear()
            if cancel_event is not None and cancel_event.is_set():
                yield Failed("Cancelled")
                return

        if self.fail_with:
            yield Failed(self.fail_with)
            return

        Path(output_path).write_bytes(f"{target_format}@{target_resolution}".encode())
        yield Done(str(output_path))


class FakeTransport:
    """Records messages; can be made to fail or stall."""

    def __init__(self, fail=False, delay=0.0):
        self.messages: list[dict] = []
        self.fail = fail
        self.delay = delay
        self.received = asyncio.Event()

    async def send_json(self, data):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("connection closed")
        self.messages.append(data)
        self.received.set()

    @property
    def progress(self) -> list:
        return [m["progress"] for m in self.messages]
