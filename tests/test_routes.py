"""Tests for the HTTP and websocket endpoints."""

import json

import pytest
from fastapi.testclient import TestClient

from conftest import FakeObjectStore
from vidconvert.errors import ValidationError
from vidconvert.main import create_app
from vidconvert.models.job import ConversionJob
from vidconvert.models.video import Video
from vidconvert.services.progress_broadcaster import ProgressBroadcaster


def make_job(job_id: str, status: str = "Converting") -> ConversionJob:
    return ConversionJob(
        job_id=job_id,
        source_key="videos/alice/clip.mp4",
        owner_id="alice",
        target_format="mp4",
        target_resolution="720p",
        status=status,
        progress_percent=40,
        history=json.dumps(["Queued", "Downloading", "Converting"]),
    )


class StubOrchestrator:
    """Orchestrator stand-in holding jobs in a dict."""

    def __init__(self):
        self.jobs: dict[str, ConversionJob] = {}
        self.submitted: list[tuple] = []
        self.cancelled: list[str] = []

    async def submit(self, owner_id, source_key, target_format, target_resolution):
        if not (source_key and target_format and target_resolution):
            raise ValidationError("Missing required fields: sourceKey")
        self.submitted.append((owner_id, source_key, target_format, target_resolution))
        return "job-1"

    async def status(self, job_id):
        return self.jobs.get(job_id)

    async def list_jobs(self, owner_id=None):
        return [j for j in self.jobs.values() if owner_id in (None, j.owner_id)]

    async def cancel(self, job_id):
        self.cancelled.append(job_id)
        return True

    def get_queue_status(self):
        return {"queue_size": 0, "active_job_ids": [], "running": True, "max_concurrent_jobs": 2}


class StubCatalog:
    """Catalog stand-in holding videos in a dict."""

    def __init__(self):
        self.videos: dict[str, Video] = {}

    async def put(self, owner_id, object_key, filename, format, resolution=None, source_job_id=None):
        video = Video(
            video_id=f"v{len(self.videos) + 1}",
            owner_id=owner_id,
            object_key=object_key,
            filename=filename,
            format=format,
            resolution=resolution,
            source_job_id=source_job_id,
        )
        self.videos[video.video_id] = video
        return video

    async def query(self, owner_id):
        return [v for v in self.videos.values() if v.owner_id == owner_id]

    async def get(self, video_id):
        return self.videos.get(video_id)

    async def delete(self, video_id):
        return self.videos.pop(video_id, None) is not None


class RecordingBroadcaster(ProgressBroadcaster):
    """Broadcaster that greets each subscriber so the test can see it attach."""

    def __init__(self):
        super().__init__()
        self.unsubscribed = []

    async def subscribe(self, transport, job_id=None):
        handle = await super().subscribe(transport, job_id)
        await transport.send_json({"jobId": job_id, "progress": 0})
        return handle

    async def unsubscribe(self, handle):
        self.unsubscribed.append(handle)
        await super().unsubscribe(handle)


@pytest.fixture
def services():
    return {
        "orchestrator": StubOrchestrator(),
        "catalog": StubCatalog(),
        "object_store": FakeObjectStore(),
        "broadcaster": RecordingBroadcaster(),
    }


@pytest.fixture
def client(services):
    """Client for an app whose lifespan is not run."""
    app = create_app()
    for name, service in services.items():
        setattr(app.state, name, service)
    return TestClient(app)


class TestJobRoutes:
    """Tests for /api/jobs."""

    def test_submit(self, client, services) -> None:
        """A complete submission returns the job ID."""
        response = client.post("/api/jobs", json={
            "sourceKey": "videos/alice/clip.mp4",
            "ownerId": "alice",
            "targetFormat": "mp4",
            "targetResolution": "720p",
        })

        assert response.status_code == 200
        assert response.json() == {"jobId": "job-1"}
        assert services["orchestrator"].submitted == [("alice", "videos/alice/clip.mp4", "mp4", "720p")]

    def test_submit_missing_fields(self, client, services) -> None:
        """Missing fields are a 400 and no job is created."""
        response = client.post("/api/jobs", json={"targetFormat": "mp4", "targetResolution": "720p"})

        assert response.status_code == 400
        assert "sourceKey" in response.json()["detail"]
        assert services["orchestrator"].submitted == []

    def test_get_job(self, client, services) -> None:
        """Snapshots are returned with camelCase keys."""
        services["orchestrator"].jobs["j1"] = make_job("j1")

        response = client.get("/api/jobs/j1")

        assert response.status_code == 200
        body = response.json()
        assert body["jobId"] == "j1"
        assert body["status"] == "Converting"
        assert body["progressPercent"] == 40
        assert body["statusHistory"] == ["Queued", "Downloading", "Converting"]
        assert body["errorDetail"] is None

    def test_get_unknown_job(self, client) -> None:
        """Unknown jobs are a 404."""
        assert client.get("/api/jobs/nope").status_code == 404

    def test_list_jobs_by_owner(self, client, services) -> None:
        """Jobs can be listed per owner."""
        services["orchestrator"].jobs["j1"] = make_job("j1")

        assert client.get("/api/jobs", params={"ownerId": "alice"}).json()["total"] == 1
        assert client.get("/api/jobs", params={"ownerId": "bob"}).json()["total"] == 0

    def test_cancel_running_job(self, client, services) -> None:
        """Running jobs can be cancelled."""
        services["orchestrator"].jobs["j1"] = make_job("j1")

        response = client.delete("/api/jobs/j1")

        assert response.status_code == 200
        assert services["orchestrator"].cancelled == ["j1"]

    def test_cancel_finished_job(self, client, services) -> None:
        """Finished jobs cannot be cancelled."""
        services["orchestrator"].jobs["j1"] = make_job("j1", status="Completed")

        assert client.delete("/api/jobs/j1").status_code == 409
        assert client.delete("/api/jobs/nope").status_code == 404


class TestVideoRoutes:
    """Tests for /api/videos."""

    def test_upload(self, client, services) -> None:
        """Uploads land in the object store and the catalog."""
        response = client.post(
            "/api/videos",
            data={"ownerId": "alice"},
            files={"file": ("holiday.mp4", b"video-bytes", "video/mp4")},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["ownerId"] == "alice"
        assert body["objectKey"].startswith("videos/alice/")
        assert body["objectKey"].endswith(".mp4")
        assert services["object_store"].objects[body["objectKey"]] == b"video-bytes"

    def test_upload_rejects_non_video(self, client, services) -> None:
        """Only video extensions are accepted."""
        response = client.post(
            "/api/videos",
            data={"ownerId": "alice"},
            files={"file": ("notes.txt", b"text", "text/plain")},
        )

        assert response.status_code == 400
        assert services["object_store"].objects == {}

    def test_list_and_presign(self, client, services) -> None:
        """Catalogued videos can be listed and fetched by URL."""
        services["catalog"].videos["v1"] = Video(
            video_id="v1", owner_id="alice", object_key="videos/alice/a.mp4",
            filename="a.mp4", format="mp4",
        )

        listing = client.get("/api/videos", params={"ownerId": "alice"}).json()
        url = client.get("/api/videos/v1/url").json()

        assert listing["total"] == 1
        assert listing["videos"][0]["videoId"] == "v1"
        assert url["url"].startswith("https://bucket.example/videos/alice/a.mp4")
        assert client.get("/api/videos/v2/url").status_code == 404

    def test_delete(self, client, services) -> None:
        """Deleting removes the object and the record."""
        services["object_store"].objects["videos/alice/a.mp4"] = b"x"
        services["catalog"].videos["v1"] = Video(
            video_id="v1", owner_id="alice", object_key="videos/alice/a.mp4",
            filename="a.mp4", format="mp4",
        )

        assert client.delete("/api/videos/v1").status_code == 200
        assert services["object_store"].objects == {}
        assert services["catalog"].videos == {}


class TestProgressSocket:
    """Tests for the progress websocket."""

    def test_subscribes_with_job_filter(self, client, services) -> None:
        """Connecting subscribes for the requested job; closing unsubscribes."""
        with client.websocket_connect("/ws/progress?jobId=j1") as ws:
            assert ws.receive_json() == {"jobId": "j1", "progress": 0}

        broadcaster = services["broadcaster"]
        assert len(broadcaster.unsubscribed) == 1
        assert broadcaster.unsubscribed[0].job_id == "j1"


def test_health(client) -> None:
    """Health reports queue and subscriber state."""
    body = client.get("/api/health").json()
    assert body["status"] == "healthy"
    assert body["queue_size"] == 0
