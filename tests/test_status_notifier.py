"""Tests for durable status notifications."""

import json

import boto3
import pytest
from botocore.stub import Stubber

from vidconvert.models.job import JobStatus
from vidconvert.services.status_notifier import StatusNotifier, build_message, create_sqs_client

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123456789012/video-status"


@pytest.fixture
def sqs():
    return boto3.client(
        "sqs",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


class TestBuildMessage:
    """Tests for status message content."""

    def test_start_message(self) -> None:
        """Start messages carry video, format and resolution."""
        message = build_message("j1", JobStatus.DOWNLOADING, {
            "video": "clip.mp4", "format": "mp4", "resolution": "720p",
        })
        assert message == {
            "jobId": "j1",
            "status": "Processing started",
            "video": "clip.mp4",
            "format": "mp4",
            "resolution": "720p",
        }

    def test_labels(self) -> None:
        """Terminal states use readable labels."""
        assert build_message("j1", JobStatus.COMPLETED)["status"] == "Processing complete"
        assert build_message("j1", JobStatus.FAILED)["status"] == "Processing error"

    def test_none_values_dropped(self) -> None:
        """Empty context fields are omitted."""
        message = build_message("j1", JobStatus.FAILED, {"video": "clip.mp4", "error": None})
        assert "error" not in message


class TestNotify:
    """Tests for StatusNotifier.notify()."""

    @pytest.mark.asyncio
    async def test_sends_json_body(self, sqs) -> None:
        """The message body is the JSON status message."""
        detail = {"video": "clip.mp4", "outputFilePath": "processed/alice/j1.mp4"}
        expected_body = json.dumps(build_message("j1", JobStatus.COMPLETED, detail))

        with Stubber(sqs) as stubber:
            stubber.add_response(
                "send_message",
                {"MessageId": "msg-1"},
                {"QueueUrl": QUEUE_URL, "MessageBody": expected_body},
            )
            notifier = StatusNotifier(QUEUE_URL, client=sqs)

            assert await notifier.notify("j1", JobStatus.COMPLETED, detail) is True
            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_queue_error_is_swallowed(self, sqs) -> None:
        """A rejected send returns False instead of raising."""
        with Stubber(sqs) as stubber:
            stubber.add_client_error("send_message", service_error_code="AccessDenied")
            notifier = StatusNotifier(QUEUE_URL, client=sqs)

            assert await notifier.notify("j1", JobStatus.FAILED, {"error": "boom"}) is False

    @pytest.mark.asyncio
    async def test_unconfigured_queue(self) -> None:
        """Without a queue URL nothing is sent."""
        notifier = StatusNotifier("", client=object())
        assert await notifier.notify("j1", JobStatus.DOWNLOADING) is False


class TestClientConfig:
    """Tests for the SQS client settings."""

    def test_short_timeouts_single_attempt(self) -> None:
        """An unreachable queue is given up on quickly."""
        config = create_sqs_client("us-east-1").meta.config

        assert config.connect_timeout == 3
        assert config.read_timeout == 5
        assert config.retries == {"max_attempts": 1}
