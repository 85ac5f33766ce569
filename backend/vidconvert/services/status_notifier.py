"""Durable job status notifications pushed to an SQS queue."""
import asyncio
import json
import logging
from typing import Any, Dict, Optional
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from vidconvert.errors import NotifierError
from vidconvert.models.job import JobStatus

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    JobStatus.QUEUED: "Queued",
    JobStatus.DOWNLOADING: "Processing started",
    JobStatus.CONVERTING: "Converting",
    JobStatus.COMPLETED: "Processing complete",
    JobStatus.FAILED: "Processing error",
}


def create_sqs_client(region_name: Optional[str], endpoint_url: Optional[str] = None):
    """
    SDK client for the status queue.

    Timeouts are short and there is a single attempt, so an unreachable
    queue costs seconds per message rather than minutes.
    """
    import boto3

    session = boto3.session.Session(region_name=region_name)
    return session.client(
        "sqs",
        endpoint_url=endpoint_url or None,
        config=BotoConfig(connect_timeout=3, read_timeout=5, retries={"max_attempts": 1}),
    )


def build_message(job_id: str, status: JobStatus, detail: Optional[Dict[str, Any]] = None) -> dict:
    """
    Build the queue message for a status transition.

    Args:
        job_id: Job the transition belongs to
        status: Status entered
        detail: Extra context (video, format, resolution, outputFilePath, error)

    Returns:
        JSON-serializable message body
    """
    message = {"jobId": job_id, "status": STATUS_LABELS[status]}
    if detail:
        message.update({k: v for k, v in detail.items() if v is not None})
    return message


class StatusNotifier:
    """Fire-and-forget publisher of job status messages."""

    def __init__(self, queue_url: str, client=None, region_name: Optional[str] = None):
        self.queue_url = queue_url
        self._client = client
        self._region_name = region_name

    @property
    def client(self):
        if self._client is None:
            self._client = create_sqs_client(self._region_name)
        return self._client

    async def notify(self, job_id: str, status: JobStatus, detail: Optional[Dict[str, Any]] = None) -> bool:
        """
        Push a status message to the queue.

        Failures are logged and reported through the return value only;
        the caller's job is never affected.

        Returns:
            True if the queue acknowledged the message
        """
        message = build_message(job_id, status, detail)

        if not self.queue_url:
            logger.warning(f"SQS_QUEUE_URL not set; dropping status message for job {job_id}")
            return False

        try:
            message_id = await asyncio.to_thread(self._send, message)
        except NotifierError as e:
            logger.error(f"Error sending status message for job {job_id}: {e}")
            return False

        logger.info(f"Status message {message_id} sent for job {job_id}: {message['status']}")
        return True

    def _send(self, message: dict) -> str:
        try:
            response = self.client.send_message(
                QueueUrl=self.queue_url,
                MessageBody=json.dumps(message),
            )
        except (BotoCoreError, ClientError) as e:
            raise NotifierError(str(e)) from e
        return response.get("MessageId", "")
