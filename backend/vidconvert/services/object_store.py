"""S3-compatible object store client."""
import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import BinaryIO, Optional
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from vidconvert.errors import DeliveryError, SourceFetchError

logger = logging.getLogger(__name__)


def guess_content_type(path: str, default: str = "application/octet-stream") -> str:
    ctype, _ = mimetypes.guess_type(path)
    if not ctype:
        if path.lower().endswith(".mkv"):
            return "video/x-matroska"
        return default
    return ctype


def create_s3_client(region_name: str, endpoint_url: Optional[str] = None):
    """
    SDK client for server-side upload/download.

    Args:
        region_name: AWS region
        endpoint_url: Custom endpoint, e.g. a MinIO server (optional)
    """
    import boto3

    session = boto3.session.Session(region_name=region_name)
    return session.client(
        "s3",
        endpoint_url=endpoint_url or None,
        config=BotoConfig(signature_version="s3v4"),
    )


class ObjectStore:
    """Blob storage keyed by path. Blocking SDK calls run in a worker thread."""

    def __init__(self, bucket: str, client):
        self.bucket = bucket
        self.client = client

    async def download(self, key: str, dest: Path):
        """
        Copy an object to a local file.

        Args:
            key: Object key
            dest: Local path to write

        Raises:
            SourceFetchError: If the object cannot be read
        """
        try:
            await asyncio.to_thread(self.client.download_file, self.bucket, key, str(dest))
        except (BotoCoreError, ClientError, OSError) as e:
            # Don't leave a partial download behind
            Path(dest).unlink(missing_ok=True)
            raise SourceFetchError(f"Could not fetch {key}: {e}") from e

        logger.info(f"Downloaded s3://{self.bucket}/{key} -> {dest}")

    async def upload(self, path: Path, key: str):
        """
        Upload a local file.

        Raises:
            DeliveryError: If the upload fails
        """
        extra_args = {"ContentType": guess_content_type(str(path))}
        try:
            await asyncio.to_thread(
                self.client.upload_file, str(path), self.bucket, key, ExtraArgs=extra_args
            )
        except (BotoCoreError, ClientError, OSError) as e:
            raise DeliveryError(f"Could not upload {key}: {e}") from e

        logger.info(f"Uploaded {path} -> s3://{self.bucket}/{key}")

    async def put(self, key: str, fileobj: BinaryIO, content_type: Optional[str] = None):
        """
        Store a stream of bytes under key.

        Raises:
            DeliveryError: If the write fails
        """
        extra_args = {"ContentType": content_type or guess_content_type(key)}
        try:
            await asyncio.to_thread(
                self.client.upload_fileobj, fileobj, self.bucket, key, ExtraArgs=extra_args
            )
        except (BotoCoreError, ClientError) as e:
            raise DeliveryError(f"Could not store {key}: {e}") from e

        logger.info(f"Stored s3://{self.bucket}/{key}")

    async def delete(self, key: str):
        await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        logger.info(f"Deleted s3://{self.bucket}/{key}")

    def presign_url(self, key: str, expires: int) -> str:
        """Generate a presigned GET URL that downloads as an attachment."""
        return self.client.generate_presigned_url(
            ClientMethod="get_object",
            Params={
                "Bucket": self.bucket,
                "Key": key,
                "ResponseContentDisposition": f'attachment; filename="{Path(key).name}"',
            },
            ExpiresIn=expires,
        )
