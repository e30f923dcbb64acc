"""
S3-compatible object storage client for media (post images, avatars).

Objects are stored under a random name and served publicly from
`{s3_public_url}/{bucket}/{name}`; the API only ever hands out that URL.
boto3 is synchronous, so calls are pushed to a worker thread.
"""
import asyncio
import logging
from io import BytesIO
from typing import NamedTuple, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from murmur.config import settings
from murmur.errors import StorageError

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class MediaUpload(NamedTuple):
    data: bytes
    content_type: str


class ObjectStorage:
    def __init__(self, client, bucket: str, public_url: str) -> None:
        self._s3 = client
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")

    def public_url_for(self, name: str) -> str:
        return f"{self.public_url}/{self.bucket}/{name}"

    def ensure_bucket(self) -> None:
        """Create the media bucket if missing."""
        existing = [b["Name"] for b in self._s3.list_buckets().get("Buckets", [])]
        if self.bucket not in existing:
            self._s3.create_bucket(Bucket=self.bucket)
            logger.info("Created storage bucket '%s'", self.bucket)
        else:
            logger.info("Storage bucket '%s' already exists", self.bucket)

    async def upload(self, name: str, content_type: str, data: bytes) -> str:
        """Upload `data` as object `name` and return its public URL."""
        try:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=self.bucket,
                Key=name,
                Body=BytesIO(data),
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("Upload of %s failed: %s", name, exc)
            raise StorageError("Could not upload file.") from exc
        logger.debug("Uploaded media %s (%s, %d bytes)", name, content_type, len(data))
        return self.public_url_for(name)

    async def delete_if_possible(self, name: str) -> None:
        """Delete object `name`; an already missing object is not an error."""
        try:
            await asyncio.to_thread(self._s3.delete_object, Bucket=self.bucket, Key=name)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code not in _MISSING_CODES:
                raise
            logger.debug("Media %s already gone", name)


_storage: Optional[ObjectStorage] = None


def init_storage() -> None:
    """Create the S3 client and ensure the media bucket exists."""
    global _storage
    client = boto3.client(
        "s3",
        endpoint_url=settings.s3_endpoint,
        aws_access_key_id=settings.s3_access_key,
        aws_secret_access_key=settings.s3_secret_key,
        config=Config(signature_version="s3v4"),
        region_name=settings.s3_region,
    )
    _storage = ObjectStorage(client, settings.s3_bucket, settings.s3_public_url)
    _storage.ensure_bucket()


def get_storage() -> ObjectStorage:
    """FastAPI dependency returning the shared storage client."""
    if _storage is None:
        raise RuntimeError("Storage client not initialised — call init_storage() at startup")
    return _storage
