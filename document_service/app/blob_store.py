from typing import Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import InvalidLocator, PayloadTooLarge, StorageUnavailable
from .logger import get_logger

logger = get_logger(__name__)

S3_SCHEME = "s3://"


def build_locator(bucket: str, key: str) -> str:
    return f"{S3_SCHEME}{bucket}/{key}"


def parse_locator(locator: str) -> Tuple[str, str]:
    """Split "s3://bucket/key" into (bucket, key)."""
    if not isinstance(locator, str) or not locator.startswith(S3_SCHEME):
        raise InvalidLocator(f"Not an S3 locator: {locator!r}")
    bucket, _, key = locator[len(S3_SCHEME):].partition("/")
    if not bucket or not key:
        raise InvalidLocator(f"Malformed S3 locator: {locator!r}")
    return bucket, key


class S3BlobStore:
    """Durable storage for the original upload bytes."""

    def __init__(self, s3_client, bucket: str, max_bytes: int):
        self._s3 = s3_client
        self.bucket = bucket
        self.max_bytes = max_bytes

    @classmethod
    def from_settings(cls, settings) -> "S3BlobStore":
        s3 = boto3.client("s3", **settings.boto3_kwargs())
        return cls(s3, settings.s3_bucket, settings.max_upload_bytes)

    @staticmethod
    def object_key(owner_id: str, document_id: str, filename: str) -> str:
        return f"users/{owner_id}/{document_id}_{filename}"

    def ensure_bucket(self) -> None:
        try:
            self._s3.head_bucket(Bucket=self.bucket)
        except ClientError:
            logger.info(f"Creating S3 bucket: {self.bucket}")
            self._s3.create_bucket(Bucket=self.bucket)

    def put(self, owner_id: str, document_id: str, filename: str, content: bytes, mime_type: str) -> str:
        """Store the bytes and return their locator. No retries."""
        if len(content) > self.max_bytes:
            raise PayloadTooLarge(len(content), self.max_bytes)

        key = self.object_key(owner_id, document_id, filename)
        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=mime_type or "application/octet-stream",
                CacheControl="no-store",
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise StorageUnavailable(f"Failed to upload to S3: {e}") from e
        return build_locator(self.bucket, key)

    def get(self, locator: str) -> bytes:
        bucket, key = parse_locator(locator)
        try:
            resp = self._s3.get_object(Bucket=bucket, Key=key)
            return resp["Body"].read()
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 download failed for {locator}: {e}")
            raise StorageUnavailable(f"Failed to read from S3: {e}") from e
