"""S3-compatible object storage client for raw audio.

Provides put/fetch/delete operations using boto3 against any S3-compatible
endpoint (Supabase Storage, R2, MinIO). boto3 is blocking, so each call runs
in a worker thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import logging
import os

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from voice_intake.storage.interface import BlobStore
from voice_intake.utils.errors import StorageError

logger = logging.getLogger(__name__)


class S3BlobStore(BlobStore):
    """BlobStore backed by an S3-compatible bucket.

    Reads configuration from environment variables:
        STORAGE_ENDPOINT, STORAGE_BUCKET, STORAGE_ACCESS_KEY_ID,
        STORAGE_SECRET_ACCESS_KEY, STORAGE_REGION
    """

    def __init__(
        self,
        endpoint_url: str | None = None,
        bucket: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region: str | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url or os.environ.get("STORAGE_ENDPOINT", "")
        self.bucket = bucket or os.environ.get("STORAGE_BUCKET", "voice-recordings")
        self.access_key_id = access_key_id or os.environ.get(
            "STORAGE_ACCESS_KEY_ID", ""
        )
        self.secret_access_key = secret_access_key or os.environ.get(
            "STORAGE_SECRET_ACCESS_KEY", ""
        )
        self.region = region or os.environ.get("STORAGE_REGION", "auto")

        if not self.endpoint_url:
            raise StorageError("STORAGE_ENDPOINT is required", operation="init")
        if not self.bucket:
            raise StorageError("STORAGE_BUCKET is required", operation="init")

        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            region_name=self.region,
        )

    def fetch_object(self, key: str) -> bytes:
        """Retrieve an object by key.

        Raises:
            StorageError: If the object cannot be retrieved.
        """
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code", "Unknown")
            raise StorageError(
                f"Failed to fetch object '{key}': {error_code}",
                operation="fetch_object",
            ) from exc
        except BotoCoreError as exc:
            raise StorageError(
                f"Failed to fetch object '{key}': {exc}",
                operation="fetch_object",
            ) from exc

    def put_object(self, key: str, data: bytes, content_type: str = "") -> None:
        """Store an object.

        Raises:
            StorageError: If the object cannot be stored.
        """
        try:
            kwargs: dict = {"Bucket": self.bucket, "Key": key, "Body": data}
            if content_type:
                kwargs["ContentType"] = content_type
            self._client.put_object(**kwargs)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code", "Unknown")
            raise StorageError(
                f"Failed to put object '{key}': {error_code}",
                operation="put_object",
            ) from exc
        except BotoCoreError as exc:
            raise StorageError(
                f"Failed to put object '{key}': {exc}",
                operation="put_object",
            ) from exc

    def delete_object(self, key: str) -> None:
        """Delete an object.

        Raises:
            StorageError: If the object cannot be deleted.
        """
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(
                f"Failed to delete object '{key}': {exc}",
                operation="delete_object",
            ) from exc

    async def put(self, key: str, data: bytes, content_type: str = "") -> str:
        await asyncio.to_thread(self.put_object, key, data, content_type)
        return key

    async def fetch(self, key: str) -> bytes:
        return await asyncio.to_thread(self.fetch_object, key)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self.delete_object, key)
