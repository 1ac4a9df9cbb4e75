"""
Object store for certificates and tutor resources, on any S3 compatible service.

All objects live in settings.storage_bucket under two namespaces:
- certificates/<user_id>/<file>
- resources/<path>
Keys are validated before they reach the service so a key can never
escape its namespace.
"""
from functools import lru_cache
from pathlib import PurePosixPath
from typing import BinaryIO, List

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from tutormarket.config import get_settings
from tutormarket.errors import NotFound, RemoteCallFailed, ValidationFailed
from tutormarket.logger import logger

BUCKETS = ("certificates", "resources")

# Characters never allowed in a single key segment
DANGEROUS_CHARS = ['\\', '<', '>', ':', '"', '|', '?', '*', '\x00']

MISSING_OBJECT_CODES = ("404", "NoSuchKey", "NotFound")


def get_s3_client():
    """S3 client for the configured endpoint. Credentials fall back to the AWS chain when unset."""
    settings = get_settings()
    return boto3.client(
        "s3",
        endpoint_url=settings.storage_endpoint_url,
        region_name=settings.storage_region,
        aws_access_key_id=settings.storage_access_key_id,
        aws_secret_access_key=settings.storage_secret_access_key,
        config=Config(signature_version="s3v4"),
    )


class ObjectStore:
    def __init__(self, client=None, bucket_name: str = None):
        self.client = client or get_s3_client()
        self.bucket_name = bucket_name or get_settings().storage_bucket

    def _object_key(self, bucket: str, key: str) -> str:
        if bucket not in BUCKETS:
            raise ValidationFailed(f"Unknown bucket {bucket}")
        if not key or key.startswith("/"):
            raise ValidationFailed("Invalid object key", details={"key": key})
        parts = key.split("/")
        for part in parts:
            if part in ("", ".", "..") or any(char in part for char in DANGEROUS_CHARS):
                logger.warning(f"Rejected object key {key!r} in bucket {bucket}")
                raise ValidationFailed("Invalid object key", details={"key": key})
        return str(PurePosixPath(bucket, *parts))

    def upload(self, bucket: str, key: str, data: BinaryIO, max_bytes: int = None, content_type: str = None) -> int:
        """Store data under bucket/key, replacing any previous object. Returns the size written."""
        max_bytes = max_bytes or get_settings().max_upload_bytes
        object_key = self._object_key(bucket, key)
        # One byte over the limit is enough to reject the upload
        body = data.read(max_bytes + 1)
        if len(body) > max_bytes:
            raise ValidationFailed("File is too large", details={"max_bytes": max_bytes})
        extra = {"ContentType": content_type} if content_type else {}
        try:
            self.client.put_object(Bucket=self.bucket_name, Key=object_key, Body=body, **extra)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Could not store {object_key}: {str(e)}")
            raise RemoteCallFailed("File storage is unavailable")
        logger.info(f"Stored {object_key} ({len(body)} bytes)")
        return len(body)

    def read(self, bucket: str, key: str) -> bytes:
        """Content of an existing object."""
        object_key = self._object_key(bucket, key)
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=object_key)
            return response["Body"].read()
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in MISSING_OBJECT_CODES:
                raise NotFound("File not found", details={"bucket": bucket, "key": key})
            logger.error(f"Could not read {object_key}: {str(e)}")
            raise RemoteCallFailed("File storage is unavailable")
        except BotoCoreError as e:
            logger.error(f"Could not read {object_key}: {str(e)}")
            raise RemoteCallFailed("File storage is unavailable")

    def download_url(self, bucket: str, key: str, expires_in: int = None) -> str:
        """Presigned GET url, so clients can fetch large files from the store directly."""
        object_key = self._object_key(bucket, key)
        expires_in = expires_in or get_settings().storage_url_expire_seconds
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": object_key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Could not sign a url for {object_key}: {str(e)}")
            raise RemoteCallFailed("File storage is unavailable")

    def list(self, bucket: str, prefix: str = "") -> List[str]:
        """Keys in a bucket, optionally below a folder prefix, sorted."""
        root = self._object_key(bucket, prefix) + "/" if prefix else bucket + "/"
        keys = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=root):
                keys.extend(item["Key"][len(bucket) + 1:] for item in page.get("Contents", []))
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Could not list {root}: {str(e)}")
            raise RemoteCallFailed("File storage is unavailable")
        return sorted(keys)

    def delete(self, bucket: str, key: str) -> bool:
        """Remove an object. Returns False when it did not exist."""
        object_key = self._object_key(bucket, key)
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=object_key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in MISSING_OBJECT_CODES:
                return False
            logger.error(f"Could not delete {object_key}: {str(e)}")
            raise RemoteCallFailed("File storage is unavailable")
        except BotoCoreError as e:
            logger.error(f"Could not delete {object_key}: {str(e)}")
            raise RemoteCallFailed("File storage is unavailable")
        try:
            self.client.delete_object(Bucket=self.bucket_name, Key=object_key)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Could not delete {object_key}: {str(e)}")
            raise RemoteCallFailed("File storage is unavailable")
        logger.info(f"Deleted {object_key}")
        return True


def certificate_key(user_id: str, file_name: str) -> str:
    return f"{user_id}/{file_name}"


@lru_cache()
def get_object_store() -> ObjectStore:
    """Dependency returning the configured store, one client per process. Tests override it."""
    return ObjectStore()
