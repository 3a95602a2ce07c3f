"""
S3-compatible blob storage (MinIO in development) for image bytes.
"""

import re
import uuid

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from errors import StorageError
from logger import storage_logger

MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9.-]")


def sanitize_filename(filename: str) -> str:
    return UNSAFE_FILENAME_CHARS.sub("_", filename)


def generate_key(entity_type: str, entity_id: str, filename: str) -> str:
    """Object key of the form <entitytype>/<entityId>/<unique>-<filename>."""
    return f"{entity_type.lower()}/{entity_id}/{uuid.uuid4().hex}-{sanitize_filename(filename)}"


def _is_missing(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in MISSING_CODES


class BlobStore:
    def __init__(self, client, bucket: str, default_ttl: int = 3600):
        self.client = client
        self.bucket = bucket
        self.default_ttl = default_ttl

    @classmethod
    def from_settings(cls, settings) -> "BlobStore":
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint or None,
            region_name=settings.s3_region,
            aws_access_key_id=settings.s3_access_key or None,
            aws_secret_access_key=settings.s3_secret_key or None,
            config=Config(
                s3={"addressing_style": "path"},
                signature_version="s3v4",
                connect_timeout=5,
                read_timeout=30,
                retries={"max_attempts": 3},
            ),
        )
        return cls(client, settings.s3_bucket, settings.presigned_url_ttl)

    generate_key = staticmethod(generate_key)

    def ensure_bucket(self) -> None:
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return
        except ClientError as e:
            if not _is_missing(e):
                raise StorageError("Failed to check bucket", operation="ensure bucket", entity_id=self.bucket) from e
        except BotoCoreError as e:
            raise StorageError("Failed to check bucket", operation="ensure bucket", entity_id=self.bucket) from e
        try:
            self.client.create_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            raise StorageError("Failed to create bucket", operation="create bucket", entity_id=self.bucket) from e
        storage_logger.info(f"Created bucket {self.bucket}")

    def put(self, data: bytes, key: str, content_type: str) -> str:
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            storage_logger.error(f"PUT failed for {key}: {e}")
            raise StorageError("Failed to upload file", operation="upload file", entity_id=key) from e
        storage_logger.info(f"PUT {key} ({len(data)} bytes, {content_type})")
        return key

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                return False
            raise StorageError("Failed to check file", operation="head file", entity_id=key) from e
        except BotoCoreError as e:
            raise StorageError("Failed to check file", operation="head file", entity_id=key) from e
        return True

    def get_access_url(self, key: str, ttl_seconds: int = None) -> str:
        """Presigned GET url; fails when the key is absent."""
        if not self.exists(key):
            raise StorageError("File not found", operation="sign url", entity_id=key)
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl_seconds or self.default_ttl,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError("Failed to sign url", operation="sign url", entity_id=key) from e

    def delete(self, key: str) -> bool:
        """Delete key; returns False when it was already gone."""
        if not self.exists(key):
            storage_logger.warning(f"DELETE {key}: already absent")
            return False
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            storage_logger.error(f"DELETE failed for {key}: {e}")
            raise StorageError("Failed to delete file", operation="delete file", entity_id=key) from e
        storage_logger.warning(f"DELETE {key}")
        return True

    def ping(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            raise StorageError("Storage unavailable", operation="ping storage", entity_id=self.bucket) from e
        return True
