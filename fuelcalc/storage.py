"""
Storage abstraction for S3-compatible object stores (MinIO) and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import boto3
from botocore.config import Config


def object_name_from_reference(reference: str) -> str:
    """References are public URLs; the object name is the last path segment."""
    return reference.rstrip("/").rsplit("/", 1)[-1]


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload_bytes(self, name: str, data: bytes, content_type: str) -> str:
        ...

    def delete(self, reference: str) -> None:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/images"
    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def upload_bytes(self, name: str, data: bytes, content_type: str) -> str:
        self.stored_objects[name] = data
        return f"{self.base_url}/{name}"

    def delete(self, reference: str) -> None:
        self.stored_objects.pop(object_name_from_reference(reference), None)


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client, used against MinIO in deployments.
    """

    bucket: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    region: str = "us-east-1"
    public_base_url: Optional[str] = None

    def __post_init__(self):
        # MinIO serves buckets path-style.
        config = Config(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )
        if not self.public_base_url:
            self.public_base_url = f"{self.endpoint.rstrip('/')}/{self.bucket}"

    def upload_bytes(self, name: str, data: bytes, content_type: str) -> str:
        self._client.put_object(
            Bucket=self.bucket,
            Key=name,
            Body=data,
            ContentType=content_type or "application/octet-stream",
        )
        return f"{self.public_base_url.rstrip('/')}/{name}"

    def delete(self, reference: str) -> None:
        name = object_name_from_reference(reference)
        if not name:
            return
        self._client.delete_object(Bucket=self.bucket, Key=name)
