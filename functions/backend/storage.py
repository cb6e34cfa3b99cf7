"""
Storage abstraction for S3-compatible blob storage and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import boto3
from botocore.config import Config


class StorageClient(Protocol):
    """Defines the operations the vignette pipeline needs from object storage."""

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "image/png"
    ) -> str:
        ...

    def public_url(self, path: str) -> str:
        ...

    def get_bytes(self, path: str) -> bytes:
        ...


def panorama_path(story_id: str) -> str:
    return f"vignettes/{story_id}/panorama.png"


def panel_path(story_id: str, index: int) -> str:
    return f"vignettes/{story_id}/panels/panel_{index}.png"


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: Optional[dict] = None
    content_types: Optional[dict] = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}
        if self.content_types is None:
            self.content_types = {}

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "image/png"
    ) -> str:
        # Same path overwrites, matching bucket semantics
        self.stored_objects[path] = bytes(data)
        self.content_types[path] = content_type
        return self.public_url(path)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def get_bytes(self, path: str) -> bytes:
        stored = self.stored_objects.get(path)
        if stored is None:
            raise FileNotFoundError(path)
        return stored

    def reset(self) -> None:
        self.stored_objects.clear()
        self.content_types.clear()


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (AWS S3, Supabase Storage S3 gateway, COS).
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: Optional[str] = None

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "standard"},
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "image/png"
    ) -> str:
        self._client.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=data,
            ContentType=content_type,
        )
        return self.public_url(path)

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{path}"
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket}/{path}"
        return f"https://{self.bucket}.s3.{self.region or 'us-east-1'}.amazonaws.com/{path}"

    def get_bytes(self, path: str) -> bytes:
        response = self._client.get_object(Bucket=self.bucket, Key=path)
        return response["Body"].read()
