"""
Object storage for backups: S3-compatible buckets and an in-memory double.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

import boto3
from botocore.config import Config

from kepka.db import utcnow


@dataclass
class StoredObject:
    key: str
    size: int
    last_modified: datetime


class StorageClient(Protocol):
    """Defines the operations backups need from object storage."""

    def upload_json(self, path: str, payload: dict) -> None:
        ...

    def get_bytes(self, path: str) -> bytes:
        ...

    def list_objects(self, prefix: str) -> list[StoredObject]:
        ...

    def delete(self, path: str) -> None:
        ...


def _encode(payload: dict) -> bytes:
    return json.dumps(payload, default=str, indent=2).encode("utf-8")


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    stored_objects: dict[str, bytes] = field(default_factory=dict)
    modified: dict[str, datetime] = field(default_factory=dict)

    def upload_json(self, path: str, payload: dict) -> None:
        self.stored_objects[path] = _encode(payload)
        self.modified[path] = utcnow()

    def get_bytes(self, path: str) -> bytes:
        stored = self.stored_objects.get(path)
        if stored is None:
            raise FileNotFoundError(path)
        return stored

    def list_objects(self, prefix: str) -> list[StoredObject]:
        return [
            StoredObject(key=key, size=len(body), last_modified=self.modified[key])
            for key, body in sorted(self.stored_objects.items())
            if key.startswith(prefix)
        ]

    def delete(self, path: str) -> None:
        self.stored_objects.pop(path, None)
        self.modified.pop(path, None)


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (AWS S3, MinIO, COS, R2, ...).
    """

    bucket: str
    region: Optional[str] = None
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None

    def __post_init__(self):
        config = Config(signature_version="s3v4", retries={"max_attempts": 3})
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def upload_json(self, path: str, payload: dict) -> None:
        self._client.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=_encode(payload),
            ContentType="application/json",
        )

    def get_bytes(self, path: str) -> bytes:
        response = self._client.get_object(Bucket=self.bucket, Key=path)
        return response["Body"].read()

    def list_objects(self, prefix: str) -> list[StoredObject]:
        paginator = self._client.get_paginator("list_objects_v2")
        objects = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                objects.append(
                    StoredObject(
                        key=item["Key"],
                        size=item.get("Size", 0),
                        last_modified=item["LastModified"],
                    )
                )
        return objects

    def delete(self, path: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=path)
