from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO


class StorageError(RuntimeError):
    pass


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> str:
        """Store `data` under `key`; returns the locator to persist."""
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Refusing key outside storage root: {key!r}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> str:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        return key

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        return p.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def delete(self, key: str) -> None:
        # Missing files are already gone; any other OSError propagates.
        self._path(key).unlink(missing_ok=True)


@dataclass(frozen=True)
class S3Storage(Storage):
    """S3-compatible remote backend (AWS S3, Cloudflare R2, DO Spaces)."""

    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    def _client(self):
        try:
            import boto3  # type: ignore
        except Exception as e:  # pragma: no cover
            raise StorageError("boto3 required for S3 storage. Install boto3.") from e
        endpoint_url = None
        if self.endpoint:
            endpoint_url = self.endpoint if "://" in self.endpoint else f"https://{self.endpoint}"
        return boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> str:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        return key

    def open(self, key: str) -> BinaryIO:
        obj = self._client().get_object(Bucket=self.bucket, Key=key)
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except Exception:
            return False

    def delete(self, key: str) -> None:
        self._client().delete_object(Bucket=self.bucket, Key=key)


def local_storage_from_config(config: dict) -> LocalStorage:
    root = (config.get("LOCAL_STORAGE_ROOT") or "").strip()
    return LocalStorage(root=Path(root) if root else Path(os.getcwd()) / "storage")


def remote_storage_from_config(config: dict) -> Storage | None:
    """
    The remote backend is optional. Returns None unless STORAGE_BACKEND=s3 and the
    bucket is configured; without it documents are kept locally only.
    """
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend != "s3" or not (config.get("S3_BUCKET") or "").strip():
        return None
    return S3Storage(
        endpoint=(config.get("S3_ENDPOINT") or "").strip(),
        region=(config.get("S3_REGION") or "auto").strip(),
        bucket=(config.get("S3_BUCKET") or "").strip(),
        access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
        secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
    )


def local_storage() -> LocalStorage:
    from flask import current_app

    return current_app.extensions["intake_local_storage"]


def remote_storage() -> Storage | None:
    from flask import current_app

    return current_app.extensions.get("intake_remote_storage")
