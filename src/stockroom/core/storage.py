from __future__ import annotations

import os
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from stockroom.core.config import settings
from stockroom.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)

_RETRYABLE_S3_CODES = {
    "RequestCanceled",
    "RequestTimeout",
    "Throttling",
    "ThrottlingException",
    "SlowDown",
    "InternalError",
    "ServiceUnavailable",
}


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredObject:
    url: str
    key: str
    byte_size: int


def build_object_key(*, folder: str, name: str) -> str:
    safe_name = re.sub(r"[^A-Za-z0-9._-]+", "_", name.replace("\\", "/").split("/")[-1])
    return f"{folder.strip('/')}/{uuid.uuid4()}-{safe_name or 'upload.bin'}"


class BlobStore:
    scheme: str = ""

    def put(self, *, body: bytes, name: str, folder: str) -> StoredObject:
        key = build_object_key(folder=folder, name=name)
        self._write(key=key, body=body)
        return StoredObject(url=self.url_for(key), key=key, byte_size=len(body))

    def get(self, *, url: str) -> bytes:
        return self._read(key=self.key_for(url))

    def delete(self, *, url: str) -> None:
        self._remove(key=self.key_for(url))

    def url_for(self, key: str) -> str:  # pragma: no cover
        raise NotImplementedError

    def key_for(self, url: str) -> str:  # pragma: no cover
        raise NotImplementedError

    def _write(self, *, key: str, body: bytes) -> None:  # pragma: no cover
        raise NotImplementedError

    def _read(self, *, key: str) -> bytes:  # pragma: no cover
        raise NotImplementedError

    def _remove(self, *, key: str) -> None:  # pragma: no cover
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    scheme = "local"

    def __init__(self, root: Path):
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def url_for(self, key: str) -> str:
        return f"local://{key}"

    def key_for(self, url: str) -> str:
        if not url.startswith("local://"):
            raise StorageError(f"Not a local blob url: {url}")
        key = url[len("local://") :]
        if ".." in Path(key).parts:
            raise StorageError(f"Invalid blob key: {key}")
        return key

    def _write(self, *, key: str, body: bytes) -> None:
        start = time.monotonic()
        path = self._root / key
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        except Exception:
            log_exception(
                logger, "storage.put.failure", backend="local", storage_key=key, byte_size=len(body)
            )
            raise
        log_event(
            logger,
            "storage.put.success",
            backend="local",
            storage_key=key,
            byte_size=len(body),
            duration_ms=monotonic_ms(start),
        )

    def _read(self, *, key: str) -> bytes:
        path = self._root / key
        if not path.exists():
            log_event(logger, "storage.get.failure", backend="local", storage_key=key)
            raise StorageError(f"Object not found: {key}")
        return path.read_bytes()

    def _remove(self, *, key: str) -> None:
        path = self._root / key
        if path.exists():
            path.unlink()


class S3BlobStore(BlobStore):
    scheme = "s3"

    def __init__(self) -> None:
        region = settings.s3_region
        if not region or region.lower() == "auto":
            region = "us-east-1"
        session = boto3.session.Session(
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            region_name=region,
        )
        config = Config(
            s3={"addressing_style": "virtual"},
            retries={"max_attempts": 3, "mode": "adaptive"},
            connect_timeout=30,
            read_timeout=60,
        )
        self._client = session.client(
            "s3", endpoint_url=settings.s3_endpoint_url or None, config=config
        )
        self._bucket = settings.s3_bucket

    def url_for(self, key: str) -> str:
        return f"s3://{self._bucket}/{key}"

    def key_for(self, url: str) -> str:
        prefix = f"s3://{self._bucket}/"
        if not url.startswith(prefix):
            raise StorageError(f"Blob url outside bucket {self._bucket}: {url}")
        return url[len(prefix) :]

    def _retry_delay_s(self, attempt: int) -> float:
        # attempt=1 => 0.25s, attempt=2 => 0.5s, capped at 3s
        return min(3.0, 0.25 * (2 ** (attempt - 1)))

    def _should_retry_error(self, error: Exception) -> bool:
        if isinstance(error, ClientError):
            code = (error.response.get("Error") or {}).get("Code")
            return code in _RETRYABLE_S3_CODES
        return isinstance(error, BotoCoreError)

    def _write(self, *, key: str, body: bytes) -> None:
        start = time.monotonic()
        max_attempts = 5
        for attempt in range(1, max_attempts + 1):
            try:
                self._client.put_object(Bucket=self._bucket, Key=key, Body=body)
                break
            except Exception as e:  # noqa: BLE001
                if attempt < max_attempts and self._should_retry_error(e):
                    delay_s = self._retry_delay_s(attempt)
                    log_event(
                        logger,
                        "storage.put.retry",
                        backend="s3",
                        storage_key=key,
                        attempt=attempt,
                        delay_s=delay_s,
                        error_type=type(e).__name__,
                    )
                    time.sleep(delay_s)
                    continue
                log_exception(
                    logger, "storage.put.failure", backend="s3", storage_key=key, attempt=attempt
                )
                raise StorageError(f"Upload failed: {key}") from e
        log_event(
            logger,
            "storage.put.success",
            backend="s3",
            storage_key=key,
            byte_size=len(body),
            duration_ms=monotonic_ms(start),
        )

    def _read(self, *, key: str) -> bytes:
        start = time.monotonic()
        try:
            resp = self._client.get_object(Bucket=self._bucket, Key=key)
            return resp["Body"].read()
        except (BotoCoreError, ClientError) as e:
            log_exception(
                logger,
                "storage.get.failure",
                backend="s3",
                storage_key=key,
                duration_ms=monotonic_ms(start),
            )
            raise StorageError(f"Object not readable: {key}") from e

    def _remove(self, *, key: str) -> None:
        self._client.delete_object(Bucket=self._bucket, Key=key)

    def head_bucket(self) -> None:
        self._client.head_bucket(Bucket=self._bucket)


_storage: BlobStore | None = None


def _local_root() -> Path:
    root = settings.local_storage_path
    if not root.is_absolute():
        root = Path(os.getcwd()) / root
    return root


def get_storage() -> BlobStore:
    global _storage  # noqa: PLW0603
    if _storage is not None:
        return _storage
    if settings.storage_backend == "s3":
        _storage = S3BlobStore()
    else:
        _storage = LocalBlobStore(_local_root())
    return _storage


def diagnose_storage(*, write_test: bool = False) -> dict[str, Any]:
    """
    Connectivity check for the configured blob store.

    Never returns credentials. With write_test=True a small object is written,
    read back and deleted.
    """
    result: dict[str, Any] = {"ok": True, "backend": settings.storage_backend}
    start = time.monotonic()
    try:
        store = get_storage()
        if isinstance(store, S3BlobStore):
            store.head_bucket()
            result["bucket"] = settings.s3_bucket
        else:
            result["root"] = str(_local_root())
        if write_test:
            body = b"ok"
            stored = store.put(body=body, name="healthz.txt", folder="diagnostics")
            out = store.get(url=stored.url)
            store.delete(url=stored.url)
            result["write_test"] = {"ok": out == body, "url": stored.url}
            result["ok"] = out == body
    except Exception as e:  # noqa: BLE001
        result["ok"] = False
        result["error_type"] = type(e).__name__
        result["error"] = str(e)
    result["duration_ms"] = monotonic_ms(start)
    return result
