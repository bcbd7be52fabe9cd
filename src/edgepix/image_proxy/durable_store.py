"""Durable object store tier: local disk or S3-compatible storage (e.g. R2).

Objects never expire. A key is only replaced by a later ``put`` for the same
key, and each ``put`` carries the full payload plus content type so readers
never observe a partial object.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

import boto3
from botocore.exceptions import ClientError
import structlog

from ..common.settings import ImageProxySettings
from .errors import DurableStoreError
from .models import StoredObject


LOGGER = structlog.get_logger("edgepix.image_proxy.durable_store")

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class DurableStore:
    async def get(self, key: str) -> Optional[StoredObject]:  # pragma: no cover - interface
        raise NotImplementedError

    async def put(self, key: str, body: bytes, content_type: Optional[str]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def status(self) -> dict[str, object]:  # pragma: no cover - interface
        raise NotImplementedError


class CircuitBreaker:
    def __init__(self, failure_threshold: int, reset_timeout: float):
        self._failure_threshold = max(1, failure_threshold)
        self._reset_timeout = max(0.0, reset_timeout)
        self._failure_count = 0
        self._opened_at: float | None = None

    def _maybe_reset(self) -> None:
        if self._opened_at is None:
            return
        if time.monotonic() - self._opened_at >= self._reset_timeout:
            self._opened_at = None
            self._failure_count = 0

    def allow_request(self) -> bool:
        self._maybe_reset()
        return self._opened_at is None

    def record_success(self) -> None:
        self._failure_count = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._failure_count >= self._failure_threshold:
            self._opened_at = time.monotonic()

    @property
    def is_open(self) -> bool:
        self._maybe_reset()
        return self._opened_at is not None


class LocalDurableStore(DurableStore):
    """Stores each object as one file: a JSON header line followed by the raw bytes."""

    def __init__(self, storage_path: Path):
        self._root = Path(storage_path).expanduser().resolve()

    def path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._root / digest[:2] / digest

    async def get(self, key: str) -> Optional[StoredObject]:
        path = self.path_for(key)
        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise DurableStoreError(f"failed to read {key}") from exc
        header, sep, body = raw.partition(b"\n")
        if not sep:
            raise DurableStoreError(f"corrupt object for {key}")
        try:
            metadata = json.loads(header)
        except ValueError as exc:
            raise DurableStoreError(f"corrupt object header for {key}") from exc
        if not isinstance(metadata, dict):
            raise DurableStoreError(f"corrupt object header for {key}")
        return StoredObject(body=body, content_type=metadata.get("content_type"))

    async def put(self, key: str, body: bytes, content_type: Optional[str]) -> None:
        path = self.path_for(key)
        header = json.dumps({"key": key, "content_type": content_type}).encode("utf-8")

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(header)
                    handle.write(b"\n")
                    handle.write(body)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise DurableStoreError(f"failed to write {key}") from exc

    def status(self) -> dict[str, object]:
        self._root.mkdir(parents=True, exist_ok=True)
        return {
            "backend": "local",
            "storage_path": str(self._root),
            "writable": os.access(self._root, os.W_OK),
        }


class S3DurableStore(DurableStore):
    def __init__(self, settings: ImageProxySettings):
        self._settings = settings
        session = boto3.session.Session()
        client_args: dict[str, Optional[str]] = {
            "endpoint_url": settings.s3_endpoint_url,
            "region_name": settings.s3_region,
        }
        self._client = session.client("s3", **{k: v for k, v in client_args.items() if v})
        self._bucket = settings.s3_bucket
        self._max_retries = max(0, settings.s3_max_retries)
        self._retry_base = max(0.0, settings.s3_retry_base_seconds)
        self._retry_max = max(self._retry_base, settings.s3_retry_max_seconds)
        self._breaker = CircuitBreaker(
            failure_threshold=max(1, settings.s3_circuit_breaker_failures),
            reset_timeout=max(0.0, settings.s3_circuit_breaker_reset_seconds),
        )

    async def get(self, key: str) -> Optional[StoredObject]:
        try:
            response = await self._call_with_retry(
                self._client.get_object,
                Bucket=self._bucket,
                Key=self._object_key(key),
            )
        except _NotFound:
            return None
        try:
            data = await asyncio.to_thread(response["Body"].read)
        except Exception as exc:  # noqa: BLE001 - streaming body errors vary by transport
            self._breaker.record_failure()
            raise DurableStoreError(f"failed to read body for {key}") from exc
        return StoredObject(body=data, content_type=response.get("ContentType"))

    async def put(self, key: str, body: bytes, content_type: Optional[str]) -> None:
        kwargs: dict[str, object] = {"Bucket": self._bucket, "Key": self._object_key(key), "Body": body}
        if content_type:
            kwargs["ContentType"] = content_type
        await self._call_with_retry(self._client.put_object, **kwargs)

    def status(self) -> dict[str, object]:
        return {
            "backend": "s3",
            "bucket": self._bucket,
            "endpoint": self._settings.s3_endpoint_url,
            "circuit_open": self._breaker.is_open,
        }

    @staticmethod
    def _object_key(key: str) -> str:
        return key.lstrip("/")

    def _is_not_found(self, exc: Exception) -> bool:
        no_such_key = getattr(self._client.exceptions, "NoSuchKey", None)
        if no_such_key is not None and isinstance(exc, no_such_key):
            return True
        if isinstance(exc, ClientError):
            return exc.response.get("Error", {}).get("Code", "") in NOT_FOUND_CODES
        return False

    async def _call_with_retry(self, func: Callable[..., object], **kwargs) -> dict:
        if not self._breaker.allow_request():
            raise DurableStoreError("Object store temporarily unavailable")

        attempt = 0
        while True:
            try:
                result = await asyncio.to_thread(func, **kwargs)
                self._breaker.record_success()
                return result  # type: ignore[return-value]
            except Exception as exc:  # noqa: BLE001
                if self._is_not_found(exc):
                    self._breaker.record_success()
                    raise _NotFound() from exc
                attempt += 1
                if attempt > self._max_retries:
                    self._breaker.record_failure()
                    raise DurableStoreError("Object store temporarily unavailable") from exc
                delay = min(self._retry_base * (2 ** (attempt - 1)), self._retry_max)
                LOGGER.debug("durable_store_retry", attempt=attempt, delay=delay, error=str(exc))
                if delay:
                    await asyncio.sleep(delay)


class _NotFound(Exception):
    pass


def build_durable_store(settings: ImageProxySettings) -> DurableStore:
    if settings.s3_bucket:
        if not settings.s3_endpoint_url and not settings.s3_region:
            raise RuntimeError("S3 configuration incomplete for image proxy")
        return S3DurableStore(settings)
    return LocalDurableStore(settings.storage_path)
