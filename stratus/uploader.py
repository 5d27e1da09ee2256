"""Retrying, optionally concurrent uploads of reusable payloads to storage."""

from __future__ import annotations

import io
import json
import os
import posixpath
import sys
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Callable, Optional, TextIO

from .registry import OciManifestIndex
from .storage import PutObjectOptions, Storage

CACHE_CONTROL_PUBLIC_IMMUTABLE = "public, max-age=31536000, immutable"
CACHE_CONTROL_NO_CACHE = "no-cache"

DEFAULT_MAX_UPLOAD_ATTEMPTS = 3


class UploadError(Exception):
    """Raised when an upload cannot be completed."""


class UploadObject(ABC):
    """A payload that can be opened again for each upload attempt."""

    @abstractmethod
    def open(self) -> BinaryIO:
        """Return a fresh binary stream over the payload."""

    @property
    @abstractmethod
    def size(self) -> int:
        """Payload size in bytes."""

    @property
    @abstractmethod
    def content_type(self) -> str:
        """MIME type sent with the upload."""

    @property
    @abstractmethod
    def label(self) -> str:
        """Short name used in log lines."""

    @abstractmethod
    def cache_control_for(self, key: str) -> str:
        """Cache-Control value for the object stored under ``key``."""


@dataclass(frozen=True)
class SkipResult:
    skip: bool = False
    reason: str = ""


SkipCheck = Callable[[Storage, str, str], SkipResult]


@dataclass
class UploadTask:
    key: str
    object: UploadObject
    skip_check: Optional[SkipCheck] = None


class FSUploadObject(UploadObject):
    """An upload backed by a file below ``root``; ``file_path`` uses ``/`` separators."""

    def __init__(
        self,
        root: str | os.PathLike[str],
        file_path: str,
        content_type: str = "",
        cache_control: str = "",
        label: str = "",
    ) -> None:
        self._path = Path(root).joinpath(*file_path.split("/"))
        self._size = self._path.stat().st_size
        self._content_type = content_type or "application/octet-stream"
        self._cache_control = cache_control or CACHE_CONTROL_NO_CACHE
        self._label = label or posixpath.basename(file_path)

    def open(self) -> BinaryIO:
        return open(self._path, "rb")

    @property
    def size(self) -> int:
        return self._size

    @property
    def content_type(self) -> str:
        return self._content_type

    @property
    def label(self) -> str:
        return self._label

    def cache_control_for(self, key: str) -> str:
        return self._cache_control


class JSONUploadObject(UploadObject):
    """An upload holding the compact JSON encoding of ``obj``."""

    def __init__(self, obj: Any, content_type: str = "", label: str = "") -> None:
        if isinstance(obj, OciManifestIndex):
            self._data = obj.to_json()
        else:
            try:
                self._data = json.dumps(obj, separators=(",", ":"), sort_keys=True).encode()
            except (TypeError, ValueError) as exc:
                raise ValueError(f"marshal upload json: {exc}") from exc
        self._content_type = content_type or "application/json"
        self._label = label

    @property
    def data(self) -> bytes:
        return self._data

    def open(self) -> BinaryIO:
        return io.BytesIO(self._data)

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def content_type(self) -> str:
        return self._content_type

    @property
    def label(self) -> str:
        return self._label

    def cache_control_for(self, key: str) -> str:
        return CACHE_CONTROL_NO_CACHE


def _log(output: TextIO, message: str) -> None:
    output.write(message + "\n")


def upload_with_retry(
    storage: Storage,
    bucket: str,
    key: str,
    obj: Optional[UploadObject],
    output: Optional[TextIO] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Upload ``obj`` under ``key``, retrying up to three attempts with growing pauses."""
    out = sys.stderr if output is None else output
    if obj is None:
        raise UploadError(f"nil upload object for key {key}")
    label = obj.label or posixpath.basename(key)
    size = obj.size

    last_error: Optional[Exception] = None
    for attempt in range(1, DEFAULT_MAX_UPLOAD_ATTEMPTS + 1):
        try:
            reader = obj.open()
        except Exception as exc:
            raise UploadError(f"{label} | open object: {exc}") from exc

        _log(
            out,
            f"🚀 {label} | Uploading (size={size} bytes, "
            f"attempt {attempt}/{DEFAULT_MAX_UPLOAD_ATTEMPTS})",
        )
        try:
            with reader:
                storage.put_object(
                    bucket,
                    key,
                    reader,
                    size,
                    PutObjectOptions(
                        content_type=obj.content_type,
                        cache_control=obj.cache_control_for(key),
                    ),
                )
        except Exception as exc:
            last_error = exc
            _log(out, f"❌ {label} | Upload failed on attempt {attempt}: {exc}")
            if attempt < DEFAULT_MAX_UPLOAD_ATTEMPTS:
                sleep(attempt)
            continue

        _log(out, f"✅ {label} | Upload complete ({size} bytes)")
        return

    raise UploadError(
        f"upload failed after {DEFAULT_MAX_UPLOAD_ATTEMPTS} attempts: {last_error}"
    ) from last_error


def upload_tasks_concurrently(
    storage: Storage,
    bucket: str,
    tasks: list[UploadTask],
    concurrency: int,
    output: Optional[TextIO] = None,
) -> None:
    """Run ``tasks`` with at most ``concurrency`` in flight; the first failure is raised."""
    out = sys.stderr if output is None else output
    workers = concurrency if concurrency > 0 else 1
    if not tasks:
        _log(out, "📭 No upload tasks supplied")
        return

    lock = threading.Lock()
    counts = {"uploaded": 0, "skipped": 0}
    stop = threading.Event()

    def run(task: UploadTask) -> None:
        if stop.is_set():
            return
        label = task.object.label or posixpath.basename(task.key)
        if task.skip_check is not None:
            try:
                result = task.skip_check(storage, bucket, task.key)
            except Exception as exc:
                raise UploadError(f"{label} | skip check: {exc}") from exc
            if result.skip:
                reason = result.reason or "skip predicate satisfied"
                with lock:
                    counts["skipped"] += 1
                _log(out, f"⏭️ {label} | {reason}")
                return
        upload_with_retry(storage, bucket, task.key, task.object, out)
        with lock:
            counts["uploaded"] += 1

    first_error: Optional[BaseException] = None
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(run, task) for task in tasks]
        for future in as_completed(futures):
            error = future.exception()
            if error is not None and first_error is None:
                first_error = error
                stop.set()
                for pending in futures:
                    pending.cancel()

    if first_error is not None:
        raise first_error

    _log(
        out,
        f"📊 Upload summary: {counts['uploaded']} uploaded, {counts['skipped']} skipped",
    )