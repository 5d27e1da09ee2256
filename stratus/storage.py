"""Storage interfaces shared by the registry server and the pusher."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import BinaryIO


class ObjectNotFoundError(Exception):
    """Raised when a requested object does not exist."""

    def __init__(self, message: str = "object not found") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class ObjectInfo:
    content_length: int = 0
    etag: str = ""


@dataclass(frozen=True)
class PutObjectOptions:
    content_type: str = ""
    cache_control: str = ""


class ReadStorage(ABC):
    @abstractmethod
    def stat_object(self, bucket: str, key: str) -> ObjectInfo:
        """Return metadata; raise ``ObjectNotFoundError`` if missing."""

    @abstractmethod
    def get_object(self, bucket: str, key: str) -> tuple[BinaryIO, ObjectInfo]:
        """Return an open stream and its metadata; raise ``ObjectNotFoundError`` if missing."""

    @abstractmethod
    def presign_get_object(self, bucket: str, key: str, expiry: timedelta) -> str:
        """Return a time-limited URL for downloading the object."""


class WriteStorage(ABC):
    @abstractmethod
    def put_object(
        self, bucket: str, key: str, body: BinaryIO, size: int, opts: PutObjectOptions
    ) -> None:
        """Store ``size`` bytes read from ``body`` under ``key``."""


class Storage(ReadStorage, WriteStorage, ABC):
    """Storage that can both read and write."""