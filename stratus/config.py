"""Configuration read from environment variables."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Mapping

_UINT32_MAX = 2**32 - 1

# Config fields taken verbatim from the environment, empty when unset.
_PLAIN_FIELDS = (
    ("s3_endpoint", "S3_ENDPOINT"),
    ("s3_access_key_id", "S3_ACCESS_KEY_ID"),
    ("s3_secret_key", "S3_SECRET_ACCESS_KEY"),
)


@dataclass(frozen=True)
class Config:
    port: str = "3000"
    bucket_name: str = "zeabur-oci-registry"
    s3_endpoint: str = field(default_factory=str)
    s3_access_key_id: str = field(default_factory=str)
    s3_secret_key: str = field(default_factory=str)
    s3_use_ssl: bool = False
    s3_region: str = "us-east-1"
    s3_path_style: bool = False
    s3_multipart_upload_concurrency: int = 4


def _get(env: Mapping[str, str], key: str, fallback: str) -> str:
    return env.get(key) or fallback


def _get_uint(env: Mapping[str, str], key: str, fallback: int) -> int:
    value = env.get(key, "")
    if value and re.fullmatch(r"[0-9]+", value):
        n = int(value)
        if n <= _UINT32_MAX:
            return n
    return fallback


def load(environ: Mapping[str, str] | None = None) -> Config:
    """Build a ``Config`` from ``environ`` (the process environment by default)."""
    env = os.environ if environ is None else environ
    plain = {name: env.get(var, "") for name, var in _PLAIN_FIELDS}
    return Config(
        port=_get(env, "PORT", "3000"),
        bucket_name=_get(env, "S3_BUCKET_NAME", "zeabur-oci-registry"),
        s3_use_ssl=env.get("S3_USE_SSL") == "true",
        s3_region=_get(env, "S3_REGION", "us-east-1"),
        s3_path_style=env.get("S3_PATH_STYLE") == "true",
        s3_multipart_upload_concurrency=_get_uint(env, "S3_MULTIPART_UPLOAD_CONCURRENCY", 4),
        **plain,
    )