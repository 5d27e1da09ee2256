"""S3-compatible storage over HTTP with AWS Signature Version 4."""

from __future__ import annotations

import hashlib
import hmac
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Callable
from urllib.parse import quote

import requests

from .config import Config
from .storage import ObjectInfo, ObjectNotFoundError, PutObjectOptions, Storage

_UNSIGNED = "UNSIGNED-PAYLOAD"
_ALGORITHM = "AWS4-HMAC-SHA256"


class MissingConfigError(Exception):
    """Raised when required S3 settings are absent."""

    def __init__(self, message: str = "missing required configuration") -> None:
        super().__init__(message)


class S3Error(Exception):
    """An error response from the S3 service."""

    def __init__(self, status_code: int, code: str = "", message: str = "") -> None:
        self.status_code = status_code
        self.code = code
        super().__init__(f"s3 error {status_code} {code}: {message}".rstrip(": "))

    @property
    def not_found(self) -> bool:
        return self.status_code == 404 or self.code in ("NoSuchKey", "NotFound")


def _uri_encode(value: str) -> str:
    return quote(value, safe="-_.~")


def _hmac(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode(), hashlib.sha256).digest()


def _error_from_response(resp: requests.Response) -> S3Error:
    code = message = ""
    if resp.content:
        try:
            root = ET.fromstring(resp.content)
            code = root.findtext("Code") or ""
            message = root.findtext("Message") or ""
        except ET.ParseError:
            message = resp.text[:200]
    return S3Error(resp.status_code, code, message)


class S3Storage(Storage):
    """Storage backed by an S3-compatible object store."""

    def __init__(
        self,
        endpoint: str,
        access_key_id: str,
        secret_key: str,
        region: str,
        *,
        use_ssl: bool = True,
        path_style: bool = False,
        multipart_upload_concurrency: int = 4,
    ) -> None:
        if not endpoint or "/" in endpoint:
            raise ValueError(f"invalid endpoint {endpoint!r}")
        self.endpoint = endpoint
        self.access_key_id = access_key_id
        self._secret_key = secret_key
        self.region = region or "us-east-1"
        self.use_ssl = use_ssl
        self.path_style = path_style
        self.multipart_upload_concurrency = multipart_upload_concurrency
        self.session = requests.Session()
        self._clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)

    def _location(self, bucket: str, key: str) -> tuple[str, str, str]:
        scheme = "https" if self.use_ssl else "http"
        encoded_key = "/".join(_uri_encode(part) for part in key.split("/"))
        if self.path_style:
            host = self.endpoint
            path = f"/{_uri_encode(bucket)}/{encoded_key}"
        else:
            host = f"{bucket}.{self.endpoint}"
            path = f"/{encoded_key}"
        return scheme, host, path

    def _signing_key(self, date: str) -> bytes:
        k = _hmac(("AWS4" + self._secret_key).encode(), date)
        k = _hmac(k, self.region)
        k = _hmac(k, "s3")
        return _hmac(k, "aws4_request")

    def _signature(
        self,
        method: str,
        path: str,
        query: dict[str, str],
        headers: dict[str, str],
        payload_hash: str,
        amz_date: str,
    ) -> tuple[str, str]:
        date = amz_date[:8]
        scope = f"{date}/{self.region}/s3/aws4_request"
        canonical_query = "&".join(
            f"{_uri_encode(k)}={_uri_encode(v)}" for k, v in sorted(query.items())
        )
        names = sorted(h.lower() for h in headers)
        lowered = {k.lower(): v.strip() for k, v in headers.items()}
        canonical_headers = "".join(f"{n}:{lowered[n]}\n" for n in names)
        signed_headers = ";".join(names)
        canonical = "\n".join(
            [method, path, canonical_query, canonical_headers, signed_headers, payload_hash]
        )
        to_sign = "\n".join(
            [_ALGORITHM, amz_date, scope, hashlib.sha256(canonical.encode()).hexdigest()]
        )
        sig = hmac.new(self._signing_key(date), to_sign.encode(), hashlib.sha256).hexdigest()
        return sig, scope

    def _request(
        self,
        method: str,
        bucket: str,
        key: str,
        *,
        extra_headers: dict[str, str] | None = None,
        data=None,
        stream: bool = False,
    ) -> requests.Response:
        scheme, host, path = self._location(bucket, key)
        amz_date = self._clock().strftime("%Y%m%dT%H%M%SZ")
        headers = {
            "Host": host,
            "x-amz-content-sha256": _UNSIGNED,
            "x-amz-date": amz_date,
        }
        headers.update(extra_headers or {})
        signed = {k: v for k, v in headers.items() if k.lower() in ("host", "x-amz-content-sha256", "x-amz-date")}
        sig, scope = self._signature(method, path, {}, signed, _UNSIGNED, amz_date)
        signed_names = ";".join(sorted(k.lower() for k in signed))
        headers["Authorization"] = (
            f"{_ALGORITHM} Credential={self.access_key_id}/{scope}, "
            f"SignedHeaders={signed_names}, Signature={sig}"
        )
        return self.session.request(
            method, f"{scheme}://{host}{path}", headers=headers, data=data, stream=stream
        )

    @staticmethod
    def _info(resp: requests.Response) -> ObjectInfo:
        return ObjectInfo(
            content_length=int(resp.headers.get("Content-Length", "0") or 0),
            etag=resp.headers.get("ETag", ""),
        )

    def _raise(self, resp: requests.Response) -> None:
        err = _error_from_response(resp)
        if err.not_found:
            raise ObjectNotFoundError() from err
        raise err

    def stat_object(self, bucket: str, key: str) -> ObjectInfo:
        resp = self._request("HEAD", bucket, key)
        if not resp.ok:
            self._raise(resp)
        return self._info(resp)

    def get_object(self, bucket: str, key: str) -> tuple[BinaryIO, ObjectInfo]:
        resp = self._request("GET", bucket, key, stream=True)
        if not resp.ok:
            try:
                self._raise(resp)
            finally:
                resp.close()
        resp.raw.decode_content = True
        return resp.raw, self._info(resp)

    def presign_get_object(self, bucket: str, key: str, expiry: timedelta) -> str:
        scheme, host, path = self._location(bucket, key)
        now = self._clock()
        amz_date = now.strftime("%Y%m%dT%H%M%SZ")
        scope = f"{amz_date[:8]}/{self.region}/s3/aws4_request"
        query = {
            "X-Amz-Algorithm": _ALGORITHM,
            "X-Amz-Credential": f"{self.access_key_id}/{scope}",
            "X-Amz-Date": amz_date,
            "X-Amz-Expires": str(int(expiry.total_seconds())),
            "X-Amz-SignedHeaders": "host",
        }
        sig, _ = self._signature("GET", path, query, {"host": host}, _UNSIGNED, amz_date)
        query["X-Amz-Signature"] = sig
        qs = "&".join(f"{_uri_encode(k)}={_uri_encode(v)}" for k, v in sorted(query.items()))
        return f"{scheme}://{host}{path}?{qs}"

    def put_object(
        self, bucket: str, key: str, body: BinaryIO, size: int, opts: PutObjectOptions
    ) -> None:
        data = body.read(size) if size >= 0 else body.read()
        headers = {"Content-Length": str(len(data))}
        if opts.content_type:
            headers["Content-Type"] = opts.content_type
        if opts.cache_control:
            headers["Cache-Control"] = opts.cache_control
        resp = self._request("PUT", bucket, key, extra_headers=headers, data=data)
        if not resp.ok:
            raise _error_from_response(resp)


def storage_from_config(config: Config) -> S3Storage:
    """Create an ``S3Storage``; raise ``MissingConfigError`` without credentials or endpoint."""
    if not config.s3_access_key_id or not config.s3_endpoint or not config.s3_secret_key:
        raise MissingConfigError()
    return S3Storage(
        config.s3_endpoint,
        config.s3_access_key_id,
        config.s3_secret_key,
        config.s3_region,
        use_ssl=config.s3_use_ssl,
        path_style=config.s3_path_style,
        multipart_upload_concurrency=config.s3_multipart_upload_concurrency,
    )