"""OCI distribution error codes and their HTTP representation."""

from __future__ import annotations

from enum import Enum
from http import HTTPStatus
from typing import Any


class OciErrorCode(str, Enum):
    BLOB_UNKNOWN = "BLOB_UNKNOWN"
    BLOB_UPLOAD_INVALID = "BLOB_UPLOAD_INVALID"
    BLOB_UPLOAD_UNKNOWN = "BLOB_UPLOAD_UNKNOWN"
    DIGEST_INVALID = "DIGEST_INVALID"
    MANIFEST_BLOB_UNKNOWN = "MANIFEST_BLOB_UNKNOWN"
    MANIFEST_INVALID = "MANIFEST_INVALID"
    MANIFEST_UNKNOWN = "MANIFEST_UNKNOWN"
    NAME_INVALID = "NAME_INVALID"
    NAME_UNKNOWN = "NAME_UNKNOWN"
    SIZE_INVALID = "SIZE_INVALID"
    UNAUTHORIZED = "UNAUTHORIZED"
    DENIED = "DENIED"
    UNSUPPORTED = "UNSUPPORTED"
    TOO_MANY_REQUESTS = "TOOMANYREQUESTS"
    # Not part of the distribution specification.
    INTERNAL_ERROR = "INTERNAL_ERROR"


_HTTP_STATUS: dict[OciErrorCode, HTTPStatus] = {
    OciErrorCode.BLOB_UNKNOWN: HTTPStatus.NOT_FOUND,
    OciErrorCode.BLOB_UPLOAD_INVALID: HTTPStatus.BAD_REQUEST,
    OciErrorCode.BLOB_UPLOAD_UNKNOWN: HTTPStatus.NOT_FOUND,
    OciErrorCode.DIGEST_INVALID: HTTPStatus.BAD_REQUEST,
    OciErrorCode.MANIFEST_BLOB_UNKNOWN: HTTPStatus.NOT_FOUND,
    OciErrorCode.MANIFEST_INVALID: HTTPStatus.BAD_REQUEST,
    OciErrorCode.MANIFEST_UNKNOWN: HTTPStatus.NOT_FOUND,
    OciErrorCode.NAME_INVALID: HTTPStatus.BAD_REQUEST,
    OciErrorCode.NAME_UNKNOWN: HTTPStatus.NOT_FOUND,
    OciErrorCode.SIZE_INVALID: HTTPStatus.BAD_REQUEST,
    OciErrorCode.UNAUTHORIZED: HTTPStatus.UNAUTHORIZED,
    OciErrorCode.DENIED: HTTPStatus.FORBIDDEN,
    OciErrorCode.UNSUPPORTED: HTTPStatus.BAD_REQUEST,
    OciErrorCode.TOO_MANY_REQUESTS: HTTPStatus.TOO_MANY_REQUESTS,
    OciErrorCode.INTERNAL_ERROR: HTTPStatus.INTERNAL_SERVER_ERROR,
}


def http_status(code: OciErrorCode | str) -> int:
    """HTTP status for an error code; unknown codes map to 400."""
    try:
        return int(_HTTP_STATUS[OciErrorCode(code)])
    except (ValueError, KeyError):
        return int(HTTPStatus.BAD_REQUEST)


def error_body(code: OciErrorCode | str, message: str) -> dict[str, Any]:
    """The JSON document returned for an error."""
    code_text = code.value if isinstance(code, OciErrorCode) else str(code)
    return {"errors": [{"code": code_text, "message": message}]}