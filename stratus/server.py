"""Read-only OCI distribution API serving manifests and blobs from storage."""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import BinaryIO, Iterator, Optional

from flask import Flask, Response, request

from .oci_errors import OciErrorCode, error_body, http_status
from .registry import OciManifest, OciManifestIndex, blob_path, index_path
from .storage import ObjectNotFoundError, ReadStorage

SHA256_PREFIX = "sha256:"
PRESIGN_EXPIRY = timedelta(minutes=30)
MANIFEST_CONTENT_TYPE = "application/vnd.oci.image.manifest.v1+json"
_RATE_LIMIT_MARKER = "10058"
_CHUNK_SIZE = 64 * 1024

logger = logging.getLogger("stratus.server")


def _error(code: OciErrorCode, message: str) -> Response:
    return Response(
        json.dumps(error_body(code, message)),
        status=http_status(code),
        mimetype="application/json",
    )


def _chunks(body: BinaryIO) -> Iterator[bytes]:
    while chunk := body.read(_CHUNK_SIZE):
        yield chunk


class Handler:
    """Request handlers bound to a storage backend and bucket."""

    def __init__(self, storage: ReadStorage, bucket_name: str) -> None:
        self.storage = storage
        self.bucket_name = bucket_name

    def index(self) -> Response:
        return Response(json.dumps({"success": True}), mimetype="application/json")

    def get_blob(self, namespace: str, repository: str, digest: str) -> Response:
        if not digest.startswith(SHA256_PREFIX):
            return _error(OciErrorCode.DIGEST_INVALID, "invalid digest: must start with sha256:")

        key = blob_path(f"{namespace}/{repository}", digest[len(SHA256_PREFIX):])
        try:
            info = self.storage.stat_object(self.bucket_name, key)
        except ObjectNotFoundError:
            return _error(OciErrorCode.BLOB_UNKNOWN, "blob unknown to registry")
        except Exception as exc:
            return _error(OciErrorCode.INTERNAL_ERROR, str(exc))

        if info.content_length == 0:
            return _error(
                OciErrorCode.BLOB_UNKNOWN, "blob unknown to registry (empty or missing)"
            )

        headers = {"Docker-Content-Digest": digest}
        if info.etag:
            headers["ETag"] = info.etag

        if request.method == "HEAD":
            response = Response(status=200, headers=headers)
            response.headers["Content-Length"] = str(info.content_length)
            return response

        try:
            url = self.storage.presign_get_object(self.bucket_name, key, PRESIGN_EXPIRY)
        except Exception as exc:
            return _error(OciErrorCode.INTERNAL_ERROR, str(exc))

        response = Response(status=302, headers=headers)
        response.headers["Location"] = url
        return response

    def _storage_failure(self, exc: Exception, target: str, unknown_message: str) -> Response:
        if isinstance(exc, ObjectNotFoundError):
            return _error(OciErrorCode.MANIFEST_UNKNOWN, unknown_message)
        if _RATE_LIMIT_MARKER in str(exc):
            return _error(
                OciErrorCode.TOO_MANY_REQUESTS,
                f"too many requests to object {json.dumps(target)}",
            )
        return _error(OciErrorCode.INTERNAL_ERROR, str(exc))

    def _read_index(self, repo: str) -> Optional[OciManifestIndex]:
        stream, _ = self.storage.get_object(self.bucket_name, index_path(repo))
        try:
            return OciManifestIndex.from_json(stream.read())
        except (ValueError, OSError):
            return None
        finally:
            stream.close()

    def get_manifest(self, namespace: str, repository: str, reference: str) -> Response:
        repo = f"{namespace}/{repository}"
        target = f"{repo}:{reference}"

        try:
            index = self._read_index(repo)
        except Exception as exc:
            return self._storage_failure(exc, target, "manifest unknown to registry")

        if index is None or index.schema_version != 2:
            return _error(
                OciErrorCode.MANIFEST_UNKNOWN, "manifest unknown to registry (invalid index)"
            )

        found: Optional[OciManifest] = next(
            (m for m in index.manifests if m.ref_name == reference or m.digest == reference),
            None,
        )
        if found is None:
            return _error(
                OciErrorCode.MANIFEST_UNKNOWN, "manifest unknown to registry (no such tag)"
            )

        manifest_key = blob_path(repo, found.digest[len(SHA256_PREFIX):])
        try:
            body, info = self.storage.get_object(self.bucket_name, manifest_key)
        except Exception as exc:
            return self._storage_failure(
                exc, target, "manifest unknown to registry (no manifest body)"
            )

        if_none_match = request.headers.get("If-None-Match", "")
        if if_none_match and info.etag and if_none_match == info.etag:
            body.close()
            return Response(
                status=304,
                headers={"Docker-Content-Digest": found.digest, "ETag": info.etag},
            )

        headers = {
            "Docker-Content-Digest": found.digest,
            "Docker-Content-Length": str(found.size),
        }
        if info.etag:
            headers["ETag"] = info.etag

        if request.method == "HEAD":
            body.close()
            response = Response(status=200, headers=headers, content_type=MANIFEST_CONTENT_TYPE)
        else:
            response = Response(
                _chunks(body), status=200, headers=headers, content_type=MANIFEST_CONTENT_TYPE
            )
            response.call_on_close(body.close)
        response.headers["Content-Length"] = str(found.size)
        return response


def create_app(storage: ReadStorage, bucket_name: str) -> Flask:
    """Build the registry web application."""
    app = Flask(__name__)
    handler = Handler(storage, bucket_name)
    methods = ["GET", "HEAD"]

    app.add_url_rule("/v2", "index", handler.index, methods=methods)
    app.add_url_rule("/v2/", "index_slash", handler.index, methods=methods)
    app.add_url_rule(
        "/v2/<namespace>/<repository>/blobs/<digest>",
        "get_blob",
        handler.get_blob,
        methods=methods,
    )
    app.add_url_rule(
        "/v2/<namespace>/<repository>/manifests/<reference>",
        "get_manifest",
        handler.get_manifest,
        methods=methods,
    )

    @app.after_request
    def _log_request(response: Response) -> Response:
        logger.info(
            "request",
            extra={
                "fields": {
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                }
            },
        )
        return response

    return app