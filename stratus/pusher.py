"""Pushing an OCI image layout directory into registry storage."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional, TextIO

from .manifest_updater import OCIManifestUpdater
from .registry import REF_NAME_ANNOTATION, OciManifestIndex, blob_path, index_path, oci_layout_path
from .storage import ObjectNotFoundError, Storage
from .uploader import (
    CACHE_CONTROL_NO_CACHE,
    CACHE_CONTROL_PUBLIC_IMMUTABLE,
    FSUploadObject,
    JSONUploadObject,
    SkipCheck,
    SkipResult,
    UploadTask,
    upload_tasks_concurrently,
    upload_with_retry,
)

INDEX_MEDIA_TYPE = "application/vnd.oci.image.index.v1+json"
DEFAULT_BLOB_UPLOAD_CONCURRENCY = 4
_BLOBS_DIR = ("blobs", "sha256")


class PushError(Exception):
    """Raised when an OCI layout cannot be pushed."""


def _log(output: TextIO, message: str) -> None:
    output.write(message + "\n")


def _brief_digest(digest: str) -> str:
    return digest[:16]


def _read_local_index(root: Path) -> OciManifestIndex:
    return OciManifestIndex.from_json((root / "index.json").read_bytes())


def list_blobs(src: str | os.PathLike[str]) -> list[str]:
    """Return the hex digests of the blob files in a layout, sorted by name."""
    blobs_dir = Path(src).joinpath(*_BLOBS_DIR)
    with os.scandir(blobs_dir) as entries:
        return sorted(entry.name for entry in entries if not entry.is_dir())


def _blob_skip_check(label: str, output: TextIO) -> SkipCheck:
    def check(storage: Storage, bucket: str, key: str) -> SkipResult:
        try:
            storage.stat_object(bucket, key)
        except ObjectNotFoundError:
            _log(output, f"🔍 {label} | New blob found, uploading")
        except Exception as exc:
            _log(output, f"⚠️ {label} | Failed to check existence: {exc}, proceeding with upload")
        else:
            return SkipResult(skip=True, reason="Layer already exists, skipping")
        _log(output, f"📤 {label} | Processing blob")
        return SkipResult()

    return check


def upload_blobs_concurrently(
    storage: Storage,
    bucket: str,
    src: str | os.PathLike[str],
    repo: str,
    hex_digests: list[str],
    concurrency: int,
    output: Optional[TextIO] = None,
) -> None:
    """Upload the named blobs of a layout, skipping those already stored."""
    out = sys.stderr if output is None else output
    tasks = []
    for hex_digest in hex_digests:
        label = _brief_digest(hex_digest)
        try:
            obj = FSUploadObject(
                src,
                "/".join((*_BLOBS_DIR, hex_digest)),
                "application/octet-stream",
                CACHE_CONTROL_PUBLIC_IMMUTABLE,
                label,
            )
        except OSError as exc:
            raise PushError(f"prepare blob {label}: {exc}") from exc
        tasks.append(
            UploadTask(
                key=blob_path(repo, hex_digest),
                object=obj,
                skip_check=_blob_skip_check(label, out),
            )
        )
    upload_tasks_concurrently(storage, bucket, tasks, concurrency, out)


def push_oci_layout(
    storage: Optional[Storage],
    bucket: str,
    src: Optional[str | os.PathLike[str]],
    image_name: str,
    tag: str,
    *,
    log_output: Optional[TextIO] = None,
    blob_upload_concurrency: Optional[int] = None,
) -> None:
    """Push the OCI layout in directory ``src`` as ``image_name:tag``."""
    out = sys.stderr if log_output is None else log_output
    concurrency = DEFAULT_BLOB_UPLOAD_CONCURRENCY
    if blob_upload_concurrency is not None and blob_upload_concurrency > 0:
        concurrency = blob_upload_concurrency

    if src is None:
        raise PushError("source filesystem is not configured")
    if storage is None:
        raise PushError("destination storage is not configured")

    root = Path(src)
    for name in ("index.json", "oci-layout"):
        try:
            (root / name).stat()
        except OSError as exc:
            raise PushError(f"{name} not found in OCI layout: {exc}") from exc

    updater = OCIManifestUpdater(storage, bucket)

    try:
        local_index = _read_local_index(root)
    except (OSError, ValueError) as exc:
        raise PushError(f"read local index: {exc}") from exc
    _log(out, f"📋 Loaded local index with {len(local_index.manifests)} manifests")

    if not local_index.manifests:
        raise PushError("local index has no manifests")

    first = local_index.manifests[0]
    if first.annotations is None:
        first.annotations = {}
    first.annotations[REF_NAME_ANNOTATION] = tag

    _log(out, f"🔍 Checking remote index for {image_name}...")
    existing_index: Optional[OciManifestIndex] = None
    try:
        existing_index = updater.get_remote_index(image_name)
    except ObjectNotFoundError:
        _log(out, "🆕 No existing remote index found")
    except Exception as exc:
        _log(out, f"⚠️ Warning: failed to fetch remote index: {exc}")
    else:
        _log(out, f"📥 Fetched remote index with {len(existing_index.manifests)} manifests")

    _log(out, "🔄 Merging indexes...")
    merged_index = updater.merge_index(existing_index, local_index)
    _log(out, f"✅ Merged index contains {len(merged_index.manifests)} manifests")

    try:
        hex_digests = list_blobs(root)
    except OSError as exc:
        raise PushError(f"list local blobs: {exc}") from exc
    _log(out, f"📦 Found {len(hex_digests)} local blobs to upload")

    if hex_digests:
        _log(out, f"🚀 Starting concurrent blob uploads (concurrency: {concurrency})...")
        try:
            upload_blobs_concurrently(storage, bucket, root, image_name, hex_digests, concurrency, out)
        except PushError:
            raise
        except Exception as exc:
            raise PushError(f"upload blobs: {exc}") from exc

    # The index goes last so it never references blobs that are not uploaded yet.
    _log(out, "📋 Uploading updated index...")
    index_obj = JSONUploadObject(merged_index, INDEX_MEDIA_TYPE, "index.json")
    try:
        upload_with_retry(storage, bucket, index_path(image_name), index_obj, out)
    except Exception as exc:
        raise PushError(f"upload index: {exc}") from exc

    _log(out, "📋 Uploading OCI layout metadata...")
    try:
        layout_obj = FSUploadObject(
            root, "oci-layout", "application/json", CACHE_CONTROL_NO_CACHE, "oci-layout"
        )
    except OSError as exc:
        raise PushError(f"prepare oci-layout upload object: {exc}") from exc
    try:
        upload_with_retry(storage, bucket, oci_layout_path(image_name), layout_obj, out)
    except Exception as exc:
        raise PushError(f"upload oci-layout: {exc}") from exc

    _log(
        out,
        f"✅ Upload complete! Uploaded {len(hex_digests)} blobs and updated index for {image_name}",
    )