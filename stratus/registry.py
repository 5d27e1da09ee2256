"""OCI index types and the object-key layout used in the bucket."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

REF_NAME_ANNOTATION = "org.opencontainers.image.ref.name"


def normalize_repo(repo: str) -> str:
    """Add a ``library/`` namespace when the repository has no ``/``."""
    if "/" not in repo:
        return "library/" + repo
    return repo


def blob_path(repo: str, digest_hex: str) -> str:
    return normalize_repo(repo) + "/blobs/sha256/" + digest_hex


def index_path(repo: str) -> str:
    return normalize_repo(repo) + "/index.json"


def oci_layout_path(repo: str) -> str:
    return normalize_repo(repo) + "/oci-layout"


@dataclass
class OciManifest:
    media_type: str = ""
    digest: str = ""
    size: int = 0
    annotations: dict[str, str] | None = None

    @property
    def ref_name(self) -> str:
        return (self.annotations or {}).get(REF_NAME_ANNOTATION, "")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OciManifest":
        if not isinstance(data, dict):
            raise ValueError("manifest entry must be an object")
        annotations = data.get("annotations")
        if annotations is not None and not isinstance(annotations, dict):
            raise ValueError("annotations must be an object")
        size = data.get("size", 0)
        if not isinstance(size, int) or isinstance(size, bool):
            raise ValueError("size must be an integer")
        return cls(
            media_type=str(data.get("mediaType") or ""),
            digest=str(data.get("digest") or ""),
            size=size,
            annotations=dict(annotations) if annotations is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mediaType": self.media_type,
            "digest": self.digest,
            "size": self.size,
            "annotations": dict(self.annotations) if self.annotations is not None else None,
        }


@dataclass
class OciManifestIndex:
    schema_version: int = 0
    manifests: list[OciManifest] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OciManifestIndex":
        if not isinstance(data, dict):
            raise ValueError("index must be an object")
        version = data.get("schemaVersion", 0)
        if not isinstance(version, int) or isinstance(version, bool):
            raise ValueError("schemaVersion must be an integer")
        manifests = data.get("manifests") or []
        if not isinstance(manifests, list):
            raise ValueError("manifests must be an array")
        return cls(
            schema_version=version,
            manifests=[OciManifest.from_dict(m) for m in manifests],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "manifests": [m.to_dict() for m in self.manifests] if self.manifests else None,
        }

    @classmethod
    def from_json(cls, data: str | bytes) -> "OciManifestIndex":
        """Parse an index; raises ``ValueError`` on malformed input."""
        return cls.from_dict(json.loads(data))

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":")).encode()