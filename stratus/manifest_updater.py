"""Fetching and merging OCI image indexes kept in storage."""

from __future__ import annotations

from typing import Optional

from .registry import OciManifestIndex, index_path
from .storage import Storage


class OCIManifestUpdater:
    """Reads a repository's remote index and merges new manifests into it."""

    def __init__(self, storage: Optional[Storage], bucket: str) -> None:
        self.storage = storage
        self.bucket = bucket

    def get_remote_index(self, repo: str) -> OciManifestIndex:
        """Return the stored index; ``ObjectNotFoundError`` propagates when absent."""
        if self.storage is None:
            raise RuntimeError("storage client is not configured")
        stream, _ = self.storage.get_object(self.bucket, index_path(repo))
        try:
            body = stream.read()
        finally:
            stream.close()
        try:
            return OciManifestIndex.from_json(body)
        except ValueError as exc:
            raise ValueError(f"unmarshal index: {exc}") from exc

    def merge_index(
        self,
        existing: Optional[OciManifestIndex],
        incoming: Optional[OciManifestIndex],
    ) -> Optional[OciManifestIndex]:
        """Merge two indexes; incoming manifests win for each ref name."""
        if existing is None:
            return incoming
        if incoming is None:
            return existing

        merged = OciManifestIndex(schema_version=2)
        seen: set[str] = set()
        for manifest in [*incoming.manifests, *existing.manifests]:
            ref_name = manifest.ref_name
            if not ref_name:
                merged.manifests.append(manifest)
                continue
            if ref_name in seen:
                continue
            seen.add(ref_name)
            merged.manifests.append(manifest)
        return merged