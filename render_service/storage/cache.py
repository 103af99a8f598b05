from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Dict, List, Optional, Protocol

from render_service.errors import RenderError

CACHE_PREFIX = "cache/render"
FINAL_ARTIFACT_NAME = "movie.mp4"


class ObjectStore(Protocol):
    def head(self, path: str) -> dict[str, Any] | None: ...

    def copy(self, source: str, destination: str) -> str: ...

    def delete(self, path: str) -> bool: ...

    def upload_file(self, path: str, local_path: str, content_type: str = "video/mp4") -> str: ...

    def list_files(self, prefix: str | None = None) -> List[dict[str, Any]]: ...


class CacheMetrics:
    def __init__(self) -> None:
        self._counters: Dict[str, Dict[str, int]] = {
            "final": {"hits": 0, "misses": 0, "writes": 0, "write_failures": 0},
            "manifest": {"hits": 0, "misses": 0, "writes": 0, "write_failures": 0},
        }
        self._lock = Lock()

    def incr(self, tier: str, counter: str) -> None:
        with self._lock:
            self._counters[tier][counter] += 1

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {tier: dict(values) for tier, values in self._counters.items()}


def final_artifact_key(project_id: str) -> str:
    return f"{project_id}/{FINAL_ARTIFACT_NAME}"


def manifest_cache_key(digest: str) -> str:
    return f"{CACHE_PREFIX}/{digest}.mp4"


class RenderCache:
    """Two-tier artifact cache on top of an object store.

    The final-artifact tier is the project's own ``movie.mp4``; the manifest
    tier is shared across projects and keyed by manifest hash. Entries are
    only removed through :meth:`clear`.
    """

    def __init__(self, store: ObjectStore, logger: Optional[logging.Logger] = None) -> None:
        self.store = store
        self.metrics = CacheMetrics()
        self.log = logger or logging.getLogger(__name__)

    def lookup_final(self, project_id: str) -> bool:
        hit = self.store.head(final_artifact_key(project_id)) is not None
        self.metrics.incr("final", "hits" if hit else "misses")
        return hit

    def lookup_manifest(self, digest: str) -> bool:
        hit = self.store.head(manifest_cache_key(digest)) is not None
        self.metrics.incr("manifest", "hits" if hit else "misses")
        return hit

    def promote(self, digest: str, project_id: str) -> str:
        """Copy a manifest-cache entry into the project's final-artifact slot."""
        key = self.store.copy(manifest_cache_key(digest), final_artifact_key(project_id))
        self.metrics.incr("final", "writes")
        return key

    def store_final(self, project_id: str, local_path: str) -> str:
        key = self.store.upload_file(final_artifact_key(project_id), local_path, content_type="video/mp4")
        self.metrics.incr("final", "writes")
        return key

    def write_manifest(self, digest: str, project_id: str) -> bool:
        """Best-effort write-through; failures are logged and counted only."""
        try:
            self.store.copy(final_artifact_key(project_id), manifest_cache_key(digest))
        except RenderError as exc:
            self.metrics.incr("manifest", "write_failures")
            self.log.warning(
                "render cache write failed",
                extra={"manifest_hash": digest, "project_id": project_id, "error": exc.message},
            )
            return False
        self.metrics.incr("manifest", "writes")
        return True

    def clear(self, project_id: str | None = None, digest: str | None = None) -> List[str]:
        deleted: List[str] = []
        keys = []
        if project_id:
            keys.append(final_artifact_key(project_id))
        if digest:
            keys.append(manifest_cache_key(digest))
        for key in keys:
            if self.store.delete(key):
                deleted.append(key)
        if deleted:
            self.log.info("render cache cleared", extra={"keys": deleted})
        return deleted

    def stats(self) -> dict[str, Any]:
        entries = self.store.list_files(CACHE_PREFIX + "/")
        return {
            **self.metrics.snapshot(),
            "objects": len(entries),
            "bytes": sum(int(item.get("size") or 0) for item in entries),
        }
