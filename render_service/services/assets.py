from __future__ import annotations

import logging
import os
import posixpath
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from PIL import Image, UnidentifiedImageError

from render_service.clients.s3_storage import S3StorageClient
from render_service.errors import InvalidArgumentError
from render_service.models.domain import AssetRef, ResolvedAssets
from render_service.services.retry import RetryExecutor

NARRATION_STEM = "narration"
MUSIC_STEM = "music"
CAPTIONS_NAME = "captions.srt"
_URI_SCHEMES = ("gs://", "s3://")


@dataclass
class LocalAssets:
    images: List[Optional[str]] = field(default_factory=list)
    narration: str = ""
    captions: Optional[str] = None
    music: Optional[str] = None


@dataclass
class RemoteAssets:
    images: List[Optional[str]] = field(default_factory=list)
    narration: str = ""
    captions: Optional[str] = None
    music: Optional[str] = None


def find_scene_image(keys: List[str], index: int) -> Optional[str]:
    """First stored object named ``scene-<index>-*`` in key order, if any."""
    marker = f"scene-{index}-"
    for key in sorted(keys):
        if posixpath.basename(key).startswith(marker):
            return key
    return None


def normalize_reference(reference: str | None, project_id: str) -> Optional[str]:
    """Turn ``gs://bucket/key``, ``s3://bucket/key`` or a bare key into a key.

    References outside the project's prefix are rejected (``None``).
    """
    if not reference:
        return None
    value = reference.strip()
    for scheme in _URI_SCHEMES:
        if value.startswith(scheme):
            _, _, value = value[len(scheme):].partition("/")
            break
    key = "/".join(part for part in value.split("/") if part)
    if ".." in key.split("/"):
        return None
    if not key.startswith(f"{project_id}/"):
        return None
    return key


class AssetResolver:
    def __init__(
        self,
        storage: S3StorageClient,
        retry: RetryExecutor,
        max_workers: int = 8,
        signed_url_ttl: int = 3600,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.storage = storage
        self.retry = retry
        self.max_workers = max(1, max_workers)
        self.signed_url_ttl = signed_url_ttl
        self.log = logger or logging.getLogger(__name__)

    def resolve(
        self,
        project_id: str,
        scene_count: int,
        narration_path: str | None = None,
        captions_path: str | None = None,
        music_path: str | None = None,
        captions_required: bool = True,
    ) -> ResolvedAssets:
        listing = [item["key"] for item in self.storage.list_files(f"{project_id}/")]

        narration_key = self._pick(project_id, narration_path, listing, NARRATION_STEM)
        if narration_key is None:
            raise InvalidArgumentError(
                "narration audio not found",
                details={"projectId": project_id, "path": narration_path},
            )
        captions_key: Optional[str] = None
        if captions_required:
            captions_key = normalize_reference(captions_path, project_id) or f"{project_id}/{CAPTIONS_NAME}"
        if captions_key is not None and captions_key not in listing:
            raise InvalidArgumentError(
                "captions file not found",
                details={"projectId": project_id, "path": captions_path},
            )
        music_key = self._pick(project_id, music_path, listing, MUSIC_STEM)

        image_keys: List[Optional[str]] = []
        for index in range(scene_count):
            key = find_scene_image(listing, index)
            if key is None:
                self.log.warning(
                    "scene image missing, scene will be skipped",
                    extra={"project_id": project_id, "scene_index": index},
                )
            image_keys.append(key)

        wanted = [key for key in image_keys if key] + [narration_key]
        if captions_key:
            wanted.append(captions_key)
        if music_key:
            wanted.append(music_key)
        checksums = dict(zip(wanted, self._fan_out(self.storage.checksum, wanted)))

        def ref(key: str) -> AssetRef:
            return AssetRef(bucket=self.storage.bucket, path=key, checksum=checksums.get(key, ""))

        return ResolvedAssets(
            project_id=project_id,
            images=[ref(key) if key else None for key in image_keys],
            narration=ref(narration_key),
            captions=ref(captions_key) if captions_key else None,
            music=ref(music_key) if music_key else None,
        )

    def fetch_local(self, assets: ResolvedAssets, workdir: str) -> LocalAssets:
        """Download every asset into ``workdir`` concurrently."""
        jobs: List[tuple[str, str]] = []
        for index, ref in enumerate(assets.images):
            if ref is not None:
                jobs.append((ref.path, self._local_name(workdir, f"scene-{index}", ref.path)))
        narration_local = self._local_name(workdir, NARRATION_STEM, assets.narration.path)
        jobs.append((assets.narration.path, narration_local))
        captions_local = None
        if assets.captions is not None:
            captions_local = os.path.join(workdir, CAPTIONS_NAME)
            jobs.append((assets.captions.path, captions_local))
        music_local = None
        if assets.music is not None:
            music_local = self._local_name(workdir, MUSIC_STEM, assets.music.path)
            jobs.append((assets.music.path, music_local))

        def download(job: tuple[str, str]) -> str:
            key, local_path = job
            return self.retry.run(lambda: self.storage.download_to(key, local_path), label=f"download {key}")

        downloaded = dict(zip((key for key, _ in jobs), self._fan_out(download, jobs)))

        images: List[Optional[str]] = []
        for index, ref in enumerate(assets.images):
            if ref is None:
                images.append(None)
                continue
            path = downloaded[ref.path]
            if not self._is_decodable(path):
                self.log.warning(
                    "scene image unreadable, scene will be skipped",
                    extra={"project_id": assets.project_id, "scene_index": index, "key": ref.path},
                )
                images.append(None)
                continue
            images.append(path)
        return LocalAssets(images=images, narration=narration_local, captions=captions_local, music=music_local)

    def sign(self, assets: ResolvedAssets) -> RemoteAssets:
        ttl = self.signed_url_ttl
        return RemoteAssets(
            images=[self.storage.signed_url(ref.path, ttl) if ref else None for ref in assets.images],
            narration=self.storage.signed_url(assets.narration.path, ttl),
            captions=self.storage.signed_url(assets.captions.path, ttl) if assets.captions else None,
            music=self.storage.signed_url(assets.music.path, ttl) if assets.music else None,
        )

    def _pick(self, project_id: str, override: str | None, listing: List[str], stem: str) -> Optional[str]:
        key = normalize_reference(override, project_id)
        if key is not None:
            return key if key in listing else None
        if override:
            self.log.warning(
                "asset override outside project ignored",
                extra={"project_id": project_id, "path": override},
            )
        prefix = f"{project_id}/{stem}."
        candidates = sorted(item for item in listing if item.startswith(prefix))
        return candidates[0] if candidates else None

    def _fan_out(self, func: Callable[[Any], Any], items: List[Any]) -> List[Any]:
        if not items:
            return []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as pool:
            return list(pool.map(func, items))

    def _local_name(self, workdir: str, stem: str, key: str) -> str:
        suffix = posixpath.splitext(key)[1] or ".bin"
        return os.path.join(workdir, f"{stem}{suffix}")

    def _is_decodable(self, path: str) -> bool:
        try:
            with Image.open(path) as img:
                img.verify()
        except (UnidentifiedImageError, OSError):
            return False
        return True
