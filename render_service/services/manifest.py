"""Content-addressable render manifests.

A manifest captures every input that changes the rendered bytes: timing,
camera and transition per scene, output geometry, encode preset, the engine
and the checksum of every referenced asset. Paths and project ids are not
part of it, so identical content rendered for different projects shares a
cache entry.
"""

from __future__ import annotations

import hashlib
import json
from typing import Iterable, Optional

from render_service.models.domain import Plan, RenderManifest, ResolvedAssets, Resolution, Scene

MANIFEST_VERSION = 1


def build_manifest(
    scenes: Iterable[Scene],
    plan: Plan,
    engine_tag: str,
    resolution: Resolution,
    assets: ResolvedAssets,
    aspect_ratio: Optional[str] = None,
    export_preset: Optional[str] = None,
    subtitles: bool = True,
    prompt: Optional[str] = None,
) -> RenderManifest:
    scene_summary = [
        {"d": float(scene.duration), "c": scene.camera.value, "t": scene.transition.value}
        for scene in scenes
    ]
    # absent assets are null; an object whose checksum cannot be read is ""
    images = [ref.checksum if ref is not None else None for ref in assets.images]
    return RenderManifest(
        v=MANIFEST_VERSION,
        engine=engine_tag,
        plan=plan,
        size=resolution.size,
        resolution={"w": resolution.width, "h": resolution.height},
        aspect_ratio=aspect_ratio,
        export_preset=export_preset,
        subtitles=subtitles,
        prompt=prompt,
        scenes=scene_summary,
        inputs={
            "img": images,
            "audio": assets.narration.checksum,
            "music": assets.music.checksum if assets.music is not None else None,
            "captions": assets.captions.checksum if assets.captions is not None else None,
        },
    )


def canonical_json(manifest: RenderManifest) -> bytes:
    payload = manifest.model_dump(mode="json", by_alias=True)
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def manifest_hash(manifest: RenderManifest) -> str:
    return hashlib.sha256(canonical_json(manifest)).hexdigest()
