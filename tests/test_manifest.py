import json

from render_service.models.domain import AssetRef, Plan, ResolvedAssets, Resolution, Scene
from render_service.services.manifest import build_manifest, canonical_json, manifest_hash


def _assets(project="p1", images=("aaa", "bbb"), audio="narr", captions="subs", music=None):
    def ref(name, checksum):
        return AssetRef(bucket="movie-inputs", path=f"{project}/{name}", checksum=checksum)

    return ResolvedAssets(
        project_id=project,
        images=[ref(f"scene-{i}-x.png", c) if c is not None else None for i, c in enumerate(images)],
        narration=ref("narration.mp3", audio),
        captions=ref("captions.srt", captions),
        music=ref("music.wav", music) if music is not None else None,
    )


def _scenes():
    return [Scene(duration=3, camera="zoom-in", transition="fade"), Scene(duration=4, camera="static", transition="none")]


def _hash(scenes=None, plan=Plan.FREE, engine="ffmpeg", assets=None, **kwargs):
    manifest = build_manifest(
        scenes or _scenes(),
        plan,
        engine,
        Resolution(width=854, height=480),
        assets or _assets(),
        **kwargs,
    )
    return manifest_hash(manifest)


def test_equal_inputs_hash_identically_across_projects():
    assert _hash(assets=_assets(project="p1")) == _hash(assets=_assets(project="p2"))


def test_any_changed_field_changes_the_hash():
    base = _hash()
    variants = [
        _hash(scenes=[Scene(duration=3, camera="zoom-out", transition="fade"), _scenes()[1]]),
        _hash(scenes=[Scene(duration=3.5, camera="zoom-in", transition="fade"), _scenes()[1]]),
        _hash(scenes=[Scene(duration=3, camera="zoom-in", transition="wipe-left"), _scenes()[1]]),
        _hash(plan=Plan.PRO),
        _hash(engine="fal:fal-ai/ffmpeg-api/compose"),
        _hash(assets=_assets(images=("aaa", "ccc"))),
        _hash(assets=_assets(audio="other")),
        _hash(assets=_assets(captions="other")),
        _hash(assets=_assets(music="beat")),
        _hash(export_preset="youtube"),
        _hash(subtitles=False),
        _hash(prompt="a different prompt"),
    ]
    assert base not in variants
    assert len(set(variants)) == len(variants)


def test_missing_image_keeps_manifest_shape():
    manifest = build_manifest(
        _scenes(),
        Plan.FREE,
        "ffmpeg",
        Resolution(width=854, height=480),
        _assets(images=("aaa", None), audio=""),
    )
    payload = json.loads(canonical_json(manifest))

    assert payload["inputs"]["img"] == ["aaa", None]
    assert payload["inputs"]["audio"] == ""
    assert payload["inputs"]["music"] is None
    assert payload["inputs"]["captions"] == "subs"
    assert payload["size"] == "854x480"
    assert payload["scenes"][0] == {"d": 3.0, "c": "zoom-in", "t": "fade"}


def test_canonical_json_sorts_keys():
    manifest = build_manifest(_scenes(), Plan.FREE, "ffmpeg", Resolution(width=854, height=480), _assets())
    text = canonical_json(manifest).decode("utf-8")

    assert text == json.dumps(json.loads(text), sort_keys=True, separators=(",", ":"))
    assert '"aspectRatio":null' in text


def test_absent_music_differs_from_unreadable_music():
    absent = build_manifest(_scenes(), Plan.FREE, "ffmpeg", Resolution(width=854, height=480), _assets())
    unreadable = build_manifest(
        _scenes(), Plan.FREE, "ffmpeg", Resolution(width=854, height=480), _assets(music="")
    )

    assert json.loads(canonical_json(absent))["inputs"]["music"] is None
    assert json.loads(canonical_json(unreadable))["inputs"]["music"] == ""
    assert manifest_hash(absent) != manifest_hash(unreadable)


def test_missing_captions_are_null():
    assets = _assets()
    assets.captions = None
    manifest = build_manifest(
        _scenes(), Plan.FREE, "ffmpeg", Resolution(width=854, height=480), assets, subtitles=False
    )

    assert json.loads(canonical_json(manifest))["inputs"]["captions"] is None
