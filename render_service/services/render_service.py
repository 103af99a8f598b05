from __future__ import annotations

import logging
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from render_service.clients.fal import FalQueueClient
from render_service.clients.s3_storage import S3StorageClient
from render_service.config import Settings
from render_service.errors import ConfigError, InvalidArgumentError
from render_service.models.api import RenderRequest
from render_service.models.domain import (
    Engine,
    LocalEncode,
    Plan,
    RemoteCompose,
    RemoteImageToVideo,
    RemoteTextToVideo,
    RenderManifest,
    RenderOutcome,
    Resolution,
    Scene,
)
from render_service.render.ffmpeg import FFmpegRunner
from render_service.render.local import LocalRenderer
from render_service.services.assets import AssetResolver
from render_service.services.manifest import build_manifest, manifest_hash
from render_service.services.plans import clamp_resolution, plan_limits, resolve_plan
from render_service.services.publisher import OutputPublisher
from render_service.services.remote import RemoteDispatcher, build_provider_request
from render_service.services.retry import RetryExecutor
from render_service.storage.cache import RenderCache


@dataclass
class RenderJob:
    request_id: str | None
    project_id: str
    plan: Plan
    engine: Engine
    resolution: Resolution
    manifest: Optional[RenderManifest] = None
    manifest_hash: Optional[str] = None
    workdir: Optional[str] = None
    output_key: Optional[str] = None

    def context(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "project_id": self.project_id,
            "engine": self.engine.tag,
            "plan": self.plan.value,
            "manifest_hash": self.manifest_hash,
        }


class RenderService:
    def __init__(
        self,
        settings: Settings,
        input_storage: S3StorageClient | None = None,
        output_storage: S3StorageClient | None = None,
        runner: FFmpegRunner | None = None,
        fal_client: FalQueueClient | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.log = logging.getLogger(__name__)
        self.input_storage = input_storage or self._build_storage(settings.s3_bucket)
        if output_storage is not None:
            self.output_storage = output_storage
        elif settings.output_bucket == settings.s3_bucket:
            self.output_storage = self.input_storage
        else:
            self.output_storage = self._build_storage(settings.output_bucket)
        self.retry = RetryExecutor(
            max_attempts=settings.retry_max,
            base_delay_ms=settings.retry_base_delay_ms,
            sleep=sleep,
            logger=self.log,
        )
        self.cache = RenderCache(self.output_storage, logger=self.log)
        self.resolver = AssetResolver(
            self.input_storage,
            retry=self.retry,
            max_workers=settings.max_download_workers,
            signed_url_ttl=settings.remote_url_ttl_seconds,
            logger=self.log,
        )
        self.renderer = LocalRenderer(
            runner or FFmpegRunner(settings.ffmpeg_path, logger=self.log),
            overlap=settings.transition_overlap_seconds,
            watermark_text=settings.watermark_text,
            logger=self.log,
        )
        self.fal = fal_client or FalQueueClient(
            api_key=settings.fal_api_key,
            base_url=settings.fal_queue_url,
            logger=self.log,
        )
        self.dispatcher = RemoteDispatcher(
            self.fal,
            retry=self.retry,
            poll_interval_ms=settings.fal_poll_interval_ms,
            timeout_ms=settings.fal_timeout_ms,
            sleep=sleep,
            clock=clock,
            logger=self.log,
        )
        self.publisher = OutputPublisher(
            self.output_storage,
            self.cache,
            retry=self.retry,
            signed_url_ttl=settings.signed_url_ttl_seconds,
            logger=self.log,
        )

    def resolve_engine(self, requested: str | None, prompt: str | None = None) -> Engine:
        """Map an engine tag to its variant; explicit requests win over the default."""
        tag = (requested or self.settings.render_engine or "local").strip().lower()
        text = (prompt or "").strip() or self.settings.fal_default_prompt
        s = self.settings
        engine: Engine
        if tag in {"local", "ffmpeg"}:
            return LocalEncode()
        if tag in {"fal", "remote", "fal:compose"}:
            engine = RemoteCompose(model=s.fal_compose_model)
        elif tag == "fal:i2v":
            engine = RemoteImageToVideo(model=s.fal_image_to_video_model, prompt=text)
        elif tag == "fal:i2v:premium":
            engine = RemoteImageToVideo(model=s.fal_premium_image_to_video_model, prompt=text)
        elif tag == "fal:t2v":
            engine = RemoteTextToVideo(model=s.fal_text_to_video_model, prompt=text)
        else:
            raise InvalidArgumentError(f"unknown render engine: {tag}")
        if not self.fal.enabled():
            raise ConfigError("fal api key is not configured", details={"engine": tag})
        if not engine.model:
            raise ConfigError("fal model is not configured", details={"engine": tag})
        return engine

    def render(
        self,
        payload: RenderRequest,
        plan_hint: str | None = None,
        request_id: str | None = None,
    ) -> RenderOutcome:
        plan = resolve_plan(payload.plan or plan_hint)
        engine = self.resolve_engine(payload.engine, payload.prompt)
        job = RenderJob(
            request_id=request_id,
            project_id=payload.project_id,
            plan=plan,
            engine=engine,
            resolution=clamp_resolution(plan, payload.target_width, payload.target_height),
        )

        # publish-only shortcut: an existing movie only gets its visibility and url refreshed
        if not payload.force and self.cache.lookup_final(job.project_id):
            self.log.info("final artifact cache hit", extra=job.context())
            return self._outcome(job, payload.publish, cached=True)

        scenes = self._validate_fresh_render(payload, plan)
        subtitles = not payload.no_subtitles
        assets = self.resolver.resolve(
            job.project_id,
            len(scenes),
            narration_path=payload.narration_path,
            captions_path=payload.captions_path if subtitles else None,
            music_path=payload.music_path,
            captions_required=subtitles,
        )
        prompt = engine.prompt if isinstance(engine, (RemoteImageToVideo, RemoteTextToVideo)) else None
        job.manifest = build_manifest(
            scenes,
            plan,
            engine.tag,
            job.resolution,
            assets,
            aspect_ratio=payload.aspect_ratio,
            export_preset=payload.export_preset,
            subtitles=subtitles,
            prompt=prompt,
        )
        job.manifest_hash = manifest_hash(job.manifest)

        if not payload.force and self.cache.lookup_manifest(job.manifest_hash):
            self.log.info("manifest cache hit", extra=job.context())
            self.retry.run(
                lambda: self.cache.promote(job.manifest_hash, job.project_id),
                label="promote cached render",
            )
            return self._outcome(job, payload.publish, cached=True)

        duration: float | None = None
        captions: bool | None = None
        scenes_rendered = len(assets.available_images)
        with tempfile.TemporaryDirectory(prefix="render-", dir=self.settings.scratch_root) as workdir:
            job.workdir = workdir
            self.log.info("render started", extra=job.context())
            if isinstance(engine, LocalEncode):
                local_assets = self.resolver.fetch_local(assets, workdir)
                result = self.renderer.render(
                    scenes,
                    local_assets,
                    job.resolution,
                    plan,
                    workdir,
                    export_preset=payload.export_preset,
                    subtitles=subtitles,
                )
                artifact, duration, captions = result.path, result.duration, result.captions
                scenes_rendered = result.scenes_rendered
            else:
                model, body = build_provider_request(
                    engine,
                    scenes,
                    self.resolver.sign(assets),
                    job.resolution,
                    self.settings.transition_overlap_seconds,
                )
                artifact = self.dispatcher.dispatch(model, body, workdir)
            job.output_key = self.publisher.persist(job.project_id, artifact, job.manifest_hash)
        self.log.info("render finished", extra={**job.context(), "scenes_rendered": scenes_rendered})
        return self._outcome(job, payload.publish, cached=False, duration=duration, captions=captions)

    def _validate_fresh_render(self, payload: RenderRequest, plan: Plan) -> List[Scene]:
        if not payload.scenes:
            raise InvalidArgumentError("scenes are required to render")
        if not payload.narration_path:
            raise InvalidArgumentError("narration reference (gsAudioPath) is required")
        if not payload.captions_path and not payload.no_subtitles:
            raise InvalidArgumentError("captions reference (srtPath) is required unless noSubtitles is set")
        limits = plan_limits(plan)
        if len(payload.scenes) > limits.max_scenes:
            raise InvalidArgumentError(
                f"plan {plan.value} allows at most {limits.max_scenes} scenes",
                details={"scenes": len(payload.scenes), "maxScenes": limits.max_scenes},
            )
        return payload.scenes

    def cache_status(self) -> dict[str, Any]:
        return self.cache.stats()

    def clear_cache(self, project_id: str | None, digest: str | None) -> List[str]:
        if not project_id and not digest:
            raise InvalidArgumentError("projectId or manifestHash is required")
        return self.cache.clear(project_id=project_id, digest=digest)

    def _outcome(
        self,
        job: RenderJob,
        publish: bool,
        cached: bool,
        duration: float | None = None,
        captions: bool | None = None,
    ) -> RenderOutcome:
        return RenderOutcome(
            video_url=self.publisher.issue_url(job.project_id, publish),
            cached=cached,
            engine=job.engine.tag,
            published=publish,
            manifest_hash=job.manifest_hash,
            duration_seconds=duration,
            captions=captions,
        )

    def _build_storage(self, bucket: str) -> S3StorageClient:
        s = self.settings
        return S3StorageClient(
            bucket=bucket,
            access_key=s.s3_access_key,
            secret_key=s.s3_secret_key,
            endpoint_url=s.s3_endpoint_url,
            region_name=s.s3_region,
            public_url=s.s3_public_url,
            addressing_style=s.s3_addressing_style,
            logger=self.log,
        )
