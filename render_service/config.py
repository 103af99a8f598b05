from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RENDER_SERVICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = "render-service"
    host: str = "0.0.0.0"
    port: int = 8100

    # Object storage configuration
    s3_endpoint_url: str = ""
    s3_region: str | None = None
    s3_public_url: str = ""
    s3_bucket: str = "movie-inputs"
    s3_output_bucket: str = ""
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_addressing_style: str = "virtual"

    # Render engine defaults
    render_engine: str = "local"
    ffmpeg_path: str = "ffmpeg"
    scratch_root: str | None = None
    max_download_workers: int = 8
    transition_overlap_seconds: float = 0.75
    watermark_text: str = "Made with Reel"
    signed_url_ttl_seconds: int = 7 * 24 * 60 * 60
    remote_url_ttl_seconds: int = 60 * 60

    # Remote provider (fal.ai queue API)
    fal_api_key: str = Field(default="", validation_alias=AliasChoices("RENDER_SERVICE_FAL_API_KEY", "FAL_KEY"))
    fal_queue_url: str = "https://queue.fal.run"
    fal_compose_model: str = "fal-ai/ffmpeg-api/compose"
    fal_image_to_video_model: str = "fal-ai/ltx-video-13b-distilled/image-to-video"
    fal_premium_image_to_video_model: str = "fal-ai/veo3/fast/image-to-video"
    fal_text_to_video_model: str = "fal-ai/ltx-video-13b-distilled"
    fal_poll_interval_ms: int = 3000
    fal_timeout_ms: int = 600_000
    fal_default_prompt: str = "Cinematic parallax over UI; subtle camera motion; modern tech vibe."

    retry_max: int = Field(default=3, ge=1, validation_alias=AliasChoices("RENDER_SERVICE_RETRY_MAX", "RETRY_MAX"))
    retry_base_delay_ms: int = Field(
        default=1000,
        ge=0,
        validation_alias=AliasChoices("RENDER_SERVICE_RETRY_BASE_DELAY_MS", "RETRY_BASE_DELAY_MS"),
    )

    admin_token: str = ""

    @property
    def output_bucket(self) -> str:
        return self.s3_output_bucket or self.s3_bucket


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
