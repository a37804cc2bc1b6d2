from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class GenerationSettings(BaseSettings):
    """Configuration of the upstream generation API and result URL heuristics."""
    GENERATION_API_BASE: str = "http://localhost:8000"
    GENERATION_API_KEY: str = ""
    GENERATION_TIMEOUT_SECONDS: float = 600.0
    # Tried in order until one is accepted; see infrastructure.generation.shapes.
    GENERATION_REQUEST_SHAPES: list[str] = ["chat", "simple"]
    GENERATION_CHAT_PATH: str = "/v1/chat/completions"
    GENERATION_SIMPLE_PATH: str = "/v1/video/generations"
    GENERATION_ERROR_SNIPPET_CHARS: int = 500
    GENERATION_TAIL_CHARS: int = 500

    GENERATION_MIRROR_HOSTS: list[str] = ["drive.google.com", "docs.google.com"]
    GENERATION_WATERMARK_FREE_HOSTS: list[str] = ["oscdn2.dyysy.com"]
    GENERATION_VIDEO_EXTENSIONS: list[str] = ["mp4", "webm", "mov", "avi", "m4v"]
    GENERATION_IMAGE_EXTENSIONS: list[str] = ["png", "jpg", "jpeg", "webp", "gif"]
    GENERATION_MEDIA_KEYWORDS: list[str] = ["video", "media", "cdn"]
    GENERATION_DIRECT_KEYS: list[str] = ["video_url", "url", "video", "result", "image_url"]

    model_config = ConfigDict(env_file=".env", extra="ignore")


def get_generation_settings() -> GenerationSettings:
    """Return a fresh generation settings instance."""
    return GenerationSettings()
