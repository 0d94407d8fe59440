"""
Application configuration management.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str

    # Redis
    redis_url: str

    # GitHub
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"
    github_webhook_secret: Optional[str] = None  # Used when a project has no secret of its own
    github_timeout_seconds: float = 10.0

    # OpenAI
    openai_api_key: str
    azure_openai_endpoint: Optional[str] = None
    azure_openai_api_key: Optional[str] = None
    azure_openai_deployment: Optional[str] = None
    analysis_model: str = "gpt-4o-mini"
    progress_model: str = "gpt-4o-mini"
    tts_model: str = "gpt-4o-mini-tts"
    tts_voice: str = "alloy"
    max_diff_chars: int = 60000

    # Admin API
    admin_api_key: Optional[str] = None  # Falls back to github_webhook_secret if not set

    # Artifacts
    public_base_url: str = "http://localhost:8000"
    artifact_root: str = "./artifacts"
    scratch_root: str = "/tmp/prcast"

    # Recording
    recording_fps: int = 24
    viewport_width: int = 1920
    viewport_height: int = 1080
    scroll_settle_seconds: float = 1.5
    navigation_timeout_ms: int = 30000
    max_browsers: int = 2

    # Media
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    max_concurrent_encodes: int = 2
    ffmpeg_timeout_seconds: int = 300
    duration_tolerance_seconds: float = 0.05

    # Pipeline
    log_level: str = "INFO"
    pipeline_timeout_seconds: int = 1200
    analyze_timeout_seconds: int = 120
    narrate_timeout_seconds: int = 120
    record_timeout_seconds: int = 600
    mux_timeout_seconds: int = 300
    document_timeout_seconds: int = 180
    progress_timeout_seconds: int = 60
    max_workers: int = 3
    max_runs_per_project: int = 1

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
