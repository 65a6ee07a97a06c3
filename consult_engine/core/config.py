"""
Application configuration via pydantic-settings.

Loads values from .env file with sensible defaults for local development.
Use ``get_settings()`` to obtain the cached singleton instance.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_AUDIO_EXTENSIONS: dict[str, str] = {
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
    ".mp4": "video/mp4",
}


class Settings(BaseSettings):
    """Consult engine settings loaded from environment / .env file.

    All settings can be overridden via environment variables or a `.env` file.
    Field names map directly to env var names (case-insensitive).

    Attributes:
        api_base_url: Root URL of the consultations backend.
        finalize_deadline_seconds: Client-side time limit for the finalize loop.
        finalize_interval_seconds: Sleep between pending finalize responses.
        strict_finalize_body: Fail with ``FinalizeMalformedBodyError`` instead
            of degrading to empty details when the finalize body is unreadable.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore unrecognized env vars
    )

    # --- Backend ---
    api_base_url: str = "http://localhost:8080"
    api_token: str = ""  # Static bearer token; empty = obtain via login
    request_timeout: float = 30.0
    upload_timeout: float = 300.0  # Large recordings take a while to transfer

    # --- Finalize polling ---
    finalize_deadline_seconds: float = 180.0
    finalize_interval_seconds: float = 4.0
    finalize_backoff: Literal["fixed", "exponential"] = "fixed"
    finalize_max_interval_seconds: float = 16.0  # Cap when backoff is exponential
    strict_finalize_body: bool = False

    # --- Audio ---
    allowed_audio_extensions: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_AUDIO_EXTENSIONS)
    )
    microphone_sample_rate: int = 16000
    microphone_channels: int = 1

    # --- Application ---
    recent_consultations_limit: int = 5
    log_level: str = "INFO"  # Python logging level


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Uses ``functools.lru_cache`` so the .env file is read only once.
    Subsequent calls return the same ``Settings`` instance.

    Returns:
        Settings: The application-wide configuration object.
    """
    return Settings()
