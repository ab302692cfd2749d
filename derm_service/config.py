"""
Runtime configuration for the dermatology analysis service.

Settings are read once at startup (after loading .env) and passed to the
clients that need them. Nothing else in the package reads os.environ.
"""
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    # Vision model (OpenAI-compatible chat completions API)
    vision_api_key: Optional[str] = None
    vision_api_base_url: str = "https://api.openai.com"
    vision_model: str = "gpt-4o"
    vision_temperature: float = 0.2
    vision_max_tokens: int = 1200
    vision_timeout_seconds: float = 25.0

    # Diagnosis model (Gemini, text only)
    diagnosis_api_key: Optional[str] = None
    diagnosis_model: str = "gemini-2.5-flash"
    diagnosis_temperature: float = 0.2
    diagnosis_max_tokens: int = 1500
    diagnosis_timeout_seconds: float = 20.0

    # Retry policy shared by both model calls
    ai_max_retries: int = 2
    ai_retry_base_delay: float = 1.0
    ai_retry_max_delay: float = 8.0

    # Access and storage
    service_api_key: Optional[str] = None
    allowed_image_hosts: tuple[str, ...] = ()
    signed_url_ttl_seconds: int = 300
    signed_url_secret: str = "dev-signing-secret"
    storage_base_url: str = "https://storage.local/clinical-photos"

    cors_origins: tuple[str, ...] = field(default_factory=lambda: ("http://localhost:3000",))
    log_format: str = "json"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "Settings":
        """Build settings from the process environment."""
        if load_dotenv_file:
            load_dotenv()

        cors = _env_list("CORS_ORIGINS") or ("http://localhost:3000",)
        return cls(
            vision_api_key=os.getenv("OPENAI_API_KEY") or None,
            vision_api_base_url=os.getenv("VISION_API_BASE_URL", "https://api.openai.com"),
            vision_model=os.getenv("VISION_MODEL", "gpt-4o"),
            vision_temperature=_env_float("VISION_TEMPERATURE", 0.2),
            vision_max_tokens=_env_int("VISION_MAX_TOKENS", 1200),
            vision_timeout_seconds=_env_float("VISION_TIMEOUT_SECONDS", 25.0),
            diagnosis_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or None,
            diagnosis_model=os.getenv("DIAGNOSIS_MODEL", "gemini-2.5-flash"),
            diagnosis_temperature=_env_float("DIAGNOSIS_TEMPERATURE", 0.2),
            diagnosis_max_tokens=_env_int("DIAGNOSIS_MAX_TOKENS", 1500),
            diagnosis_timeout_seconds=_env_float("DIAGNOSIS_TIMEOUT_SECONDS", 20.0),
            ai_max_retries=_env_int("AI_MAX_RETRIES", 2),
            ai_retry_base_delay=_env_float("AI_RETRY_BASE_DELAY", 1.0),
            ai_retry_max_delay=_env_float("AI_RETRY_MAX_DELAY", 8.0),
            service_api_key=os.getenv("SERVICE_API_KEY") or None,
            allowed_image_hosts=_env_list("ALLOWED_IMAGE_HOSTS"),
            signed_url_ttl_seconds=_env_int("SIGNED_URL_TTL_SECONDS", 300),
            signed_url_secret=os.getenv("SIGNED_URL_SECRET", "dev-signing-secret"),
            storage_base_url=os.getenv("STORAGE_BASE_URL", "https://storage.local/clinical-photos"),
            cors_origins=cors,
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
