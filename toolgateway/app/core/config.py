import json
import re
from typing import Annotated, Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    # JSON lists are accepted, but ALLOWED_ORIGINS is usually comma-separated.
    if raw.startswith(("[", '"', "'")):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]
        if isinstance(parsed, str):
            raw = parsed.strip()
            if not raw or raw == "[]":
                return []
            if raw == "*":
                return ["*"]

    parts = [p for p in re.split(r"[,\s]+", raw) if p]
    origins: list[str] = []
    for part in parts:
        if part == "*":
            return ["*"]
        if "://" in part:
            origins.append(part)
            continue
        # Browsers send the scheme in the Origin header.
        origins.append(f"http://{part}")
        origins.append(f"https://{part}")

    seen: set[str] = set()
    result: list[str] = []
    for origin in origins:
        if origin in seen:
            continue
        seen.add(origin)
        result.append(origin)
    return result


class MissingCredentialError(RuntimeError):
    """Raised at startup when the upstream API credential is not configured."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Only GROQ_API_KEY is required to serve traffic; it is checked by
    ``require_credentials`` before any component is built.
    """

    # Upstream (Groq OpenAI-compatible API)
    groq_api_key: str = ""
    groq_base_url: str = "https://api.groq.com/openai/v1"
    upstream_timeout: float = 30.0  # connect/response timeout handed to the SDK

    # HTTP client connection pool settings
    httpx_connect_timeout: float = 10.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    shutdown_grace_seconds: float = 2.0

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Cache settings
    cache_enabled: bool = True
    cache_default_ttl: int = 300  # 5 minutes
    cache_max_size: int | None = 1000  # None disables the LRU bound

    # Rate limiting settings
    rate_limit_enabled: bool = True
    rate_limit_window_seconds: int = 60
    # If False, a resource configured with 0 tokens/minute has no token limit.
    enforce_zero_token_capacity: bool = False

    # Retry settings (upstream calls)
    retry_max_attempts: int = 3
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 10.0
    retry_backoff_factor: float = 2.0

    # Metrics settings
    metrics_snapshot_interval: float = 300.0  # 5 minutes
    metrics_retention_days: int = 30
    metrics_export: bool = False
    metrics_endpoint: str | None = None

    # Health thresholds
    health_critical_error_rate: float = 0.10
    health_warning_error_rate: float = 0.05
    health_critical_response_ms: float = 5000.0
    health_warning_response_ms: float = 2000.0

    # File upload settings
    temp_dir: str = "/tmp"
    upload_max_file_size: int = 25 * 1024 * 1024  # Groq's 25MB limit

    # CORS settings. NoDecode keeps a comma-separated value from being parsed as JSON.
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default=["*"],
        validation_alias=AliasChoices("ALLOWED_ORIGINS", "CORS_ORIGINS", "cors_origins"),
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate the log format name."""
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    @field_validator("retry_max_attempts", "metrics_retention_days", "rate_limit_window_seconds")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate counts are at least 1."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("cache_max_size")
    @classmethod
    def validate_cache_max_size(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("cache_max_size must be at least 1 (or unset)")
        return v

    @field_validator(
        "upstream_timeout",
        "httpx_connect_timeout",
        "httpx_pool_timeout",
        "metrics_snapshot_interval",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("retry_initial_delay", "retry_max_delay", "shutdown_grace_seconds")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delays must not be negative")
        return v

    @field_validator("retry_backoff_factor")
    @classmethod
    def validate_backoff_factor(cls, v: float) -> float:
        if v < 1:
            raise ValueError("retry_backoff_factor must be at least 1")
        return v

    def require_credentials(self) -> None:
        """Ensure the upstream credential is present.

        Raises:
            MissingCredentialError: If GROQ_API_KEY is empty.
        """
        if not self.groq_api_key.strip():
            raise MissingCredentialError("GROQ_API_KEY environment variable is required")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


# Global settings instance
settings = Settings()
