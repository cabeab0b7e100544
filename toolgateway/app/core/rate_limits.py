"""Static per-resource rate limit table.

Keys are upstream model ids, plus aggregate keys for batch submission and
modality-prefixed keys (``audio_<model>``, ``vision_<model>``) used by the
audio and vision tools. A ``tokens_per_minute`` of 0 marks a resource whose
cost is not measured in tokens (speech models, batch submission).
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class RateLimit:
    """Immutable request/token budget for one resource key."""

    resource_key: str
    requests_per_minute: int
    tokens_per_minute: int

    def __post_init__(self) -> None:
        if self.requests_per_minute < 0 or self.tokens_per_minute < 0:
            raise ValueError(
                f"Rate limits for {self.resource_key!r} must be non-negative"
            )


# (requests per minute, tokens per minute)
RATE_LIMITS: Mapping[str, tuple[int, int]] = MappingProxyType({
    # Text completion models
    "llama-3.1-8b-instant": (30, 30000),
    "llama-3.3-70b-versatile": (30, 6000),
    "deepseek-r1-distill-llama-70b": (20, 6000),
    "qwen-qwq-32b": (30, 6000),
    "qwen/qwen3-32b": (30, 6000),
    "compound-beta": (20, 4000),
    "compound-beta-mini": (40, 8000),
    "allam-2-7b": (35, 25000),
    "gemma2-9b-it": (30, 15000),
    "llama3-70b-8192": (30, 6000),
    "llama3-8b-8192": (30, 30000),
    "meta-llama/llama-guard-4-12b": (30, 10000),
    "meta-llama/llama-prompt-guard-2-22m": (50, 20000),
    "meta-llama/llama-prompt-guard-2-86m": (40, 15000),
    "mistral-saba-24b": (30, 10000),

    # Audio models
    "whisper-large-v3": (20, 0),
    "whisper-large-v3-turbo": (30, 0),
    "distil-whisper-large-v3-en": (40, 0),

    # Vision models
    "llama-4-scout-17b-instruct": (30, 6000),
    "llama-4-maverick-17b-instruct": (30, 6000),

    # Text-to-speech models
    "playai-tts": (50, 0),
    "playai-tts-arabic": (50, 0),

    # Aggregate and modality-prefixed keys
    "batch_processing": (100, 0),
    "audio_whisper-large-v3": (20, 0),
    "audio_whisper-large-v3-turbo": (30, 0),
    "audio_distil-whisper-large-v3-en": (40, 0),
    "vision_llama-4-scout-17b-instruct": (30, 6000),
    "vision_llama-4-maverick-17b-instruct": (30, 6000),
})


def load_rate_limits(table: Mapping[str, tuple[int, int]] = RATE_LIMITS) -> dict[str, RateLimit]:
    """Build validated RateLimit objects from a raw table.

    Raises:
        ValueError: If any limit is negative.
    """
    return {
        key: RateLimit(resource_key=key, requests_per_minute=rpm, tokens_per_minute=tpm)
        for key, (rpm, tpm) in table.items()
    }
