"""Audio transcription and translation with Whisper models."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from toolgateway.app.core.logging import get_log_context, get_logger
from toolgateway.app.exceptions import ValidationError
from toolgateway.app.providers.groq import GroqProvider
from toolgateway.app.tools.base import Admission, Tool, ToolKind

logger = get_logger(__name__)

DEFAULT_MODEL = "whisper-large-v3-turbo"

# File types accepted by the Whisper endpoints
ALLOWED_EXTENSIONS = frozenset({
    ".flac", ".m4a", ".mp3", ".mp4", ".mpeg", ".mpga", ".ogg", ".wav", ".webm",
})

# Rough bytes per second of compressed audio
BYTES_PER_SECOND_ESTIMATE = 16000


class AudioTranscriptionParams(BaseModel):
    audio_file: str = Field(min_length=1, description="Path to a local audio file")
    model: Literal["whisper-large-v3", "whisper-large-v3-turbo"] = DEFAULT_MODEL
    language: Optional[str] = Field(default=None, description="ISO-639-1 language of the audio")
    prompt: Optional[str] = None
    response_format: Literal["json", "text", "srt", "verbose_json", "vtt"] = "json"
    temperature: float = Field(default=0.0, ge=0, le=1)
    translate: bool = Field(default=False, description="Translate to English instead of transcribing")


class AudioTranscriptionTool(Tool):
    name = "groq_audio_transcription"
    description = "Transcribe audio files using Groq Whisper models"
    kind = ToolKind.AUDIO_TRANSCRIPTION
    input_model = AudioTranscriptionParams

    def __init__(self, provider: GroqProvider, max_file_size: int = 25 * 1024 * 1024):
        self.provider = provider
        self.max_file_size = max_file_size

    def admission(self, params: AudioTranscriptionParams) -> Admission:
        return Admission(resource_key=f"audio_{params.model}")

    def check_file(self, audio_file: str) -> Path:
        """Validate the audio file and return its path.

        Raises:
            ValidationError: If the file is missing, too large or of an
                unsupported type.
        """
        path = Path(audio_file).expanduser()
        if not path.is_file():
            raise ValidationError(f"Audio file not found: {audio_file}")
        if path.suffix.lower() not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                f"Unsupported audio file type: {path.suffix or '(none)'}. "
                f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
            )
        size = path.stat().st_size
        if size > self.max_file_size:
            raise ValidationError(
                f"Audio file too large: {size} bytes (max {self.max_file_size} bytes)"
            )
        return path

    async def execute(self, params: AudioTranscriptionParams) -> Dict[str, Any]:
        path = self.check_file(params.audio_file)

        logger.info(
            "Starting audio transcription",
            extra=get_log_context(tool=self.name, model=params.model, language=params.language),
        )
        result = await self.provider.transcribe(
            path,
            model=params.model,
            translate=params.translate,
            language=params.language,
            prompt=params.prompt,
            response_format=params.response_format,
            temperature=params.temperature,
        )

        transcription = result if isinstance(result, str) else result.get("text", "")

        logger.info(
            "Audio transcription completed",
            extra=get_log_context(tool=self.name, model=params.model, text_length=len(transcription)),
        )
        return {
            "transcription": transcription,
            "model": params.model,
            "language": params.language,
            "translated": params.translate,
            "duration": estimate_duration(path),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


def estimate_duration(path: Path) -> int:
    """Approximate audio length in seconds from the file size."""
    try:
        return round(path.stat().st_size / BYTES_PER_SECOND_ESTIMATE)
    except OSError:
        return 0
