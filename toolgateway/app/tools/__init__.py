"""Gateway tools and the default registry."""

from toolgateway.app.core.config import Settings
from toolgateway.app.providers.groq import GroqProvider
from toolgateway.app.services.metrics import MetricsTracker
from toolgateway.app.tools.audio_transcription import AudioTranscriptionTool
from toolgateway.app.tools.base import Admission, Tool, ToolKind, ToolRegistry
from toolgateway.app.tools.batch_processing import BatchProcessingTool
from toolgateway.app.tools.text_completion import TextCompletionTool
from toolgateway.app.tools.vision_analysis import VisionAnalysisTool

__all__ = [
    "Admission",
    "AudioTranscriptionTool",
    "BatchProcessingTool",
    "TextCompletionTool",
    "Tool",
    "ToolKind",
    "ToolRegistry",
    "VisionAnalysisTool",
    "build_registry",
]


def build_registry(provider: GroqProvider, metrics: MetricsTracker, app_settings: Settings) -> ToolRegistry:
    """Register the fixed tool set and freeze the registry."""
    registry = ToolRegistry()
    registry.register(
        TextCompletionTool(
            provider,
            metrics,
            cache_ttl=app_settings.cache_default_ttl if app_settings.cache_enabled else None,
        )
    )
    registry.register(AudioTranscriptionTool(provider, max_file_size=app_settings.upload_max_file_size))
    registry.register(VisionAnalysisTool(provider, metrics))
    registry.register(BatchProcessingTool(provider))
    return registry.freeze()
