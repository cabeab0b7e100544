"""Image analysis with Groq multimodal models."""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from toolgateway.app.core.logging import get_log_context, get_logger
from toolgateway.app.core.tokenizer import count_tokens
from toolgateway.app.providers.groq import GroqProvider
from toolgateway.app.services.metrics import MetricsTracker
from toolgateway.app.tools.base import Admission, Tool, ToolKind

logger = get_logger(__name__)

DEFAULT_MODEL = "llama-4-scout-17b-instruct"
DEFAULT_MAX_TOKENS = 1000
VISION_TEMPERATURE = 0.3

ANALYSIS_PROMPTS = {
    "describe": (
        "Describe this image in detail, including objects, people, setting, "
        "colors, and overall composition."
    ),
    "ocr": (
        "Extract and transcribe all text visible in this image. Organize the "
        "text logically and indicate its position/context."
    ),
    "technical": (
        "Provide a technical analysis of this image including composition, "
        "lighting, quality, and any technical aspects."
    ),
    "creative": (
        "Provide a creative interpretation of this image, including mood, "
        "artistic elements, and storytelling aspects."
    ),
}


class VisionAnalysisParams(BaseModel):
    image_url: str = Field(description="http(s) URL or data URL of the image")
    prompt: Optional[str] = Field(default=None, description="Custom prompt; overrides analysis_type")
    analysis_type: Literal["describe", "ocr", "technical", "creative"] = "describe"
    detail_level: Literal["low", "high"] = "high"
    model: Literal["llama-4-scout-17b-instruct", "llama-4-maverick-17b-instruct"] = DEFAULT_MODEL
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=1, le=4000)
    json_mode: bool = False

    @field_validator("image_url")
    @classmethod
    def validate_image_url(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme == "data" or (parsed.scheme in ("http", "https") and parsed.netloc):
            return v
        raise ValueError("Valid image URL is required")


def build_prompt(params: VisionAnalysisParams) -> str:
    return params.prompt or ANALYSIS_PROMPTS[params.analysis_type]


class VisionAnalysisTool(Tool):
    name = "groq_vision_analysis"
    description = "Analyze images using Groq multimodal models"
    kind = ToolKind.VISION_ANALYSIS
    input_model = VisionAnalysisParams

    def __init__(self, provider: GroqProvider, metrics: MetricsTracker):
        self.provider = provider
        self.metrics = metrics

    def admission(self, params: VisionAnalysisParams) -> Admission:
        return Admission(
            resource_key=f"vision_{params.model}",
            token_cost=count_tokens(build_prompt(params)) + params.max_tokens,
        )

    async def execute(self, params: VisionAnalysisParams) -> Dict[str, Any]:
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": build_prompt(params)},
                    {
                        "type": "image_url",
                        "image_url": {"url": params.image_url, "detail": params.detail_level},
                    },
                ],
            }
        ]

        logger.info(
            "Starting vision analysis",
            extra=get_log_context(
                tool=self.name,
                model=params.model,
                analysis_type=params.analysis_type,
                image_url=params.image_url[:50],
            ),
        )
        completion = await self.provider.chat_completion(
            model=params.model,
            messages=messages,
            temperature=VISION_TEMPERATURE,
            max_tokens=params.max_tokens,
            response_format={"type": "json_object"} if params.json_mode else None,
        )

        usage = completion["usage"]
        self.metrics.record_token_usage(usage["prompt_tokens"], usage["completion_tokens"], params.model)

        return {
            "analysis": completion["content"],
            "model": params.model,
            "analysis_type": params.analysis_type,
            "image_url": params.image_url,
            "usage": usage,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
