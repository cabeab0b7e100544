"""Text completion tool with model routing."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from toolgateway.app.core.cache import make_cache_key
from toolgateway.app.core.logging import get_log_context, get_logger
from toolgateway.app.core.tokenizer import estimate_request_tokens
from toolgateway.app.providers.groq import GroqProvider
from toolgateway.app.services.metrics import MetricsTracker
from toolgateway.app.tools.base import Admission, Tool, ToolKind

logger = get_logger(__name__)

FAST_MODEL = "llama-3.1-8b-instant"
QUALITY_MODEL = "llama-3.3-70b-versatile"

PRIORITY_MODELS = {
    "speed": FAST_MODEL,
    "quality": QUALITY_MODEL,
    "cost": FAST_MODEL,
}

COMPLEX_KEYWORDS = ("analyze", "explain", "complex", "detailed", "comprehensive")
COMPLEXITY_THRESHOLD = 0.7

DEFAULT_MAX_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 1.0


class TextCompletionParams(BaseModel):
    prompt: str = Field(min_length=1, description="User prompt")
    model: Optional[str] = Field(default=None, description="Explicit model id; overrides routing")
    max_tokens: Optional[int] = Field(default=None, ge=1, le=8000)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    json_mode: bool = False
    system_prompt: Optional[str] = None
    priority: Optional[Literal["speed", "quality", "cost"]] = None


def analyze_prompt_complexity(prompt: str) -> float:
    """Score a prompt between 0 and 1 from length, keywords and questions."""
    length = min(len(prompt) / 1000, 1.0)
    lowered = prompt.lower()
    keywords = 0.3 if any(kw in lowered for kw in COMPLEX_KEYWORDS) else 0.0
    questions = prompt.count("?") * 0.1
    return min(length + keywords + questions, 1.0)


def select_model(params: TextCompletionParams) -> str:
    if params.model:
        return params.model
    if params.priority:
        return PRIORITY_MODELS[params.priority]
    if analyze_prompt_complexity(params.prompt) > COMPLEXITY_THRESHOLD:
        return QUALITY_MODEL
    return FAST_MODEL


def build_messages(params: TextCompletionParams) -> List[Dict[str, str]]:
    messages = []
    if params.system_prompt:
        messages.append({"role": "system", "content": params.system_prompt})
    messages.append({"role": "user", "content": params.prompt})
    return messages


class TextCompletionTool(Tool):
    name = "groq_text_completion"
    description = "Generate text completions using Groq models with intelligent routing"
    kind = ToolKind.TEXT_COMPLETION
    input_model = TextCompletionParams

    def __init__(self, provider: GroqProvider, metrics: MetricsTracker, cache_ttl: Optional[float] = 300):
        self.provider = provider
        self.metrics = metrics
        self.cache_ttl = cache_ttl

    def admission(self, params: TextCompletionParams) -> Admission:
        model = select_model(params)
        max_tokens = params.max_tokens or DEFAULT_MAX_TOKENS
        return Admission(
            resource_key=model,
            token_cost=estimate_request_tokens(build_messages(params), max_tokens),
        )

    def cache_key(self, params: TextCompletionParams) -> Optional[str]:
        if not self.cacheable:
            return None
        return make_cache_key(
            self.name,
            select_model(params),
            params.prompt,
            params.system_prompt,
            _or_default(params.temperature, DEFAULT_TEMPERATURE),
            params.max_tokens or DEFAULT_MAX_TOKENS,
            _or_default(params.top_p, DEFAULT_TOP_P),
            params.json_mode,
        )

    async def execute(self, params: TextCompletionParams) -> Dict[str, Any]:
        model = select_model(params)
        max_tokens = params.max_tokens or DEFAULT_MAX_TOKENS

        logger.info(
            "Making Groq API request",
            extra=get_log_context(tool=self.name, model=model, max_tokens=max_tokens),
        )
        completion = await self.provider.chat_completion(
            model=model,
            messages=build_messages(params),
            temperature=_or_default(params.temperature, DEFAULT_TEMPERATURE),
            max_tokens=max_tokens,
            top_p=_or_default(params.top_p, DEFAULT_TOP_P),
            response_format={"type": "json_object"} if params.json_mode else None,
        )

        usage = completion["usage"]
        self.metrics.record_token_usage(usage["prompt_tokens"], usage["completion_tokens"], model)

        return {
            "content": completion["content"],
            "model": model,
            "usage": usage,
            "finish_reason": completion["finish_reason"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


def _or_default(value: Optional[float], default: float) -> float:
    return default if value is None else value
