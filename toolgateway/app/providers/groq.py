"""Groq API provider.

Groq exposes an OpenAI-compatible API, so the official ``openai`` SDK is
used with Groq's base URL and the shared httpx client. The SDK's own retry
loop is disabled: retries are owned by the dispatcher.

Every SDK or transport failure leaving this module is an ``UpstreamError``
carrying the HTTP status and error code used for retry classification.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from toolgateway.app.core.logging import get_logger
from toolgateway.app.exceptions import UpstreamError

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"


class GroqProvider:
    """Thin async client for the Groq endpoints the tools need.

    Args:
        api_key: Groq API key
        base_url: API base URL
        http_client: Optional shared HTTP client for connection pooling
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=self.base_url,
            timeout=timeout,
            max_retries=0,
            http_client=http_client,
        )

    @asynccontextmanager
    async def _upstream_errors(self, operation: str) -> AsyncIterator[None]:
        """Translate SDK and transport exceptions into UpstreamError."""
        try:
            yield
        except openai.APIStatusError as e:
            code = e.code if isinstance(e.code, str) else None
            logger.warning(f"Groq {operation} failed with HTTP {e.status_code}: {e.message}")
            raise UpstreamError(
                f"Groq API error ({e.status_code}): {e.message}",
                status=e.status_code,
                code=code,
            ) from e
        except openai.APITimeoutError as e:
            raise UpstreamError(f"Groq {operation} timed out", code="timeout") from e
        except openai.APIConnectionError as e:
            raise UpstreamError(
                f"Groq {operation} connection error: {e}", code="connection_error"
            ) from e
        except httpx.TimeoutException as e:
            raise UpstreamError(f"Groq {operation} timed out", code="timeout") from e
        except httpx.TransportError as e:
            raise UpstreamError(
                f"Groq {operation} connection error: {e}", code="connection_error"
            ) from e

    async def chat_completion(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        response_format: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Send a non-streaming chat completion request.

        Returns:
            ``{"content", "model", "finish_reason", "usage": {prompt_tokens,
            completion_tokens, total_tokens}}``
        """
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if top_p is not None:
            kwargs["top_p"] = top_p
        if response_format is not None:
            kwargs["response_format"] = response_format

        async with self._upstream_errors("chat completion"):
            response = await self._client.chat.completions.create(**kwargs)

        if not response.choices:
            raise UpstreamError("No response content received from Groq API")

        choice = response.choices[0]
        usage = response.usage
        return {
            "content": choice.message.content or "",
            "model": response.model,
            "finish_reason": choice.finish_reason,
            "usage": {
                "prompt_tokens": usage.prompt_tokens if usage else 0,
                "completion_tokens": usage.completion_tokens if usage else 0,
                "total_tokens": usage.total_tokens if usage else 0,
            },
        }

    async def transcribe(
        self,
        file_path: Path,
        model: str,
        translate: bool = False,
        language: Optional[str] = None,
        prompt: Optional[str] = None,
        response_format: str = "json",
        temperature: float = 0.0,
    ) -> Any:
        """Transcribe an audio file, or translate it to English.

        Returns:
            The transcript text for ``text``/``srt``/``vtt`` formats, the
            response as a dict otherwise.
        """
        kwargs: Dict[str, Any] = {
            "file": (file_path.name, file_path.read_bytes()),
            "model": model,
            "response_format": response_format,
            "temperature": temperature,
        }
        if prompt:
            kwargs["prompt"] = prompt

        if translate:
            async with self._upstream_errors("translation"):
                result = await self._client.audio.translations.create(**kwargs)
        else:
            if language:
                kwargs["language"] = language
            async with self._upstream_errors("transcription"):
                result = await self._client.audio.transcriptions.create(**kwargs)

        if isinstance(result, str):
            return result
        return result.model_dump()

    async def upload_file(self, content: bytes, filename: str, purpose: str = "batch") -> str:
        """Upload a file and return its id."""
        async with self._upstream_errors("file upload"):
            uploaded = await self._client.files.create(file=(filename, content), purpose=purpose)
        return uploaded.id

    async def create_batch(
        self,
        input_file_id: str,
        completion_window: str = "24h",
        endpoint: str = "/v1/chat/completions",
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a batch job over a previously uploaded JSONL file."""
        kwargs: Dict[str, Any] = {
            "input_file_id": input_file_id,
            "endpoint": endpoint,
            "completion_window": completion_window,
        }
        if metadata:
            kwargs["metadata"] = metadata

        async with self._upstream_errors("batch creation"):
            batch = await self._client.batches.create(**kwargs)
        return batch.model_dump()

    async def health_check(self) -> bool:
        """Check upstream reachability by listing models."""
        try:
            async with self._upstream_errors("model listing"):
                await self._client.models.list()
            return True
        except UpstreamError as e:
            logger.warning(f"Groq health check failed: {e}")
            return False

