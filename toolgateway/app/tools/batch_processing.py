"""Batch submission: upload a JSONL request file and create a batch job."""

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from toolgateway.app.core.cache import TTLCache, make_cache_key
from toolgateway.app.core.logging import get_log_context, get_logger
from toolgateway.app.exceptions import is_retryable
from toolgateway.app.providers.groq import GroqProvider
from toolgateway.app.tools.base import Admission, Tool, ToolKind

logger = get_logger(__name__)

BATCH_ENDPOINT = "/v1/chat/completions"
MAX_BATCH_REQUESTS = 50000

COMPLETION_WINDOW_HOURS = {"24h": 24, "7d": 168}


class BatchMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class BatchRequestBody(BaseModel):
    model: str
    messages: List[BatchMessage]
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


class BatchRequest(BaseModel):
    custom_id: Optional[str] = None
    method: Literal["POST"] = "POST"
    url: Literal["/v1/chat/completions"] = BATCH_ENDPOINT
    body: BatchRequestBody


class BatchProcessingParams(BaseModel):
    requests: List[BatchRequest] = Field(min_length=1, max_length=MAX_BATCH_REQUESTS)
    completion_window: Literal["24h", "7d"] = "24h"
    metadata: Optional[Dict[str, str]] = None


def build_batch_file(requests: List[BatchRequest]) -> bytes:
    """Render requests as JSONL, giving each a ``custom_id`` if it lacks one."""
    lines = []
    for request in requests:
        line = request.model_dump(mode="json", exclude_none=True)
        line["custom_id"] = request.custom_id or str(uuid.uuid4())
        lines.append(json.dumps(line, ensure_ascii=False))
    return "\n".join(lines).encode("utf-8")


def estimate_completion(window: str, now: Optional[datetime] = None) -> str:
    start = now or datetime.now(timezone.utc)
    return (start + timedelta(hours=COMPLETION_WINDOW_HOURS[window])).isoformat()


class BatchProcessingTool(Tool):
    name = "groq_batch_processing"
    description = "Process large batches of requests with 25% discount"
    kind = ToolKind.BATCH_PROCESSING
    input_model = BatchProcessingParams

    # Uploaded files still waiting for a batch, reused when a submission is retried
    UPLOAD_REUSE_SECONDS = 3600
    MAX_PENDING_UPLOADS = 128

    def __init__(self, provider: GroqProvider):
        self.provider = provider
        self._pending_uploads = TTLCache(max_size=self.MAX_PENDING_UPLOADS)

    def admission(self, params: BatchProcessingParams) -> Admission:
        return Admission(resource_key="batch_processing")

    async def _upload(self, params: BatchProcessingParams, upload_key: str) -> str:
        file_id = self._pending_uploads.get(upload_key)
        if file_id is not None:
            logger.info(
                "Reusing uploaded batch file",
                extra=get_log_context(tool=self.name, file_id=file_id),
            )
            return file_id

        file_id = await self.provider.upload_file(
            build_batch_file(params.requests), "batch_requests.jsonl", purpose="batch"
        )
        self._pending_uploads.set(upload_key, file_id, self.UPLOAD_REUSE_SECONDS)
        return file_id

    async def execute(self, params: BatchProcessingParams) -> Dict[str, Any]:
        count = len(params.requests)
        logger.info(
            "Starting batch processing",
            extra=get_log_context(
                tool=self.name,
                request_count=count,
                completion_window=params.completion_window,
            ),
        )

        upload_key = make_cache_key(params.model_dump(mode="json"))
        file_id = await self._upload(params, upload_key)
        try:
            batch = await self.provider.create_batch(
                input_file_id=file_id,
                completion_window=params.completion_window,
                endpoint=BATCH_ENDPOINT,
                metadata=params.metadata,
            )
        except Exception as e:
            if not is_retryable(e):
                self._pending_uploads.delete(upload_key)
            raise
        self._pending_uploads.delete(upload_key)

        logger.info(
            "Batch processing initiated",
            extra=get_log_context(tool=self.name, batch_id=batch.get("id"), request_count=count),
        )
        return {
            "batch_id": batch.get("id"),
            "status": batch.get("status"),
            "request_count": count,
            "completion_window": params.completion_window,
            "created_at": batch.get("created_at"),
            "estimated_completion": estimate_completion(params.completion_window),
            "cost_savings": "25% discount applied",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
