"""Tool listing and invocation endpoints."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from toolgateway.app.api.deps import get_dispatcher
from toolgateway.app.middleware.request_id import get_request_id
from toolgateway.app.services.dispatcher import Dispatcher

router = APIRouter(tags=["tools"])


class CallToolRequest(BaseModel):
    """Request model for a tool invocation."""
    name: str = Field(..., min_length=1)
    arguments: Optional[Dict[str, Any]] = None


@router.get("/tools")
async def list_tools(dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
    """List registered tools with their input schemas."""
    return dispatcher.list_tools().model_dump(by_alias=True)


@router.post("/tools/call")
async def call_tool(
    body: CallToolRequest,
    request: Request,
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> Dict[str, Any]:
    """Invoke a tool.

    Tool failures are not HTTP errors: the response is always the result
    envelope, with ``isError: true`` when the invocation failed.
    """
    result = await dispatcher.call_tool(body.name, body.arguments, request_id=get_request_id(request))
    return result.model_dump(by_alias=True, exclude_none=True)


@router.get("/limits/{resource_key:path}")
async def get_limits(resource_key: str, dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
    """Configured limits and remaining points for a rate-limit resource key."""
    return await dispatcher.get_limits(resource_key)
