"""Tool abstraction and registry.

A tool is a named, schema-described operation. The dispatcher resolves a
tool by name, lets it validate its arguments, asks it which rate-limit
resource the call is charged against, and then executes it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from toolgateway.app.core.cache import make_cache_key
from toolgateway.app.exceptions import ValidationError


class ToolKind(str, Enum):
    TEXT_COMPLETION = "text_completion"
    AUDIO_TRANSCRIPTION = "audio_transcription"
    VISION_ANALYSIS = "vision_analysis"
    BATCH_PROCESSING = "batch_processing"


@dataclass(frozen=True)
class Admission:
    """What one invocation is charged: a resource key and a token cost."""

    resource_key: str
    token_cost: int = 1


class Tool(ABC):
    """Base class for gateway tools.

    Subclasses set ``name``, ``description``, ``kind`` and ``input_model``
    (a pydantic model whose JSON schema is published as the tool's input
    schema). Tools with a ``cache_ttl`` have their results cached by the
    dispatcher under ``cache_key(params)``.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    kind: ClassVar[ToolKind]
    input_model: ClassVar[Type[BaseModel]]
    cache_ttl: Optional[float] = None

    @property
    def input_schema(self) -> Dict[str, Any]:
        return self.input_model.model_json_schema()

    @property
    def cacheable(self) -> bool:
        return self.cache_ttl is not None

    def parse(self, arguments: Optional[Dict[str, Any]]) -> BaseModel:
        """Validate raw arguments against the input model.

        Raises:
            ValidationError: With a flattened ``field: message`` summary.
        """
        try:
            return self.input_model.model_validate(arguments or {})
        except PydanticValidationError as e:
            errors = e.errors(include_url=False)
            summary = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in errors
            )
            raise ValidationError(f"Invalid arguments for {self.name}: {summary}", errors=errors) from e

    @abstractmethod
    def admission(self, params: BaseModel) -> Admission:
        """Resource key and token cost charged for this invocation."""

    def cache_key(self, params: BaseModel) -> Optional[str]:
        if not self.cacheable:
            return None
        return make_cache_key(self.name, params.model_dump(mode="json"))

    @abstractmethod
    async def execute(self, params: BaseModel) -> Any:
        """Run the tool against the upstream API and return its result."""


class ToolRegistry:
    """Name-unique set of tools, frozen once the server starts serving.

    Example:
        >>> registry = ToolRegistry()
        >>> registry.register(TextCompletionTool(provider, metrics))
        >>> registry.freeze()
    """

    def __init__(self) -> None:
        self._tools: Dict[str, Tool] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, tool: Tool) -> None:
        if self._frozen:
            raise RuntimeError("Tool registry is frozen")
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def freeze(self) -> "ToolRegistry":
        self._frozen = True
        return self

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def list(self) -> List[Tool]:
        return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())
