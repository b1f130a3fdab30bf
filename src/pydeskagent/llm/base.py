"""Contract of the model-generation capability consumed by the tool loop.

Provider adapters live outside this package; they only need to satisfy
:class:`GenerationCapability`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Protocol, Union

if TYPE_CHECKING:
    from ..abort import AbortSignal
    from ..session.models import Message


@dataclass
class TextDelta:
    text: str


@dataclass
class ReasoningDelta:
    text: str


@dataclass
class ToolCallRequest:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Done:
    finish_reason: str = "stop"


Chunk = Union[TextDelta, ReasoningDelta, ToolCallRequest, Usage, Done]


@dataclass(frozen=True)
class ModelCapabilities:
    image_generation: bool = False
    tool_calls: bool = True


@dataclass
class ImageResult:
    """Output of the single-shot image path: URLs or inline data, plus optional caption."""

    images: list[str] = field(default_factory=list)
    text: str = ""


class GenerationCapability(Protocol):
    capabilities: ModelCapabilities

    def generate(
        self,
        messages: list["Message"],
        tool_schemas: list[dict[str, Any]],
        abort_signal: "AbortSignal",
    ) -> AsyncIterator[Chunk]: ...

    async def generate_image(self, prompt: str, abort_signal: "AbortSignal") -> ImageResult: ...
