from __future__ import annotations
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Literal, Mapping, Protocol

from pydantic import BaseModel

if TYPE_CHECKING:
    from ..abort import AbortSignal
    from .permissions import PermissionGate

Category = Literal["builtin", "custom", "mcp"]

@dataclass(frozen=True)
class ToolSpec:
    id: str
    name: str
    description: str
    parameters: type[BaseModel]   # argument model, projected with to_model_schema()
    auto_execute: bool = False
    category: Category = "builtin"
    enabled: bool = True

class Tool(Protocol):
    spec: ToolSpec
    async def execute(self, ctx: "ToolContext", args: Any) -> "ToolResult": ...

@dataclass
class ToolResult:
    content: str
    is_error: bool = False
    title: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.is_error

    @property
    def error(self) -> str | None:
        return self.content if self.is_error else None

@dataclass
class ToolContext:
    session_id: str
    message_id: str | None = None
    call_id: str | None = None
    # Explicit sandbox directory for this session; falls back to the configured default, then cwd.
    working_directory: str | None = None
    default_working_directory: str | None = None
    abort_signal: "AbortSignal | None" = None
    gate: "PermissionGate | None" = None
    # Real-time title/metadata updates while the tool runs
    on_metadata: Callable[[dict[str, Any]], None] | None = None

    def report(self, **metadata: Any) -> None:
        if self.on_metadata is not None:
            self.on_metadata(metadata)

@dataclass
class ToolOverride:
    enabled: bool | None = None
    auto_execute: bool | None = None

    @staticmethod
    def coerce(obj: Any) -> "ToolOverride | None":
        if obj is None or isinstance(obj, ToolOverride):
            return obj
        if not isinstance(obj, Mapping):
            return None
        enabled = obj.get("enabled")
        auto = obj.get("auto_execute", obj.get("autoExecute"))
        return ToolOverride(
            enabled=enabled if isinstance(enabled, bool) else None,
            auto_execute=auto if isinstance(auto, bool) else None,
        )
