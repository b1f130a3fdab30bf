from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError
from rich.console import Console

from .base import Tool, ToolContext, ToolOverride, ToolResult, ToolSpec

console = Console(stderr=True)

Overrides = Mapping[str, Any]


def format_validation_error(tool_name: str, err: ValidationError) -> str:
    lines = [f"Invalid {tool_name} parameters:"]
    for issue in err.errors():
        loc = ".".join(str(p) for p in issue.get("loc", ())) or "(arguments)"
        lines.append(f"- {loc}: {issue.get('msg', 'invalid value')}")
    return "\n".join(lines)


@dataclass
class ToolRegistry:
    _tools: Dict[str, Tool] = field(default_factory=dict)

    def register(self, tool: Tool) -> None:
        tool_id = tool.spec.id
        if tool_id in self._tools:
            console.print(f"[yellow]Tool already registered, overwriting[/yellow]: {tool_id}")
        self._tools[tool_id] = tool

    def unregister(self, tool_id: str) -> bool:
        return self._tools.pop(tool_id, None) is not None

    def get(self, tool_id: str) -> Optional[Tool]:
        """Return a tool if registered, otherwise None.

        The model may name a tool that does not exist; callers turn that into
        a failure result instead of crashing.
        """
        return self._tools.get(tool_id)

    def list(self) -> list[ToolSpec]:
        return [t.spec for t in self._tools.values()]

    def list_enabled(self, overrides: Overrides | None = None) -> list[ToolSpec]:
        out = []
        for spec in self.list():
            ov = _override(overrides, spec.id)
            enabled = ov.enabled if ov is not None and ov.enabled is not None else spec.enabled
            if enabled:
                out.append(spec)
        return out

    def can_auto_execute(self, tool_id: str, overrides: Overrides | None = None) -> bool:
        tool = self._tools.get(tool_id)
        if tool is None:
            return False
        ov = _override(overrides, tool_id)
        if ov is not None and ov.auto_execute is not None:
            return ov.auto_execute
        return tool.spec.auto_execute

    async def execute(self, tool_id: str, args: Any, ctx: ToolContext) -> ToolResult:
        """Validate arguments and run the tool. Never raises for tool-level failures."""
        tool = self._tools.get(tool_id)
        if tool is None:
            return ToolResult(f"Tool {tool_id} not found.", is_error=True)

        try:
            parsed = tool.spec.parameters.model_validate(args if args is not None else {})
        except ValidationError as e:
            return ToolResult(format_validation_error(tool.spec.name, e), is_error=True)

        try:
            return await tool.execute(ctx, parsed)
        except Exception as e:
            return ToolResult(str(e) or f"Tool {tool_id} failed: {type(e).__name__}", is_error=True)


def _override(overrides: Overrides | None, tool_id: str) -> ToolOverride | None:
    if not overrides:
        return None
    return ToolOverride.coerce(overrides.get(tool_id))
