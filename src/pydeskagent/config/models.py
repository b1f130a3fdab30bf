from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ..tools.base import ToolOverride
from ..tools.permissions import PermissionRule

DEFAULT_MAX_ITERATIONS = 25
DEFAULT_MAX_TOOL_RESULT_CHARS = 12000


@dataclass
class AgentConfig:
    """Runtime configuration of the tool loop, merged from config files."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_tool_result_chars: int = DEFAULT_MAX_TOOL_RESULT_CHARS
    default_working_directory: str | None = None
    # seconds; None keeps permission prompts open until answered
    permission_timeout: float | None = None
    tools: dict[str, ToolOverride] = field(default_factory=dict)
    permissions: list[PermissionRule] = field(default_factory=list)

    loaded_from: Path | None = None


@dataclass
class StaticSettings:
    """Settings provider backed by a loaded AgentConfig."""

    config: AgentConfig

    def get_tool_settings(self) -> dict[str, ToolOverride]:
        return dict(self.config.tools)
