from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import re

from pydantic import BaseModel, Field

from ..base import ToolSpec, ToolResult, ToolContext
from ..sandbox import check_access
from ...util.fs import read_text, relative_or_absolute

class GrepParams(BaseModel):
    pattern: str = Field(description="Regex (default) or literal string if regex=false.")
    path: str = Field(default=".", description="File or directory to search. Default '.'")
    regex: bool = True
    include: str | None = Field(default=None, description="Optional glob filter like '*.py'.")
    max_matches: int = Field(default=200, gt=0)

@dataclass
class GrepTool:
    spec: ToolSpec = ToolSpec(
        id="grep",
        name="Grep",
        description="Search for a pattern in files. Returns matching lines with line numbers.",
        parameters=GrepParams,
        auto_execute=True,
    )

    async def execute(self, ctx: ToolContext, args: GrepParams) -> ToolResult:
        target = await check_access(args.path, ctx, "Search")
        if not target.exists():
            return ToolResult(f"Path not found: {args.path}", is_error=True)
        root = target if target.is_dir() else target.parent

        rx = None
        if args.regex:
            try:
                rx = re.compile(args.pattern)
            except re.error as e:
                return ToolResult(f"Invalid regex: {e}", is_error=True)

        files: list[Path] = []
        if target.is_file():
            files = [target]
        else:
            for p in sorted(target.rglob("*")):
                if not p.is_file():
                    continue
                if args.include and not p.match(args.include):
                    continue
                files.append(p)

        out_lines = []
        for f in files:
            try:
                text = read_text(f)
            except OSError:
                continue
            for i, line in enumerate(text.splitlines(), start=1):
                hit = (rx.search(line) is not None) if rx else (args.pattern in line)
                if hit:
                    out_lines.append(f"{relative_or_absolute(f, root)}:{i}: {line}")
                    if len(out_lines) >= args.max_matches:
                        return ToolResult("\n".join(out_lines), title=args.pattern, metadata={"truncated": True})
        return ToolResult("\n".join(out_lines) if out_lines else "(no matches)", title=args.pattern)
