from __future__ import annotations
from dataclasses import dataclass

from pydantic import BaseModel, Field

from ..base import ToolSpec, ToolResult, ToolContext
from ..sandbox import check_access
from ...util.fs import read_text

class ReadParams(BaseModel):
    path: str = Field(description="File path, relative to the working directory or absolute.")
    start_line: int | None = Field(default=None, ge=1, description="1-based start line (inclusive).")
    end_line: int | None = Field(default=None, ge=1, description="1-based end line (inclusive).")
    max_chars: int = Field(default=40000, gt=0, description="Truncate output after this many characters.")

@dataclass
class ReadFileTool:
    spec: ToolSpec = ToolSpec(
        id="read",
        name="Read File",
        description="Read a UTF-8 text file. Optionally limit to a line range.",
        parameters=ReadParams,
        auto_execute=True,
    )

    async def execute(self, ctx: ToolContext, args: ReadParams) -> ToolResult:
        p = await check_access(args.path, ctx, "Read")
        if not p.exists() or not p.is_file():
            return ToolResult(f"File not found: {args.path}", is_error=True)

        lines = read_text(p).splitlines()

        if args.start_line is not None or args.end_line is not None:
            s = max(1, args.start_line or 1)
            e = min(len(lines), args.end_line or len(lines))
            excerpt = lines[s-1:e]
        else:
            excerpt = lines

        out = "\n".join(excerpt)
        truncated = len(out) > args.max_chars
        if truncated:
            out = out[:args.max_chars] + "\n... (truncated)"
        return ToolResult(out, title=p.name, metadata={"file_path": str(p), "lines": len(lines), "truncated": truncated})
