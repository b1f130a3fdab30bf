from __future__ import annotations
from dataclasses import dataclass

from pydantic import BaseModel, Field

from ..base import ToolSpec, ToolResult, ToolContext
from ..sandbox import check_access
from ...patch.diff import compute_diff
from ...util.fs import read_text, write_text

class WriteParams(BaseModel):
    path: str = Field(description="File path, relative to the working directory or absolute.")
    content: str = Field(description="Full file content.")
    mkdirs: bool = Field(default=True, description="Create parent directories if needed.")

@dataclass
class WriteFileTool:
    spec: ToolSpec = ToolSpec(
        id="write",
        name="Write File",
        description="Create or overwrite a file with the given content.",
        parameters=WriteParams,
    )

    async def execute(self, ctx: ToolContext, args: WriteParams) -> ToolResult:
        p = await check_access(args.path, ctx, "Write")
        if p.is_dir():
            return ToolResult(f"Path is a directory: {args.path}", is_error=True)
        existed = p.exists()
        old = read_text(p) if existed else ""
        if not args.mkdirs and not p.parent.exists():
            return ToolResult(f"Parent directory does not exist: {p.parent}", is_error=True)

        write_text(p, args.content, mkdirs=args.mkdirs)
        summary = compute_diff(str(p), old, args.content)
        verb = "Overwrote" if existed else "Created"
        return ToolResult(
            f"{verb} {args.path} ({len(args.content)} chars, +{summary.additions} -{summary.deletions}).",
            title=p.name,
            metadata={
                "file_path": str(p),
                "created": not existed,
                "diff": summary.diff,
                "additions": summary.additions,
                "deletions": summary.deletions,
            },
        )
