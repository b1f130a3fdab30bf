from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import glob as _glob

from pydantic import BaseModel, Field

from ..base import ToolSpec, ToolResult, ToolContext
from ..sandbox import check_access
from ...util.fs import relative_or_absolute

class GlobParams(BaseModel):
    pattern: str = Field(description="Glob pattern, e.g. 'src/**/*.py'.")
    path: str = Field(default=".", description="Directory to search from.")
    max_results: int = Field(default=200, gt=0)

@dataclass
class GlobTool:
    spec: ToolSpec = ToolSpec(
        id="glob",
        name="Glob",
        description="Find files matching a glob pattern.",
        parameters=GlobParams,
        auto_execute=True,
    )

    async def execute(self, ctx: ToolContext, args: GlobParams) -> ToolResult:
        if Path(args.pattern).is_absolute():
            return ToolResult("Pattern must be relative; use path to choose the directory.", is_error=True)
        root = await check_access(args.path, ctx, "Search")
        if not root.is_dir():
            return ToolResult(f"Not a directory: {args.path}", is_error=True)

        matches = sorted(_glob.glob(str(root / args.pattern), recursive=True))
        rel = [relative_or_absolute(Path(m).resolve(), root) for m in matches[:args.max_results]]
        return ToolResult(
            "\n".join(rel) if rel else "(no matches)",
            title=args.pattern,
            metadata={"count": len(matches), "truncated": len(matches) > args.max_results},
        )
