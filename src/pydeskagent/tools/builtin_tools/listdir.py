from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field

from ..base import ToolSpec, ToolResult, ToolContext
from ..sandbox import check_access

class ListParams(BaseModel):
    path: str = Field(default=".", description="Directory path. Default '.'")
    max_entries: int = Field(default=200, gt=0, description="Max entries to return")
    recursive: bool = Field(default=False, description="If true, list recursively")

@dataclass
class ListDirTool:
    spec: ToolSpec = ToolSpec(
        id="list",
        name="List Directory",
        description="List files/directories under a path. Directories end with '/'.",
        parameters=ListParams,
        auto_execute=True,
    )

    async def execute(self, ctx: ToolContext, args: ListParams) -> ToolResult:
        p = await check_access(args.path, ctx, "List")
        if not p.exists():
            return ToolResult(f"Path not found: {args.path}", is_error=True)
        if not p.is_dir():
            return ToolResult(f"Not a directory: {args.path}", is_error=True)

        entries: list[str] = []
        if args.recursive:
            for root, dirs, files in os.walk(p):
                dirs.sort()
                rootp = Path(root)
                for name in dirs:
                    entries.append(str((rootp / name).relative_to(p)) + "/")
                for name in sorted(files):
                    entries.append(str((rootp / name).relative_to(p)))
                if len(entries) >= args.max_entries:
                    break
        else:
            for child in sorted(p.iterdir(), key=lambda x: (not x.is_dir(), x.name.lower())):
                entries.append(child.name + ("/" if child.is_dir() else ""))

        entries = entries[:args.max_entries]
        return ToolResult("\n".join(entries) if entries else "(empty)", title=p.name or str(p))
