from __future__ import annotations
from dataclasses import dataclass

from pydantic import BaseModel, Field

from ..base import ToolSpec, ToolResult, ToolContext
from ..sandbox import check_access
from ...patch.diff import compute_diff
from ...patch.replacers import PatchError, replace
from ...util.fs import read_text, write_text

class EditParams(BaseModel):
    file_path: str = Field(description="File to modify, relative to the working directory or absolute.")
    old_string: str = Field(description="Text to replace. Empty means replace the whole file (or create it).")
    new_string: str = Field(description="Replacement text; must differ from old_string.")
    replace_all: bool = Field(default=False, description="Replace every occurrence of old_string.")

@dataclass
class EditFileTool:
    spec: ToolSpec = ToolSpec(
        id="edit",
        name="Edit File",
        description=(
            "Replace old_string with new_string in a file. The match tolerates differences in "
            "line endings, indentation and whitespace, but must be unique unless replace_all is set."
        ),
        parameters=EditParams,
    )

    async def execute(self, ctx: ToolContext, args: EditParams) -> ToolResult:
        if args.old_string == args.new_string:
            return ToolResult("old_string and new_string must be different.", is_error=True)

        p = await check_access(args.file_path, ctx, "Edit")
        if p.is_dir():
            return ToolResult(f"Path is a directory: {args.file_path}", is_error=True)

        if args.old_string == "":
            old = read_text(p) if p.exists() else ""
            new = args.new_string
            replacements = 1
        else:
            if not p.exists():
                return ToolResult(f"File not found: {args.file_path}", is_error=True)
            old = read_text(p)
            try:
                new = replace(old, args.old_string, args.new_string, args.replace_all)
            except PatchError as e:
                return ToolResult(str(e), is_error=True)
            replacements = max(1, old.count(args.old_string)) if args.replace_all else 1

        summary = compute_diff(str(p), old, new)
        ctx.report(title=p.name, diff=summary.diff)
        write_text(p, new)
        return ToolResult(
            f"Edited {args.file_path}: {replacements} replacement(s), +{summary.additions} -{summary.deletions}.",
            title=p.name,
            metadata={
                "file_path": str(p),
                "diff": summary.diff,
                "additions": summary.additions,
                "deletions": summary.deletions,
                "replacements": replacements,
            },
        )
