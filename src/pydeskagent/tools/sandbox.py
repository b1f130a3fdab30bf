from __future__ import annotations

import os
from pathlib import Path

from .base import ToolContext
from .permissions import PermissionRejectedError


def expand_path(path: str) -> str:
    return os.path.expanduser(path)


def _canonical(path: str | Path) -> Path:
    return Path(expand_path(str(path))).resolve()


def resolve_boundary(explicit_dir: str | None = None, default_dir: str | None = None) -> Path:
    """Sandbox root: explicit dir, else configured default, else the process cwd."""
    for candidate in (explicit_dir, default_dir):
        if candidate:
            return _canonical(candidate)
    return Path.cwd().resolve()


def is_contained(boundary: str | Path, target: str | Path) -> bool:
    b = str(_canonical(boundary))
    t = str(_canonical(target))
    return t == b or t.startswith(b.rstrip(os.sep) + os.sep)


async def check_access(path: str, ctx: ToolContext, operation: str) -> Path:
    """Return the absolute path, asking the gate first when it leaves the boundary.

    Raises PermissionRejectedError when the request is rejected.
    """
    boundary = resolve_boundary(ctx.working_directory, ctx.default_working_directory)
    p = Path(expand_path(path))
    target = (p if p.is_absolute() else boundary / p).resolve()
    if is_contained(boundary, target):
        return target

    if ctx.gate is None:
        raise PermissionRejectedError(f"{operation} outside {boundary} requires permission: {target}")

    await ctx.gate.ask(
        session_id=ctx.session_id,
        message_id=ctx.message_id,
        call_id=ctx.call_id,
        type="external_directory",
        pattern=[str(target.parent), str(target)],
        title=f"{operation}: {target.name}",
        metadata={"file_path": str(target), "boundary": str(boundary), "operation": operation},
    )
    return target
