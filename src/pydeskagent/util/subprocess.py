from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from ..abort import AbortSignal

@dataclass
class CmdResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    aborted: bool = False

async def run_cmd(
    cmd: Sequence[str],
    cwd: str,
    timeout: Optional[float] = 120,
    abort_signal: "AbortSignal | None" = None,
) -> CmdResult:
    """Run ``cmd`` without a shell wrapper; kill it on timeout or abort."""
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    communicate = asyncio.ensure_future(proc.communicate())
    waiters = {communicate}
    abort_wait = None
    if abort_signal is not None:
        abort_wait = asyncio.ensure_future(abort_signal.wait())
        waiters.add(abort_wait)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        proc.kill()
        communicate.cancel()
        if abort_wait is not None:
            abort_wait.cancel()
        raise

    if abort_wait is not None and not abort_wait.done():
        abort_wait.cancel()

    if communicate in done:
        out, err = communicate.result()
        return CmdResult(proc.returncode or 0, _decode(out), _decode(err))

    proc.kill()
    out, err = await communicate
    return CmdResult(
        proc.returncode if proc.returncode is not None else -1,
        _decode(out),
        _decode(err),
        timed_out=not done,
        aborted=bool(done),
    )

def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")
