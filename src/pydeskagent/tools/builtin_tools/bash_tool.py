from __future__ import annotations
from dataclasses import dataclass
from typing import Literal
import os
import re
import shutil
from pathlib import Path

from pydantic import BaseModel, Field

from ..base import ToolSpec, ToolResult, ToolContext
from ..sandbox import check_access, expand_path, is_contained, resolve_boundary
from ...util.subprocess import run_cmd

Classification = Literal["read-only", "dangerous", "forbidden"]

READ_ONLY_COMMANDS = {
    "cat", "ls", "pwd", "echo", "grep", "egrep", "fgrep", "find",
    "head", "tail", "wc", "file", "which", "whoami", "date", "env",
    "printenv", "less", "more", "diff", "cmp", "stat", "du", "df",
    "tree", "realpath", "dirname", "basename", "readlink", "type",
    "man", "help", "git status", "git log", "git diff", "git branch",
    "git show", "git blame", "git rev-parse", "git -C", "git remote",
    "git tag", "git stash list", "git config --get", "git config --list",
    "python --version", "python3 --version", "pip list", "pip show",
}

DANGEROUS_COMMANDS = {
    "rm", "rmdir", "mv", "cp", "mkdir", "touch", "chmod", "chown",
    "kill", "pkill", "killall", "dd", "truncate", "shred",
    "git add", "git commit", "git push", "git pull", "git merge",
    "git rebase", "git reset", "git checkout", "git stash",
    "pip install", "pip uninstall", "wget", "curl",
}

FORBIDDEN_COMMANDS = {
    "sudo", "su", "shutdown", "reboot", "halt", "poweroff",
    "init", "systemctl", "service", "passwd", "useradd", "userdel",
    "mkfs", "fdisk", "mount", "umount", "chroot",
    "iptables", "firewall-cmd", "ufw", "crontab", "at", "eval", "exec",
}

# Any of these makes a command forbidden regardless of its base command.
FORBIDDEN_PATTERNS = [
    re.compile(r"\brm\s+-rf?\s+[/~]"),
    re.compile(r">\s*/dev/(?!null\b)"),
    re.compile(r"\|\s*(sh|bash)\b"),
    re.compile(r"`.*`"),
    re.compile(r"\$\(.*\)"),
    re.compile(r"(;|&&|\|\|)\s*rm\b"),
]

_REDIRECTION = [re.compile(r"[^<]>\s*[^>]"), re.compile(r">>")]
_ENV_PREFIX = re.compile(r"^(env\s+)?(\w+=\S+\s+)*")
_SEPARATORS = re.compile(r"\|\||&&|;|\||\n|(?<![<>&])&(?![&>])")
_SEVERITY = {"read-only": 0, "dangerous": 1, "forbidden": 2}

# Quoted strings, absolute or home paths, and ./ ../ relative paths.
_PATH_PATTERNS = [
    re.compile(r'"([^"]+)"'),
    re.compile(r"'([^']+)'"),
    re.compile(r"(?:^|\s)(~?/(?:\\ |\S)+)"),
    re.compile(r"(?:^|\s)(\.\.?/(?:\\ |\S)+)"),
]
_SAFE_PATHS = {"/dev/null"}


def base_command(command: str) -> str:
    stripped = _ENV_PREFIX.sub("", command.strip(), count=1)
    m = re.match(r"(\S+)", stripped)
    return m.group(1) if m else ""


def split_commands(command: str) -> list[str]:
    """Split a command line on ; && || | & and newlines."""
    return [s.strip() for s in _SEPARATORS.split(command) if s.strip()]


def _in_set(command: str, commands: set[str]) -> bool:
    if base_command(command) in commands:
        return True
    head = command.strip()
    return any(" " in c and head.startswith(c) for c in commands)


def _classify_segment(segment: str) -> Classification:
    if _in_set(segment, FORBIDDEN_COMMANDS):
        return "forbidden"
    if _in_set(segment, READ_ONLY_COMMANDS):
        return "read-only"
    # unknown commands need confirmation too
    return "dangerous"


def classify_command(command: str) -> Classification:
    """Classify every chained command and keep the most severe result."""
    if any(p.search(command) for p in FORBIDDEN_PATTERNS):
        return "forbidden"
    kinds = [_classify_segment(s) for s in split_commands(command)] or ["dangerous"]
    kind = max(kinds, key=_SEVERITY.__getitem__)
    if kind == "read-only" and any(p.search(command) for p in _REDIRECTION):
        return "dangerous"
    return kind


def extract_paths(command: str, cwd: Path) -> list[Path]:
    """Absolute paths named in the command; relative ones resolve against cwd."""
    found: list[Path] = []
    for pattern in _PATH_PATTERNS:
        for m in pattern.finditer(command):
            raw = m.group(1)
            if not raw or raw.startswith("-") or raw in _SAFE_PATHS:
                continue
            p = Path(expand_path(raw.replace("\\ ", " ")))
            target = (p if p.is_absolute() else cwd / p).resolve()
            if target not in found:
                found.append(target)
    return found


class BashParams(BaseModel):
    command: str = Field(description="Shell command to run.")
    timeout: int = Field(default=120, gt=0, description="Timeout seconds.")
    working_directory: str | None = Field(
        default=None, description="Directory to run in; must be inside the sandbox unless approved."
    )


@dataclass
class BashTool:
    spec: ToolSpec = ToolSpec(
        id="bash",
        name="Bash",
        description=(
            "Run a shell command in the working directory. Read-only commands (cat, ls, grep, ...) "
            "run directly; commands that modify state need user confirmation; system administration "
            "commands are refused. Returns stdout/stderr and exit code."
        ),
        parameters=BashParams,
        auto_execute=True,
    )

    async def execute(self, ctx: ToolContext, args: BashParams) -> ToolResult:
        cmd = args.command.strip()
        if not cmd:
            return ToolResult("Empty command.", is_error=True)

        kind = classify_command(cmd)
        if kind == "forbidden":
            refused = next(
                (base_command(s) for s in split_commands(cmd) if _classify_segment(s) == "forbidden"),
                base_command(cmd),
            )
            return ToolResult(f"Command refused: `{refused}` is not allowed.", is_error=True,
                              metadata={"classification": kind})

        boundary = resolve_boundary(ctx.working_directory, ctx.default_working_directory)
        if args.working_directory:
            cwd = await check_access(args.working_directory, ctx, "Run in")
        else:
            cwd = boundary
        if not cwd.is_dir():
            return ToolResult(f"Not a directory: {cwd}", is_error=True)

        for path in extract_paths(cmd, cwd):
            if not (is_contained(boundary, path) or is_contained(cwd, path)):
                await check_access(str(path), ctx, "Run")

        if kind == "dangerous":
            if ctx.gate is None:
                return ToolResult(f"Command requires confirmation: {cmd}", is_error=True,
                                  metadata={"classification": kind})
            await ctx.gate.ask(
                session_id=ctx.session_id,
                message_id=ctx.message_id,
                call_id=ctx.call_id,
                type="bash",
                pattern=[cmd],
                title=f"Run: {cmd[:80]}",
                metadata={"command": cmd, "cwd": str(cwd), "classification": kind},
            )

        if os.name == "nt":
            parts = ["cmd.exe", "/c", cmd]
        else:
            shell = "bash" if shutil.which("bash") else "sh"
            parts = [shell, "-lc", cmd]

        res = await run_cmd(parts, cwd=str(cwd), timeout=args.timeout, abort_signal=ctx.abort_signal)

        out = ""
        if res.stdout:
            out += f"STDOUT:\n{res.stdout}\n"
        if res.stderr:
            out += f"STDERR:\n{res.stderr}\n"
        if res.timed_out:
            out += f"Command timed out after {args.timeout}s.\n"
        if res.aborted:
            out += "Command aborted.\n"
        out += f"EXIT_CODE: {res.returncode}"
        failed = res.returncode != 0 or res.timed_out or res.aborted
        return ToolResult(out, is_error=failed, title=cmd[:80],
                          metadata={"classification": kind, "exit_code": res.returncode})
