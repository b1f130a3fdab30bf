from __future__ import annotations

import difflib
from dataclasses import dataclass

from .replacers import normalize_line_endings


@dataclass
class DiffSummary:
    diff: str
    additions: int
    deletions: int


def _is_content_line(line: str) -> bool:
    if line.startswith(("---", "+++")):
        return False
    return line.startswith(("+", "-", " "))


def trim_diff(diff: str) -> str:
    """Strip the indentation shared by every non-blank content line of a unified diff."""
    lines = diff.split("\n")
    min_indent: int | None = None
    for line in lines:
        if not _is_content_line(line):
            continue
        body = line[1:]
        if not body.strip():
            continue
        indent = len(body) - len(body.lstrip())
        min_indent = indent if min_indent is None else min(min_indent, indent)
    if not min_indent:
        return diff
    return "\n".join(
        line[0] + line[1 + min_indent:] if _is_content_line(line) else line
        for line in lines
    )


def compute_diff(path: str, old: str, new: str) -> DiffSummary:
    old_lines = normalize_line_endings(old).splitlines(keepends=True)
    new_lines = normalize_line_endings(new).splitlines(keepends=True)
    lines = list(difflib.unified_diff(old_lines, new_lines, fromfile=path, tofile=path))

    # first two lines are the ---/+++ headers
    body = lines[2:]
    additions = sum(1 for line in body if line.startswith("+"))
    deletions = sum(1 for line in body if line.startswith("-"))

    text = "".join(line if line.endswith("\n") else line + "\n" for line in lines)
    return DiffSummary(diff=trim_diff(text.rstrip("\n")), additions=additions, deletions=deletions)
