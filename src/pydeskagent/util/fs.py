from __future__ import annotations
from pathlib import Path

def read_text(path: Path) -> str:
    # bytes + decode keeps CRLF line endings intact
    return path.read_bytes().decode("utf-8", errors="replace")

def write_text(path: Path, content: str, mkdirs: bool = True) -> None:
    if mkdirs:
        path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content.encode("utf-8"))

def relative_or_absolute(path: Path, root: Path) -> str:
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)
