from __future__ import annotations

import json
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from platformdirs import user_data_dir

APP_NAME = "pydeskagent"


def default_events_dir() -> Path:
    return Path(user_data_dir(APP_NAME)) / "events"


@dataclass
class Event:
    ts: float
    type: str
    data: dict[str, Any]


def _default(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    return repr(obj)


@dataclass
class EventStore:
    """Append-only jsonl event log, one file per session.

    Reading tolerates partially written lines.
    """

    root: Path

    @staticmethod
    def open(root: Path | None = None) -> "EventStore":
        d = root or default_events_dir()
        d.mkdir(parents=True, exist_ok=True)
        return EventStore(root=d)

    def path_for(self, session_id: str) -> Path:
        return self.root / f"{session_id}.jsonl"

    def append(self, session_id: str, event_type: str, data: dict[str, Any]) -> None:
        ev = Event(ts=time.time(), type=event_type, data=data)
        with self.path_for(session_id).open("a", encoding="utf-8") as f:
            f.write(json.dumps(ev.__dict__, ensure_ascii=False, default=_default) + "\n")

    def iter_events(self, session_id: str) -> Iterable[Event]:
        path = self.path_for(session_id)
        if not path.exists():
            return []
        out: list[Event] = []
        for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
                out.append(Event(ts=float(obj.get("ts", 0.0)), type=str(obj.get("type")), data=obj.get("data") or {}))
            except (json.JSONDecodeError, TypeError, ValueError, AttributeError):
                continue
        return out
