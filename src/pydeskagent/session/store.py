from __future__ import annotations

import json
import os
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from platformdirs import user_data_dir

from ..errors import SessionNotFoundError
from .models import Message, Session, ToolCall

APP_NAME = "pydeskagent"


def default_sessions_dir() -> Path:
    return Path(user_data_dir(APP_NAME)) / "sessions"


class SessionRepository(Protocol):
    def get_session(self, session_id: str) -> Session: ...
    def append_message(self, session_id: str, message: Message) -> None: ...
    def update_tool_call(self, session_id: str, message_id: str, call_id: str, **patch: Any) -> ToolCall: ...


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class SessionStore:
    """In-process session repository with optional JSONL persistence.

    With a ``root`` every mutation is appended to ``<root>/<session>.jsonl``
    (message records and tool-call update records), so a session can be
    rebuilt after a restart by replaying the file.
    """

    def __init__(self, root: Path | None = None):
        self.root = root
        self._sessions: dict[str, Session] = {}
        if root is not None:
            root.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path | None:
        return self.root / f"{session_id}.jsonl" if self.root is not None else None

    def _write(self, session_id: str, record: dict[str, Any]) -> None:
        path = self._path(session_id)
        if path is None:
            return
        # append + flush + fsync
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError:
                pass

    def create_session(self, session_id: str | None = None, working_directory: str | None = None) -> Session:
        sid = session_id or uuid.uuid4().hex[:12]
        session = Session(id=sid, working_directory=working_directory)
        self._sessions[sid] = session
        self._write(sid, {"kind": "session", "id": sid, "working_directory": working_directory})
        return session

    def _replay(self, session_id: str) -> Session | None:
        path = self._path(session_id)
        if path is None or not path.exists():
            return None
        session = Session(id=session_id)
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                # partial trailing line from an interrupted write
                continue
            kind = obj.get("kind")
            if kind == "session":
                session.working_directory = obj.get("working_directory")
            elif kind == "message":
                session.messages.append(Message.from_dict(obj["message"]))
            elif kind == "tool_call":
                msg = session.get_message(obj.get("message_id", ""))
                tc = msg.find_tool_call(obj.get("call_id", "")) if msg else None
                if tc is not None:
                    tc.apply(obj.get("patch") or {})
        return session

    def get_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = self._replay(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            self._sessions[session_id] = session
        return session

    def list_sessions(self) -> list[str]:
        ids = set(self._sessions)
        if self.root is not None:
            ids.update(p.stem for p in self.root.glob("*.jsonl"))
        return sorted(ids)

    def append_message(self, session_id: str, message: Message) -> None:
        session = self.get_session(session_id)
        session.messages.append(message)
        self._write(session_id, {"kind": "message", "message": _jsonable(message.to_dict())})

    def update_tool_call(self, session_id: str, message_id: str, call_id: str, **patch: Any) -> ToolCall:
        session = self.get_session(session_id)
        msg = session.get_message(message_id)
        tc = msg.find_tool_call(call_id) if msg else None
        if tc is None:
            raise KeyError(f"Unknown tool call {call_id} in message {message_id}")
        tc.apply(patch)
        self._write(session_id, {
            "kind": "tool_call",
            "message_id": message_id,
            "call_id": call_id,
            "patch": {k: _plain(v) for k, v in patch.items()},
        })
        return tc


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_jsonable(v) for v in obj]
    return _plain(obj)
