from __future__ import annotations
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from ..errors import InvalidTransitionError

Role = Literal["system", "user", "assistant", "tool"]

def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"

class ToolCallStatus(str, Enum):
    PENDING = "pending"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (ToolCallStatus.COMPLETED, ToolCallStatus.FAILED, ToolCallStatus.CANCELLED)

_TRANSITIONS: dict[ToolCallStatus, set[ToolCallStatus]] = {
    ToolCallStatus.PENDING: {
        ToolCallStatus.AWAITING_CONFIRMATION,
        ToolCallStatus.EXECUTING,
        ToolCallStatus.FAILED,
        ToolCallStatus.CANCELLED,
    },
    ToolCallStatus.AWAITING_CONFIRMATION: {
        ToolCallStatus.EXECUTING,
        ToolCallStatus.FAILED,
        ToolCallStatus.CANCELLED,
    },
    ToolCallStatus.EXECUTING: {
        ToolCallStatus.COMPLETED,
        ToolCallStatus.FAILED,
        ToolCallStatus.CANCELLED,
    },
    ToolCallStatus.COMPLETED: set(),
    ToolCallStatus.FAILED: set(),
    ToolCallStatus.CANCELLED: set(),
}

@dataclass
class ToolCall:
    id: str
    tool_id: str
    arguments: dict[str, Any]  # parsed json
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: str | None = None
    error: str | None = None
    permission_id: str | None = None
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    ended_at: float | None = None

    def transition(self, status: ToolCallStatus) -> None:
        status = ToolCallStatus(status)
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(f"Tool call {self.id}: {self.status.value} -> {status.value}")
        self.status = status
        now = time.time()
        if status is ToolCallStatus.EXECUTING:
            self.started_at = now
        if status.terminal:
            self.ended_at = now

    def apply(self, patch: dict[str, Any]) -> None:
        """Apply a stored update record; status goes through transition()."""
        for key, value in patch.items():
            if key == "status":
                if ToolCallStatus(value) is not self.status:
                    self.transition(ToolCallStatus(value))
            elif hasattr(self, key):
                setattr(self, key, value)

    def to_dict(self) -> dict[str, Any]:
        d = dict(self.__dict__)
        d["status"] = self.status.value
        return d

    @staticmethod
    def from_dict(obj: dict[str, Any]) -> "ToolCall":
        d = dict(obj)
        d["status"] = ToolCallStatus(d.get("status", "pending"))
        return ToolCall(**d)

@dataclass
class Message:
    role: Role
    # content can be null for assistant messages that only carry tool calls
    content: str | None
    id: str = field(default_factory=lambda: new_id("msg"))
    tool_call_id: str | None = None
    # Assistant-only
    tool_calls: list[ToolCall] | None = None
    reasoning_content: str | None = None
    created_at: float = field(default_factory=time.time)

    def find_tool_call(self, call_id: str) -> ToolCall | None:
        for tc in self.tool_calls or []:
            if tc.id == call_id:
                return tc
        return None

    def to_dict(self) -> dict[str, Any]:
        d = dict(self.__dict__)
        if self.tool_calls is not None:
            d["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return d

    @staticmethod
    def from_dict(obj: dict[str, Any]) -> "Message":
        d = dict(obj)
        if d.get("tool_calls") is not None:
            d["tool_calls"] = [ToolCall.from_dict(tc) for tc in d["tool_calls"]]
        return Message(**d)

@dataclass
class Session:
    id: str
    messages: list[Message] = field(default_factory=list)
    working_directory: str | None = None

    def get_message(self, message_id: str) -> Message | None:
        for m in self.messages:
            if m.id == message_id:
                return m
        return None
