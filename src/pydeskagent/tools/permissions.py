from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from fnmatch import fnmatch
from typing import Any, Callable, Literal

from rich.console import Console

Decision = Literal["allow", "ask", "deny"]
Response = Literal["allow", "always", "deny"]

console = Console(stderr=True)

_ALIASES = {"once": "allow", "reject": "deny"}

REJECTED_MESSAGE = "The user rejected permission to use this tool. You may try again with different parameters."


class PermissionRejectedError(Exception):
    def __init__(self, message: str | None = None, request: "PermissionRequest | None" = None):
        super().__init__(message or REJECTED_MESSAGE)
        self.request = request


@dataclass
class PermissionRule:
    """A single permission rule.

    match supports:
    - "type:<request_type_or_pattern>" -> matches the request type only
    - otherwise: fnmatch against each pattern key of the request
    """

    match: str
    decision: Decision

    @staticmethod
    def from_obj(obj: Any) -> "PermissionRule | None":
        if not isinstance(obj, dict):
            return None
        m = obj.get("match")
        d = obj.get("decision")
        if not isinstance(m, str) or d not in {"allow", "ask", "deny"}:
            return None
        return PermissionRule(match=m, decision=d)

    def matches(self, request_type: str, keys: list[str]) -> bool:
        if self.match.startswith("type:"):
            return fnmatch(request_type, self.match[len("type:") :])
        return any(fnmatch(k, self.match) for k in keys)


@dataclass
class PermissionRequest:
    id: str
    session_id: str
    type: str
    pattern: list[str]
    title: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    message_id: str | None = None
    call_id: str | None = None
    created_at: float = field(default_factory=time.time)
    resolved: bool = False


@dataclass
class _Pending:
    request: PermissionRequest
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None


def _mark_retrieved(fut: asyncio.Future) -> None:
    # Rejections nobody awaits (cleared sessions) must not be reported as unretrieved.
    if not fut.cancelled():
        fut.exception()


class PermissionGate:
    """Ask/respond protocol for human approval, keyed by session and request id.

    ``ask`` returns a future that stays pending until ``respond`` (or
    ``clear_session``) settles it. Nothing is polled; with ``timeout`` set,
    unanswered requests are rejected after that many seconds.
    """

    def __init__(self, rules: list[PermissionRule] | None = None, timeout: float | None = None):
        self.rules = list(rules or [])
        self.timeout = timeout
        self._pending: dict[str, dict[str, _Pending]] = {}
        self._approved: dict[str, set[str]] = {}
        self._subscribers: list[Callable[[PermissionRequest], None]] = []

    # ---------------- rules ----------------

    def decide(self, request_type: str, keys: list[str]) -> Decision:
        decision: Decision = "ask"
        for rule in self.rules:
            # later rules win
            if rule.matches(request_type, keys):
                decision = rule.decision
        return decision

    def _covered(self, session_id: str, keys: list[str]) -> bool:
        approved = self._approved.get(session_id)
        if not approved or not keys:
            return False
        return all(any(k == a or fnmatch(k, a) for a in approved) for k in keys)

    # ---------------- protocol ----------------

    def ask(
        self,
        *,
        session_id: str,
        type: str,
        pattern: str | list[str],
        title: str = "",
        metadata: dict[str, Any] | None = None,
        message_id: str | None = None,
        call_id: str | None = None,
    ) -> asyncio.Future:
        keys = [pattern] if isinstance(pattern, str) else list(pattern)
        loop = asyncio.get_running_loop()

        if call_id is not None:
            for entry in self._pending.get(session_id, {}).values():
                if entry.request.call_id == call_id:
                    return entry.future

        fut: asyncio.Future = loop.create_future()
        fut.add_done_callback(_mark_retrieved)

        decision = self.decide(type, keys)
        if decision == "deny":
            console.print(f"[red]Denied[/red] {type} ({', '.join(keys)})")
            fut.set_exception(PermissionRejectedError(f"Permission for {type} denied by configuration."))
            return fut
        if decision == "allow" or self._covered(session_id, keys):
            fut.set_result(None)
            return fut

        req = PermissionRequest(
            id=f"perm_{uuid.uuid4().hex[:12]}",
            session_id=session_id,
            type=type,
            pattern=keys,
            title=title,
            metadata=dict(metadata or {}),
            message_id=message_id,
            call_id=call_id,
        )
        entry = _Pending(request=req, future=fut)
        if self.timeout is not None:
            entry.timer = loop.call_later(self.timeout, self._expire, session_id, req.id)
        self._pending.setdefault(session_id, {})[req.id] = entry

        for cb in list(self._subscribers):
            cb(req)
        return fut

    def respond(self, session_id: str, permission_id: str, response: str, message: str | None = None) -> bool:
        entry = self._pending.get(session_id, {}).get(permission_id)
        if entry is None:
            return False
        response = _ALIASES.get(response, response)
        if response not in ("allow", "always", "deny"):
            raise ValueError(f"Unknown permission response: {response}")

        if response == "deny":
            self._settle(entry, PermissionRejectedError(message, entry.request))
            return True

        self._settle(entry, None)
        if response == "always":
            self._approved.setdefault(session_id, set()).update(entry.request.pattern)
            for other in list(self._pending.get(session_id, {}).values()):
                if self._covered(session_id, other.request.pattern):
                    self._settle(other, None)
        return True

    def _settle(self, entry: _Pending, error: BaseException | None) -> None:
        req = entry.request
        session = self._pending.get(req.session_id, {})
        session.pop(req.id, None)
        if not session:
            self._pending.pop(req.session_id, None)
        if entry.timer is not None:
            entry.timer.cancel()
        req.resolved = True
        if entry.future.done():
            return
        if error is None:
            entry.future.set_result(None)
        else:
            entry.future.set_exception(error)

    def _expire(self, session_id: str, permission_id: str) -> None:
        entry = self._pending.get(session_id, {}).get(permission_id)
        if entry is not None:
            self._settle(entry, PermissionRejectedError("Permission request timed out", entry.request))

    # ---------------- queries ----------------

    def get(self, session_id: str, permission_id: str) -> PermissionRequest | None:
        entry = self._pending.get(session_id, {}).get(permission_id)
        return entry.request if entry else None

    def find(self, session_id: str, call_id: str) -> PermissionRequest | None:
        for entry in self._pending.get(session_id, {}).values():
            if entry.request.call_id == call_id:
                return entry.request
        return None

    def get_pending(self, session_id: str) -> list[PermissionRequest]:
        reqs = [e.request for e in self._pending.get(session_id, {}).values()]
        return sorted(reqs, key=lambda r: r.created_at)

    def clear_session(self, session_id: str) -> int:
        entries = list(self._pending.get(session_id, {}).values())
        for entry in entries:
            self._settle(entry, PermissionRejectedError("Session cleared", entry.request))
        self._pending.pop(session_id, None)
        self._approved.pop(session_id, None)
        return len(entries)

    def subscribe(self, callback: Callable[[PermissionRequest], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe
