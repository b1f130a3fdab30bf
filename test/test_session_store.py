from __future__ import annotations

from pathlib import Path

import pytest

from pydeskagent.errors import InvalidTransitionError, SessionNotFoundError
from pydeskagent.events.store import EventStore
from pydeskagent.session.models import Message, ToolCall, ToolCallStatus
from pydeskagent.session.store import SessionStore


class TestToolCallTransitions:
    def test_happy_path(self) -> None:
        call = ToolCall(id="c1", tool_id="edit", arguments={})
        call.transition(ToolCallStatus.AWAITING_CONFIRMATION)
        call.transition(ToolCallStatus.EXECUTING)
        assert call.started_at is not None
        call.transition(ToolCallStatus.COMPLETED)
        assert call.ended_at is not None
        assert call.status.terminal

    def test_terminal_is_final(self) -> None:
        call = ToolCall(id="c1", tool_id="edit", arguments={}, status=ToolCallStatus.FAILED)
        with pytest.raises(InvalidTransitionError):
            call.transition(ToolCallStatus.EXECUTING)

    def test_cannot_skip_execution(self) -> None:
        call = ToolCall(id="c1", tool_id="edit", arguments={})
        with pytest.raises(InvalidTransitionError):
            call.transition(ToolCallStatus.COMPLETED)

    def test_dict_round_trip(self) -> None:
        call = ToolCall(id="c1", tool_id="edit", arguments={"a": 1}, status=ToolCallStatus.EXECUTING)
        assert ToolCall.from_dict(call.to_dict()) == call


class TestInMemoryStore:
    def test_unknown_session(self) -> None:
        with pytest.raises(SessionNotFoundError):
            SessionStore().get_session("missing")

    def test_append_and_update(self) -> None:
        store = SessionStore()
        store.create_session("s1")
        msg = Message(role="assistant", content=None, tool_calls=[ToolCall(id="c1", tool_id="bash", arguments={})])
        store.append_message("s1", msg)
        tc = store.update_tool_call("s1", msg.id, "c1", status=ToolCallStatus.EXECUTING)
        assert tc.status is ToolCallStatus.EXECUTING
        with pytest.raises(KeyError):
            store.update_tool_call("s1", msg.id, "nope", status=ToolCallStatus.FAILED)

    def test_generated_ids(self) -> None:
        store = SessionStore()
        assert store.create_session().id != store.create_session().id


class TestPersistentStore:
    def test_replay(self, tmp_path: Path) -> None:
        store = SessionStore(tmp_path)
        store.create_session("s1", working_directory="/work")
        store.append_message("s1", Message(role="user", content="hi"))
        msg = Message(role="assistant", content="ok", tool_calls=[ToolCall(id="c1", tool_id="bash", arguments={"command": "ls"})])
        store.append_message("s1", msg)
        store.update_tool_call("s1", msg.id, "c1", status=ToolCallStatus.EXECUTING)
        store.update_tool_call("s1", msg.id, "c1", status=ToolCallStatus.COMPLETED, result="a.txt")

        replayed = SessionStore(tmp_path).get_session("s1")
        assert replayed.working_directory == "/work"
        assert [m.role for m in replayed.messages] == ["user", "assistant"]
        call = replayed.messages[1].tool_calls[0]
        assert call.status is ToolCallStatus.COMPLETED
        assert call.result == "a.txt"
        assert call.arguments == {"command": "ls"}

    def test_partial_trailing_line(self, tmp_path: Path) -> None:
        store = SessionStore(tmp_path)
        store.create_session("s1")
        store.append_message("s1", Message(role="user", content="hi"))
        with (tmp_path / "s1.jsonl").open("a", encoding="utf-8") as f:
            f.write('{"kind": "message", "mess')
        assert len(SessionStore(tmp_path).get_session("s1").messages) == 1

    def test_list_sessions(self, tmp_path: Path) -> None:
        SessionStore(tmp_path).create_session("b")
        store = SessionStore(tmp_path)
        store.create_session("a")
        assert store.list_sessions() == ["a", "b"]


class TestEventStore:
    def test_append_and_iterate(self, tmp_path: Path) -> None:
        events = EventStore.open(tmp_path)
        events.append("s1", "tool.call", {"tool": "bash", "path": tmp_path})
        events.append("s1", "tool.result", {"is_error": False})
        with events.path_for("s1").open("a", encoding="utf-8") as f:
            f.write("{broken\n")
        got = list(events.iter_events("s1"))
        assert [e.type for e in got] == ["tool.call", "tool.result"]
        assert got[0].data["path"] == str(tmp_path)

    def test_missing_session(self, tmp_path: Path) -> None:
        assert list(EventStore.open(tmp_path).iter_events("nope")) == []
