from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

import pytest
from pydantic import BaseModel, Field

from pydeskagent.config.models import AgentConfig, StaticSettings
from pydeskagent.llm.base import ModelCapabilities, ToolCallRequest
from pydeskagent.llm.scripted import ScriptedGenerator, ScriptedTurn
from pydeskagent.runner import ToolLoop
from pydeskagent.session.store import SessionStore
from pydeskagent.sinks import StreamEvent
from pydeskagent.tools.base import ToolContext, ToolResult, ToolSpec
from pydeskagent.tools.permissions import PermissionGate
from pydeskagent.tools.registry import ToolRegistry


class ListSink:
    """Output sink that keeps every event for assertions."""

    def __init__(self) -> None:
        self.events: list[StreamEvent] = []

    def emit(self, event: StreamEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[StreamEvent]:
        return [e for e in self.events if e.type == event_type]

    def statuses(self, call_id: str) -> list[str]:
        return [
            e.payload["status"]
            for e in self.of_type("tool-call-update")
            if e.payload.get("call_id") == call_id and "status" in e.payload
        ]

    @property
    def text(self) -> str:
        return "".join(e.payload.get("delta", "") for e in self.of_type("text"))


class EchoParams(BaseModel):
    text: str = Field(default="", description="Text to echo back.")
    count: int = 1


@dataclass
class CountingTool:
    spec: ToolSpec
    calls: list[Any] = field(default_factory=list)

    async def execute(self, ctx: ToolContext, args: EchoParams) -> ToolResult:
        self.calls.append(args)
        return ToolResult(f"echo:{args.text}")


@dataclass
class FailingTool:
    spec: ToolSpec = ToolSpec(id="boom", name="Boom", description="Always raises.", parameters=EchoParams, auto_execute=True)

    async def execute(self, ctx: ToolContext, args: EchoParams) -> ToolResult:
        raise RuntimeError("boom")


@dataclass
class BlockingTool:
    """Auto-executed tool that waits until ``release`` is set."""

    spec: ToolSpec = ToolSpec(id="block", name="Block", description="Waits.", parameters=EchoParams, auto_execute=True)
    started: asyncio.Event = field(default_factory=asyncio.Event)
    release: asyncio.Event = field(default_factory=asyncio.Event)
    cancelled: bool = False

    async def execute(self, ctx: ToolContext, args: EchoParams) -> ToolResult:
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return ToolResult("released")


@dataclass
class AskingTool:
    """Auto-executed tool that asks the gate from inside its handler."""

    spec: ToolSpec = ToolSpec(id="asker", name="Asker", description="Asks first.", parameters=EchoParams, auto_execute=True)
    finished: int = 0

    async def execute(self, ctx: ToolContext, args: EchoParams) -> ToolResult:
        await ctx.gate.ask(
            session_id=ctx.session_id,
            message_id=ctx.message_id,
            call_id=ctx.call_id,
            type="bash",
            pattern=[f"run {args.text}"],
            title=f"Run: {args.text}",
        )
        self.finished += 1
        return ToolResult(f"ran {args.text}")


def make_tool(tool_id: str, auto_execute: bool = False) -> CountingTool:
    return CountingTool(spec=ToolSpec(
        id=tool_id,
        name=tool_id.title(),
        description=f"{tool_id} tool",
        parameters=EchoParams,
        auto_execute=auto_execute,
    ))


def calls_turn(*calls: tuple[str, str, dict[str, Any]], text: str = "") -> ScriptedTurn:
    """A scripted turn requesting ``(call_id, tool_name, arguments)`` calls."""
    return ScriptedTurn(text=text, tool_calls=[ToolCallRequest(cid, name, args) for cid, name, args in calls])


@pytest.fixture
def echo() -> CountingTool:
    return make_tool("echo", auto_execute=True)


@pytest.fixture
def danger() -> CountingTool:
    return make_tool("danger", auto_execute=False)


@pytest.fixture
def registry(echo: CountingTool, danger: CountingTool) -> ToolRegistry:
    r = ToolRegistry()
    r.register(echo)
    r.register(danger)
    r.register(FailingTool())
    return r


@pytest.fixture
def gate() -> PermissionGate:
    return PermissionGate()


@pytest.fixture
def store() -> SessionStore:
    s = SessionStore()
    s.create_session("s1")
    return s


@pytest.fixture
def sink() -> ListSink:
    return ListSink()


@pytest.fixture
def make_loop(registry: ToolRegistry, gate: PermissionGate, store: SessionStore) -> Callable[..., ToolLoop]:
    def _make(
        turns: list[ScriptedTurn],
        config: AgentConfig | None = None,
        capabilities: ModelCapabilities | None = None,
        **kwargs: Any,
    ) -> ToolLoop:
        cfg = config or AgentConfig()
        return ToolLoop(
            registry=kwargs.pop("registry", registry),
            gate=kwargs.pop("gate", gate),
            sessions=kwargs.pop("sessions", store),
            settings=StaticSettings(cfg),
            generator=ScriptedGenerator(turns, capabilities),
            config=cfg,
            **kwargs,
        )

    return _make


@pytest.fixture
def wait_pending() -> Callable[..., Any]:
    async def _wait(gate: PermissionGate, session_id: str = "s1", count: int = 1) -> list:
        for _ in range(200):
            pending = gate.get_pending(session_id)
            if len(pending) >= count:
                return pending
            await asyncio.sleep(0.01)
        raise AssertionError(f"no pending permission request for {session_id}")

    return _wait
