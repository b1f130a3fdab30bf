from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from rich.console import Console
from rich.panel import Panel

from .abort import AbortController, AbortSignal
from .config.models import AgentConfig
from .errors import AppError, StreamAbortedError, classify_error
from .events.store import EventStore
from .llm.base import (
    Done,
    GenerationCapability,
    ImageResult,
    ModelCapabilities,
    ReasoningDelta,
    TextDelta,
    ToolCallRequest,
    Usage,
)
from .session.models import Message, Session, ToolCall, ToolCallStatus, new_id
from .session.store import SessionRepository
from .sinks import OutputSink, StreamEvent
from .tools.base import ToolContext, ToolOverride
from .tools.permissions import REJECTED_MESSAGE, PermissionGate, PermissionRequest
from .tools.registry import ToolRegistry
from .tools.schema import to_model_schema

console = Console()


class LoopState(str, Enum):
    GENERATING = "generating"
    EXECUTING = "executing"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StreamResult:
    state: LoopState
    paused_for_confirmation: bool = False
    iterations: int = 0
    error: AppError | None = None
    image: ImageResult | None = None
    text: str = ""


class SettingsProvider(Protocol):
    def get_tool_settings(self) -> dict[str, ToolOverride]: ...


@dataclass
class StreamContext:
    """State for one generation turn."""

    sink: OutputSink
    session_id: str
    assistant_message_id: str | None
    abort_signal: AbortSignal
    capabilities: ModelCapabilities
    tool_settings: dict[str, Any] = field(default_factory=dict)
    working_directory: str | None = None
    iterations: int = 0

    def emit(self, event_type: str, payload: dict[str, Any], message_id: str | None = None) -> None:
        self.sink.emit(StreamEvent(
            type=event_type,  # type: ignore[arg-type]
            session_id=self.session_id,
            message_id=message_id or self.assistant_message_id,
            payload=payload,
        ))


class ActiveStreams:
    """One abort controller per session id."""

    def __init__(self) -> None:
        self._controllers: dict[str, AbortController] = {}

    def get(self, session_id: str) -> AbortController | None:
        return self._controllers.get(session_id)

    def acquire(self, session_id: str) -> AbortController:
        controller = self._controllers.get(session_id)
        if controller is None:
            controller = AbortController()
            self._controllers[session_id] = controller
        return controller

    def remove(self, session_id: str, controller: AbortController | None = None) -> AbortController | None:
        current = self._controllers.get(session_id)
        if current is None or (controller is not None and current is not controller):
            return None
        return self._controllers.pop(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._controllers

    def __len__(self) -> int:
        return len(self._controllers)


@dataclass
class AssistantTurn:
    text: str = ""
    reasoning_content: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    usage: Usage | None = None
    finish_reason: str = "stop"


def _truncate(content: str, limit: int) -> str:
    if len(content) <= limit:
        return content
    head = content[: limit // 2]
    tail = content[-(limit // 2):]
    return head + "\n\n... (truncated) ...\n\n" + tail


def _last_tool_message(session: Session) -> Message | None:
    """Most recent assistant message with tool calls, unless a later turn started."""
    for m in reversed(session.messages):
        if m.role == "user":
            return None
        if m.role == "assistant":
            return m if m.tool_calls else None
    return None


class ToolLoop:
    """Generate / execute / confirm state machine for agent turns.

    A turn that reaches a gated tool call returns with
    ``paused_for_confirmation`` instead of blocking. Resumption is a fresh
    call of :meth:`run` (or :meth:`respond`), which re-derives the parked
    calls from the stored messages and the gate's pending requests.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        gate: PermissionGate,
        sessions: SessionRepository,
        settings: SettingsProvider,
        generator: GenerationCapability,
        config: AgentConfig | None = None,
        events: EventStore | None = None,
        trace: bool = False,
        streams: ActiveStreams | None = None,
    ):
        self.registry = registry
        self.gate = gate
        self.sessions = sessions
        self.settings = settings
        self.generator = generator
        self.config = config or AgentConfig()
        self.events = events
        self.trace = trace
        self.streams = streams or ActiveStreams()

    # ---------------- public entry points ----------------

    async def run(
        self,
        session_id: str,
        sink: OutputSink,
        user_message: str | None = None,
        assistant_message_id: str | None = None,
        working_directory: str | None = None,
    ) -> StreamResult:
        return await self._drive(session_id, sink, user_message, assistant_message_id, working_directory)

    async def respond(
        self,
        session_id: str,
        permission_id: str,
        response: str,
        sink: OutputSink,
        message: str | None = None,
    ) -> StreamResult | None:
        """Answer a permission request.

        For a tool confirmation the call is executed (or failed) and the turn
        continues; the new StreamResult is returned. Requests raised from
        inside a running tool only unblock that tool, and unknown ids change
        nothing; both return None.
        """
        req = self.gate.get(session_id, permission_id)
        if req is None:
            return None
        if not self.gate.respond(session_id, permission_id, response, message):
            return None
        approved = response in ("allow", "always", "once")
        self._event(session_id, "permission.respond", {
            "permission_id": permission_id,
            "type": req.type,
            "response": response,
            "tool_call_id": req.call_id,
        })
        if req.type != "tool":
            return None

        async def _settle(sc: StreamContext) -> None:
            await self._settle_confirmed(sc, req, approved, message)

        return await self._drive(session_id, sink, None, None, None, prelude=_settle)

    def cancel(self, session_id: str) -> bool:
        """Abort the session's turn, reject its pending permissions and cancel open calls."""
        controller = self.streams.remove(session_id)
        if controller is not None:
            controller.abort("cancelled")
        cleared = self.gate.clear_session(session_id)
        cancelled = self._cancel_open_calls(session_id)
        self._event(session_id, "stream.cancelled", {
            "had_controller": controller is not None,
            "permissions_cleared": cleared,
            "calls_cancelled": cancelled,
        })
        return controller is not None or cleared > 0 or cancelled > 0

    # ---------------- turn driver ----------------

    async def _drive(
        self,
        session_id: str,
        sink: OutputSink,
        user_message: str | None,
        assistant_message_id: str | None,
        working_directory: str | None,
        prelude: Callable[[StreamContext], Awaitable[None]] | None = None,
    ) -> StreamResult:
        session = self.sessions.get_session(session_id)
        controller = self.streams.acquire(session_id)
        sc = StreamContext(
            sink=sink,
            session_id=session_id,
            assistant_message_id=assistant_message_id,
            abort_signal=controller.signal,
            capabilities=self.generator.capabilities,
            tool_settings=dict(self.settings.get_tool_settings() or {}),
            working_directory=working_directory or session.working_directory,
        )
        result: StreamResult | None = None
        try:
            if prelude is not None:
                await prelude(sc)
            if user_message is not None:
                self._close_open_calls(sc, session, "Cancelled by a new user message.")
                self.sessions.append_message(session_id, Message(role="user", content=user_message))
            if sc.capabilities.image_generation:
                result = await self._run_image(sc, session)
            elif await self._resume(sc, session):
                result = self._paused(sc)
            else:
                result = await self._loop(sc, session)
        except StreamAbortedError:
            self._cancel_open_calls(session_id)
            result = StreamResult(LoopState.CANCELLED, iterations=sc.iterations)
        except Exception as e:
            err = classify_error(e)
            self._event(session_id, "llm.error", {"step": sc.iterations, **err.to_payload()})
            sc.emit("error", err.to_payload())
            result = StreamResult(LoopState.FAILED, iterations=sc.iterations, error=err)
        finally:
            # paused turns keep their controller
            if result is None or result.state is not LoopState.AWAITING_CONFIRMATION:
                self.streams.remove(session_id, controller)
        return result

    def _paused(self, sc: StreamContext) -> StreamResult:
        self._event(sc.session_id, "stream.paused", {"step": sc.iterations})
        return StreamResult(LoopState.AWAITING_CONFIRMATION, paused_for_confirmation=True, iterations=sc.iterations)

    async def _loop(self, sc: StreamContext, session: Session) -> StreamResult:
        preset_id = sc.assistant_message_id
        last_text = ""
        while sc.iterations < self.config.max_iterations:
            sc.iterations += 1
            sc.abort_signal.throw_if_aborted()

            schemas: list[dict[str, Any]] = []
            if sc.capabilities.tool_calls:
                schemas = [to_model_schema(s) for s in self.registry.list_enabled(sc.tool_settings)]

            messages = list(session.messages)
            self._event(sc.session_id, "llm.request", {
                "step": sc.iterations,
                "messages_count": len(messages),
                "tools_count": len(schemas),
            })

            sc.assistant_message_id = preset_id or new_id("msg")
            preset_id = None

            t0 = time.perf_counter()
            turn = await sc.abort_signal.race(self._consume(sc, messages, schemas))
            llm_elapsed_ms = int((time.perf_counter() - t0) * 1000)

            calls = [
                ToolCall(id=req.id or new_id("call"), tool_id=req.name, arguments=dict(req.arguments or {}))
                for req in turn.tool_calls
            ]
            msg = Message(
                role="assistant",
                content=turn.text or None,
                id=sc.assistant_message_id,
                tool_calls=calls or None,
                reasoning_content=turn.reasoning_content or None,
            )
            self.sessions.append_message(sc.session_id, msg)
            if turn.text:
                last_text = turn.text

            self._event(sc.session_id, "llm.response", {
                "step": sc.iterations,
                "elapsed_ms": llm_elapsed_ms,
                "text": (turn.text or "")[:4000],
                "finish_reason": turn.finish_reason,
                "usage": turn.usage.__dict__ if turn.usage else None,
                "tool_calls": [{"id": c.id, "name": c.tool_id, "arguments": c.arguments} for c in calls],
            })

            if not calls:
                sc.emit("done", {"finish_reason": turn.finish_reason, "iterations": sc.iterations})
                self._event(sc.session_id, "stream.done", {"step": sc.iterations})
                return StreamResult(LoopState.DONE, iterations=sc.iterations, text=last_text)

            for call in calls:
                self._emit_call(sc, msg, call)

            # processed strictly in emission order; the first gated call parks the rest
            for call in calls:
                if await self._process_call(sc, msg, call):
                    return self._paused(sc)

        self._event(sc.session_id, "stream.max_iterations", {"max_iterations": self.config.max_iterations})
        sc.emit("done", {"finish_reason": "max_iterations", "iterations": sc.iterations})
        return StreamResult(LoopState.DONE, iterations=sc.iterations, text=last_text)

    async def _consume(
        self,
        sc: StreamContext,
        messages: list[Message],
        schemas: list[dict[str, Any]],
    ) -> AssistantTurn:
        turn = AssistantTurn()
        async for chunk in self.generator.generate(messages, schemas, sc.abort_signal):
            if isinstance(chunk, TextDelta):
                turn.text += chunk.text
                sc.emit("text", {"delta": chunk.text})
            elif isinstance(chunk, ReasoningDelta):
                turn.reasoning_content += chunk.text
                sc.emit("reasoning", {"delta": chunk.text})
            elif isinstance(chunk, ToolCallRequest):
                turn.tool_calls.append(chunk)
            elif isinstance(chunk, Usage):
                turn.usage = chunk
            elif isinstance(chunk, Done):
                turn.finish_reason = chunk.finish_reason
        return turn

    async def _run_image(self, sc: StreamContext, session: Session) -> StreamResult:
        prompt = ""
        for m in reversed(session.messages):
            if m.role == "user":
                prompt = m.content or ""
                break
        sc.iterations += 1
        sc.assistant_message_id = sc.assistant_message_id or new_id("msg")
        self._event(sc.session_id, "llm.request", {"step": sc.iterations, "mode": "image"})

        image = await sc.abort_signal.race(self.generator.generate_image(prompt, sc.abort_signal))

        self.sessions.append_message(
            sc.session_id,
            Message(role="assistant", content=image.text or None, id=sc.assistant_message_id),
        )
        if image.text:
            sc.emit("text", {"delta": image.text})
        sc.emit("done", {"finish_reason": "stop", "images": list(image.images), "iterations": sc.iterations})
        self._event(sc.session_id, "stream.done", {"step": sc.iterations, "images": len(image.images)})
        return StreamResult(LoopState.DONE, iterations=sc.iterations, image=image, text=image.text)

    # ---------------- tool calls ----------------

    async def _process_call(self, sc: StreamContext, msg: Message, call: ToolCall) -> bool:
        """Run or gate one pending call. Returns True when the turn must pause."""
        tool = self.registry.get(call.tool_id)
        enabled = {s.id for s in self.registry.list_enabled(sc.tool_settings)}
        if tool is None or call.tool_id not in enabled:
            self._event(sc.session_id, "tool.missing", {"step": sc.iterations, "tool": call.tool_id, "tool_call_id": call.id})
            reason = f"Tool {call.tool_id} not found." if tool is None else f"Tool {call.tool_id} is disabled."
            self._fail_call(sc, msg, call, reason)
            return False

        if self.registry.can_auto_execute(call.tool_id, sc.tool_settings):
            await self._execute_call(sc, msg, call)
            return False

        return await self._gate_call(sc, msg, call)

    async def _gate_call(self, sc: StreamContext, msg: Message, call: ToolCall) -> bool:
        if call.status is ToolCallStatus.PENDING:
            self._update(sc, msg, call, status=ToolCallStatus.AWAITING_CONFIRMATION)

        tool = self.registry.get(call.tool_id)
        title = tool.spec.name if tool is not None else call.tool_id
        fut = self.gate.ask(
            session_id=sc.session_id,
            message_id=msg.id,
            call_id=call.id,
            type="tool",
            pattern=[call.tool_id],
            title=title,
            metadata={"tool_id": call.tool_id, "arguments": call.arguments},
        )
        if fut.done():
            # settled by a config rule or an earlier "always" approval
            err = fut.exception() if not fut.cancelled() else None
            if err is None:
                await self._execute_call(sc, msg, call)
            else:
                self._fail_call(sc, msg, call, str(err))
            return False

        req = self.gate.find(sc.session_id, call.id)
        self._update(sc, msg, call, permission_id=req.id if req else None)
        self._event(sc.session_id, "permission.ask", {
            "step": sc.iterations,
            "tool": call.tool_id,
            "tool_call_id": call.id,
            "permission_id": req.id if req else None,
        })
        return True

    async def _settle_confirmed(
        self,
        sc: StreamContext,
        req: PermissionRequest,
        approved: bool,
        message: str | None,
    ) -> None:
        session = self.sessions.get_session(sc.session_id)
        msg = session.get_message(req.message_id or "")
        call = msg.find_tool_call(req.call_id or "") if msg else None
        if msg is None or call is None or call.status is not ToolCallStatus.AWAITING_CONFIRMATION:
            return
        if approved:
            await self._execute_call(sc, msg, call)
        else:
            self._fail_call(sc, msg, call, message or REJECTED_MESSAGE)

    async def _execute_call(self, sc: StreamContext, msg: Message, call: ToolCall) -> None:
        self._update(sc, msg, call, status=ToolCallStatus.EXECUTING)
        self._event(sc.session_id, "tool.call", {
            "step": sc.iterations,
            "tool": call.tool_id,
            "tool_call_id": call.id,
            "args": call.arguments,
        })

        def _on_metadata(metadata: dict[str, Any]) -> None:
            sc.emit("tool-call-update", {
                "call_id": call.id,
                "tool_id": call.tool_id,
                "status": call.status.value,
                "metadata": metadata,
            }, message_id=msg.id)

        tctx = ToolContext(
            session_id=sc.session_id,
            message_id=msg.id,
            call_id=call.id,
            working_directory=sc.working_directory,
            default_working_directory=self.config.default_working_directory,
            abort_signal=sc.abort_signal,
            gate=self.gate,
            on_metadata=_on_metadata,
        )
        t0 = time.perf_counter()
        res = await sc.abort_signal.race(self.registry.execute(call.tool_id, call.arguments, tctx))
        tool_elapsed_ms = int((time.perf_counter() - t0) * 1000)

        self._event(sc.session_id, "tool.result", {
            "step": sc.iterations,
            "tool": call.tool_id,
            "tool_call_id": call.id,
            "is_error": bool(res.is_error),
            "elapsed_ms": tool_elapsed_ms,
            "content_len": len(res.content or ""),
            "content_preview": (res.content or "")[:4000],
        })

        content = _truncate(res.content or "", self.config.max_tool_result_chars)

        if self.trace:
            console.print(
                Panel.fit(
                    content[:1200] + ("..." if len(content) > 1200 else ""),
                    title=f"tool:{call.tool_id} ({'error' if res.is_error else 'ok'})",
                    border_style="red" if res.is_error else "green",
                )
            )

        if res.is_error:
            self._update(sc, msg, call, status=ToolCallStatus.FAILED, error=content)
        else:
            self._update(sc, msg, call, status=ToolCallStatus.COMPLETED, result=content)
        self.sessions.append_message(sc.session_id, Message(role="tool", content=content, tool_call_id=call.id))

    def _fail_call(self, sc: StreamContext, msg: Message, call: ToolCall, reason: str) -> None:
        self._update(sc, msg, call, status=ToolCallStatus.FAILED, error=reason)
        self.sessions.append_message(sc.session_id, Message(role="tool", content=reason, tool_call_id=call.id))

    def _update(self, sc: StreamContext, msg: Message, call: ToolCall, **patch: Any) -> None:
        if call.status.terminal:
            return
        self.sessions.update_tool_call(sc.session_id, msg.id, call.id, **patch)
        self._emit_call(sc, msg, call)

    def _emit_call(self, sc: StreamContext, msg: Message, call: ToolCall) -> None:
        sc.emit("tool-call-update", {
            "call_id": call.id,
            "tool_id": call.tool_id,
            "status": call.status.value,
            "arguments": call.arguments,
            "result": call.result,
            "error": call.error,
            "permission_id": call.permission_id,
        }, message_id=msg.id)

    # ---------------- resumption ----------------

    async def _resume(self, sc: StreamContext, session: Session) -> bool:
        """Continue calls left open by an earlier turn. Returns True when still paused."""
        msg = _last_tool_message(session)
        if msg is None:
            return False
        preset_id, sc.assistant_message_id = sc.assistant_message_id, msg.id

        for call in list(msg.tool_calls or []):
            if call.status.terminal:
                continue
            if call.status is ToolCallStatus.EXECUTING:
                self._event(sc.session_id, "resume.interrupted", {"tool_call_id": call.id, "tool": call.tool_id})
                self._fail_call(sc, msg, call, "Tool execution was interrupted before it completed.")
                continue
            if call.status is ToolCallStatus.AWAITING_CONFIRMATION:
                if self.gate.find(sc.session_id, call.id) is not None:
                    return True
                self._event(sc.session_id, "resume.reask", {"tool_call_id": call.id, "tool": call.tool_id})
                if await self._gate_call(sc, msg, call):
                    return True
                continue
            self._event(sc.session_id, "resume.pending_tools", {"tool_call_id": call.id, "tool": call.tool_id})
            if await self._process_call(sc, msg, call):
                return True

        self._append_missing_results(sc, session, msg)
        sc.assistant_message_id = preset_id
        return False

    def _append_missing_results(self, sc: StreamContext, session: Session, msg: Message) -> None:
        idx = session.messages.index(msg)
        answered = {m.tool_call_id for m in session.messages[idx + 1:] if m.role == "tool"}
        for call in msg.tool_calls or []:
            if call.status.terminal and call.id not in answered:
                if call.status is ToolCallStatus.COMPLETED:
                    content = call.result or ""
                else:
                    content = call.error or f"Tool call {call.status.value}."
                self._event(sc.session_id, "resume.missing_result", {"tool_call_id": call.id})
                self.sessions.append_message(sc.session_id, Message(role="tool", content=content, tool_call_id=call.id))

    def _close_open_calls(self, sc: StreamContext, session: Session, reason: str) -> None:
        msg = _last_tool_message(session)
        if msg is None:
            return
        for call in msg.tool_calls or []:
            if call.status.terminal:
                continue
            req = self.gate.find(sc.session_id, call.id)
            if req is not None:
                self.gate.respond(sc.session_id, req.id, "deny", reason)
            self._update(sc, msg, call, status=ToolCallStatus.CANCELLED, error=reason)
        self._append_missing_results(sc, session, msg)

    def _cancel_open_calls(self, session_id: str) -> int:
        try:
            session = self.sessions.get_session(session_id)
        except KeyError:
            return 0
        count = 0
        for m in session.messages:
            for call in m.tool_calls or []:
                if not call.status.terminal:
                    self.sessions.update_tool_call(
                        session_id, m.id, call.id, status=ToolCallStatus.CANCELLED, error="Cancelled."
                    )
                    count += 1
        return count

    def _event(self, session_id: str, event_type: str, data: dict[str, Any]) -> None:
        if self.events is not None:
            self.events.append(session_id, event_type, data)
