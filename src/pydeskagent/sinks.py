from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from rich.console import Console
from rich.panel import Panel

EventType = Literal["text", "reasoning", "tool-call-update", "done", "error"]


@dataclass
class StreamEvent:
    type: EventType
    session_id: str
    message_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class OutputSink(Protocol):
    def emit(self, event: StreamEvent) -> None: ...


_STATUS_STYLE = {
    "pending": "dim",
    "awaiting-confirmation": "yellow",
    "executing": "cyan",
    "completed": "green",
    "failed": "red",
    "cancelled": "magenta",
}


class RichSink:
    """Renders stream events on a rich console."""

    def __init__(self, console: Console | None = None, show_reasoning: bool = False):
        self.console = console or Console()
        self.show_reasoning = show_reasoning

    def emit(self, event: StreamEvent) -> None:
        p = event.payload
        if event.type == "text":
            self.console.print(p.get("delta", ""), end="", markup=False, highlight=False)
        elif event.type == "reasoning":
            if self.show_reasoning:
                self.console.print(p.get("delta", ""), end="", style="dim italic", markup=False, highlight=False)
        elif event.type == "tool-call-update":
            status = str(p.get("status", ""))
            style = _STATUS_STYLE.get(status, "white")
            self.console.print(f"\n[{style}]● {p.get('tool_id')}[/{style}] {status} [dim]{p.get('call_id')}[/dim]")
        elif event.type == "done":
            self.console.print()
        elif event.type == "error":
            retry = " (retryable)" if p.get("retryable") else ""
            self.console.print(
                Panel.fit(
                    f"{p.get('message')}\n[dim]{p.get('technical_detail', '')}[/dim]",
                    title=f"error: {p.get('category')}{retry}",
                    border_style="red",
                )
            )
