from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator

import yaml

from .base import Chunk, Done, ImageResult, ModelCapabilities, ReasoningDelta, TextDelta, ToolCallRequest, Usage


@dataclass
class ScriptedTurn:
    text: str = ""
    reasoning: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    error: str | None = None

    @staticmethod
    def from_obj(obj: Any) -> "ScriptedTurn":
        if isinstance(obj, str):
            return ScriptedTurn(text=obj)
        if not isinstance(obj, dict):
            raise ValueError(f"Script turn must be a string or mapping, got {type(obj).__name__}")
        calls = []
        for i, tc in enumerate(obj.get("tool_calls") or []):
            calls.append(ToolCallRequest(
                id=str(tc.get("id") or f"call_{i}"),
                name=str(tc["name"]),
                arguments=dict(tc.get("arguments") or {}),
            ))
        return ScriptedTurn(
            text=str(obj.get("text", "")),
            reasoning=str(obj.get("reasoning", "")),
            tool_calls=calls,
            error=obj.get("error"),
        )


class ScriptedGenerator:
    """Generation capability that replays prepared turns, one per ``generate`` call.

    Used for offline runs of the tool loop; an exhausted script answers with
    an empty final turn.
    """

    def __init__(self, turns: list[ScriptedTurn], capabilities: ModelCapabilities | None = None):
        self.turns = list(turns)
        self.capabilities = capabilities or ModelCapabilities()
        self.calls: list[list[Any]] = []
        self.image_prompts: list[str] = []

    @staticmethod
    def load(path: Path) -> "ScriptedGenerator":
        text = path.read_text(encoding="utf-8")
        data = yaml.safe_load(text) if path.suffix in (".yaml", ".yml") else json.loads(text)
        if isinstance(data, dict):
            data = data.get("turns", [])
        if not isinstance(data, list):
            raise ValueError(f"Script {path} must contain a list of turns.")
        return ScriptedGenerator([ScriptedTurn.from_obj(t) for t in data])

    async def generate(self, messages, tool_schemas, abort_signal) -> AsyncIterator[Chunk]:
        self.calls.append(list(messages))
        turn = self.turns.pop(0) if self.turns else ScriptedTurn()
        if turn.error:
            raise RuntimeError(turn.error)
        if turn.reasoning:
            yield ReasoningDelta(turn.reasoning)
        # stream the text in a few pieces
        for i in range(0, len(turn.text), 16):
            abort_signal.throw_if_aborted()
            yield TextDelta(turn.text[i:i + 16])
        for call in turn.tool_calls:
            yield call
        yield Usage(input_tokens=sum(len(m.content or "") for m in messages), output_tokens=len(turn.text))
        yield Done("tool_calls" if turn.tool_calls else "stop")

    async def generate_image(self, prompt: str, abort_signal) -> ImageResult:
        self.image_prompts.append(prompt)
        turn = self.turns.pop(0) if self.turns else ScriptedTurn()
        if turn.error:
            raise RuntimeError(turn.error)
        return ImageResult(images=[f"scripted://image/{len(self.image_prompts)}"], text=turn.text)
