"""Projection of tool argument models into the schema shape handed to the model."""
from __future__ import annotations

from typing import Any

from .base import ToolSpec

ALLOWED_TYPES = {"string", "number", "boolean", "object", "array"}


def _resolve(node: dict[str, Any], defs: dict[str, Any]) -> dict[str, Any]:
    ref = node.get("$ref")
    if isinstance(ref, str):
        target = defs.get(ref.rsplit("/", 1)[-1], {})
        node = {**target, **{k: v for k, v in node.items() if k != "$ref"}}
    options = node.get("anyOf")
    if isinstance(options, list):
        non_null = [o for o in options if isinstance(o, dict) and o.get("type") != "null"]
        if len(non_null) == 1:
            inner = _resolve(non_null[0], defs)
            rest = {k: v for k, v in node.items() if k != "anyOf"}
            node = {**inner, **rest}
    return node


def _project(node: Any, defs: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(node, dict):
        return {"type": "string"}
    node = _resolve(node, defs)

    t = node.get("type")
    if t == "integer":
        t = "number"
    if t is None and "enum" in node:
        t = "string"
    if t not in ALLOWED_TYPES:
        t = "string"

    out: dict[str, Any] = {"type": t}
    if isinstance(node.get("description"), str):
        out["description"] = node["description"]
    if isinstance(node.get("enum"), list):
        out["enum"] = list(node["enum"])
    if t == "array":
        out["items"] = _project(node.get("items", {}), defs)
    if t == "object" and isinstance(node.get("properties"), dict):
        out["properties"] = {k: _project(v, defs) for k, v in node["properties"].items()}
        req = node.get("required")
        if isinstance(req, list) and req:
            out["required"] = list(req)
    return out


def to_model_schema(spec: ToolSpec) -> dict[str, Any]:
    raw = spec.parameters.model_json_schema()
    defs = raw.get("$defs", {})
    props = raw.get("properties", {}) or {}
    return {
        "name": spec.id,
        "description": spec.description,
        "parameters": {
            "type": "object",
            "properties": {k: _project(v, defs) for k, v in props.items()},
            "required": list(raw.get("required", [])),
        },
    }
