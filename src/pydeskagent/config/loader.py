from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

import yaml
from platformdirs import user_config_dir

from .models import AgentConfig
from ..tools.base import ToolOverride
from ..tools.permissions import PermissionRule

APP_NAME = "pydeskagent"

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


def _candidate_paths(cwd: Path) -> list[Path]:
    # project-level (higher priority)
    return [
        cwd / ".pydeskagent.yaml",
        cwd / "pydeskagent.yaml",
        cwd / ".pydeskagent.json",
        cwd / "pydeskagent.json",
    ]


def _global_candidate_paths() -> list[Path]:
    cfg_dir = Path(user_config_dir(APP_NAME))
    return [
        cfg_dir / "pydeskagent.yaml",
        cfg_dir / "pydeskagent.json",
    ]


def _expand_env_placeholders(s: str) -> str:
    def repl(m: re.Match) -> str:
        var = m.group(1)
        val = os.getenv(var)
        if val is None:
            raise ValueError(f"Config placeholder '${{{var}}}' not found in environment.")
        return val

    return _ENV_PATTERN.sub(repl, s)


def _expand(obj: Any) -> Any:
    if isinstance(obj, str):
        return _expand_env_placeholders(obj)
    if isinstance(obj, dict):
        return {k: _expand(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand(v) for v in obj]
    return obj


def _load_file(p: Path) -> dict[str, Any] | None:
    try:
        text = p.read_text(encoding="utf-8")
        if p.suffix in (".yaml", ".yml"):
            obj = yaml.safe_load(text)
        else:
            obj = json.loads(text)
    except (OSError, yaml.YAMLError, json.JSONDecodeError):
        return None
    if isinstance(obj, dict):
        return _expand(obj)
    return None


def _merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dicts(out[k], v)  # type: ignore
        else:
            out[k] = v
    return out


def _positive_int(v: Any) -> int | None:
    if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
        return None
    return v


def load_agent_config(*, cwd: Path, explicit_path: Path | None = None) -> AgentConfig:
    """Load agent config.

    Merge order: global < project < explicit_path.
    """
    merged: dict[str, Any] = {}
    loaded_from: Path | None = None

    for p in _global_candidate_paths():
        if p.exists() and p.is_file():
            obj = _load_file(p)
            if obj is not None:
                merged = _merge_dicts(merged, obj)
                loaded_from = p

    for p in _candidate_paths(cwd):
        if p.exists() and p.is_file():
            obj = _load_file(p)
            if obj is not None:
                merged = _merge_dicts(merged, obj)
                loaded_from = p
                break  # first match wins for project-level

    if explicit_path is not None:
        p = explicit_path.expanduser().resolve()
        if p.exists() and p.is_file():
            obj = _load_file(p)
            if obj is not None:
                merged = _merge_dicts(merged, obj)
                loaded_from = p

    cfg = AgentConfig()
    cfg.loaded_from = loaded_from

    mi = _positive_int(merged.get("max_iterations"))
    if mi is not None:
        cfg.max_iterations = mi

    mc = _positive_int(merged.get("max_tool_result_chars"))
    if mc is not None:
        cfg.max_tool_result_chars = mc

    wd = merged.get("default_working_directory")
    if isinstance(wd, str) and wd.strip():
        cfg.default_working_directory = os.path.expanduser(wd.strip())

    pt = merged.get("permission_timeout")
    if isinstance(pt, (int, float)) and not isinstance(pt, bool) and pt > 0:
        cfg.permission_timeout = float(pt)

    # tools: {id: {enabled, auto_execute|autoExecute}}
    tools = merged.get("tools", {})
    if isinstance(tools, dict):
        for tool_id, obj in tools.items():
            if not isinstance(tool_id, str) or not isinstance(obj, dict):
                continue
            ov = ToolOverride.coerce(obj)
            if ov is not None:
                cfg.tools[tool_id] = ov

    # permissions
    perms = merged.get("permissions", [])
    if isinstance(perms, list):
        for it in perms:
            r = PermissionRule.from_obj(it)
            if r is not None:
                cfg.permissions.append(r)

    return cfg
