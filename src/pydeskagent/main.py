from __future__ import annotations

from pathlib import Path
import asyncio
import json
import typer
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from datetime import datetime

from .config.loader import load_agent_config
from .config.models import StaticSettings
from .errors import SessionNotFoundError
from .events.store import EventStore
from .llm.scripted import ScriptedGenerator
from .patch.diff import compute_diff
from .patch.replacers import PatchError, replace
from .runner import ToolLoop
from .session.store import SessionStore, default_sessions_dir
from .sinks import RichSink
from .tools.builtin import register_builtin_tools
from .tools.permissions import PermissionGate
from .tools.registry import ToolRegistry
from .tools.sandbox import is_contained, resolve_boundary
from .util.fs import read_text, write_text


app = typer.Typer(add_completion=False, help="pydeskagent: tool registry, permission gate and patch engine for desktop agents.")
console = Console()


def _resolve_cwd(cwd: Path | None) -> Path:
    cwd = Path(str(cwd or Path.cwd())).expanduser().resolve()
    if not cwd.is_dir():
        raise typer.BadParameter(f"--cwd must be an existing directory: {cwd}")
    return cwd


@app.command()
def tools(
    cwd: Path = typer.Option(None, "--cwd", help="Project directory used to find config files."),
    config: Path = typer.Option(None, "--config", help="Explicit config file (YAML or JSON)."),
):
    """List built-in tools with their effective enabled/auto-execute policy."""
    cwd = _resolve_cwd(cwd)
    cfg = load_agent_config(cwd=cwd, explicit_path=config)
    settings = StaticSettings(cfg).get_tool_settings()

    registry = ToolRegistry()
    register_builtin_tools(registry)
    enabled = {s.id for s in registry.list_enabled(settings)}

    table = Table(title="Tools", title_style="bold magenta")
    table.add_column("id", style="bright_cyan")
    table.add_column("name")
    table.add_column("enabled")
    table.add_column("auto-execute")
    table.add_column("description", style="dim")
    for spec in registry.list():
        table.add_row(
            spec.id,
            spec.name,
            "[green]yes[/green]" if spec.id in enabled else "[red]no[/red]",
            "[green]yes[/green]" if registry.can_auto_execute(spec.id, settings) else "[yellow]confirm[/yellow]",
            spec.description,
        )
    console.print(table)
    console.print(f"[dim]config: {cfg.loaded_from or '(defaults)'}[/dim]")


@app.command()
def edit(
    file: Path = typer.Argument(..., help="File to edit."),
    old: str = typer.Option(..., "--old", help="Text to find (empty replaces the whole file)."),
    new: str = typer.Option(..., "--new", help="Replacement text."),
    replace_all: bool = typer.Option(False, "--all", help="Replace every occurrence."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the diff without writing."),
):
    """Apply the multi-strategy patch engine to a file and print the diff."""
    path = file.expanduser().resolve()
    before = read_text(path) if path.exists() else ""
    try:
        after = replace(before, old, new, replace_all)
    except PatchError as e:
        console.print(f"[red]Edit failed[/red]: {e}")
        raise typer.Exit(code=1)

    summary = compute_diff(str(path), before, after)
    if summary.diff:
        console.print(Syntax(summary.diff, "diff", theme="ansi_dark"))
    console.print(f"[green]+{summary.additions}[/green] [red]-{summary.deletions}[/red]")
    if dry_run:
        console.print("[dim](dry run, nothing written)[/dim]")
        return
    write_text(path, after)


@app.command()
def sandbox(
    path: str = typer.Argument(..., help="Path to check."),
    boundary: str = typer.Option(None, "--boundary", help="Sandbox directory (defaults to config, then cwd)."),
    config: Path = typer.Option(None, "--config", help="Explicit config file (YAML or JSON)."),
):
    """Report whether a path is inside the sandbox boundary."""
    cfg = load_agent_config(cwd=Path.cwd(), explicit_path=config)
    root = resolve_boundary(boundary, cfg.default_working_directory)
    target = Path(path).expanduser()
    if not target.is_absolute():
        target = root / target
    target = target.resolve()
    inside = is_contained(root, target)

    table = Table.grid(padding=(0, 2))
    table.add_row("[bold green]boundary[/bold green]", f"[bright_cyan]{root}[/bright_cyan]")
    table.add_row("[bold green]target[/bold green]", f"[bright_cyan]{target}[/bright_cyan]")
    table.add_row(
        "[bold green]contained[/bold green]",
        "[green]yes[/green]" if inside else "[yellow]no (permission required)[/yellow]",
    )
    console.print(Panel(table, title="[bold magenta]sandbox[/bold magenta]", border_style="bright_blue"))


@app.command()
def script(
    file: Path = typer.Argument(..., help="YAML/JSON list of scripted model turns."),
    prompt: str = typer.Option(..., "--prompt", "-p", help="User message that starts the turn."),
    cwd: Path = typer.Option(None, "--cwd", help="Sandbox directory. Defaults to config, then current directory."),
    config: Path = typer.Option(None, "--config", help="Explicit config file (YAML or JSON)."),
    session: str = typer.Option(None, "--session", help="Session id (default creates new)."),
    persist: bool = typer.Option(False, "--persist", help="Persist the session and events under the user data dir."),
    yes: bool = typer.Option(False, "--yes", help="Approve every confirmation request."),
    trace: bool = typer.Option(False, "--trace", help="Print tool results."),
):
    """Drive the tool loop with a scripted model, answering confirmations interactively."""
    cfg = load_agent_config(cwd=Path.cwd(), explicit_path=config)
    workdir = str(_resolve_cwd(cwd)) if cwd else None

    registry = ToolRegistry()
    register_builtin_tools(registry)
    gate = PermissionGate(rules=cfg.permissions, timeout=cfg.permission_timeout)
    store = SessionStore(default_sessions_dir() if persist else None)
    loop = ToolLoop(
        registry=registry,
        gate=gate,
        sessions=store,
        settings=StaticSettings(cfg),
        generator=ScriptedGenerator.load(file),
        config=cfg,
        events=EventStore.open() if persist else None,
        trace=trace,
    )
    try:
        sess = store.get_session(session) if session else None
    except SessionNotFoundError:
        sess = None
    sess = sess or store.create_session(session, working_directory=workdir)
    sink = RichSink(console)

    console.print(Panel.fit(f"session: {sess.id}\nsandbox: {resolve_boundary(workdir or sess.working_directory, cfg.default_working_directory)}", title="[bold magenta]pydeskagent[/bold magenta]", border_style="bright_blue"))
    console.print(f"\n[bold]You:[/bold] {prompt}\n")

    async def _drive():
        result = await loop.run(sess.id, sink, user_message=prompt)
        while result.paused_for_confirmation:
            pending = gate.get_pending(sess.id)
            if not pending:
                break
            req = pending[0]
            console.print(f"\n[yellow]Tool requires approval[/yellow]: [bold]{req.title}[/bold]\n{json.dumps(req.metadata, ensure_ascii=False, indent=2)[:2000]}")
            if yes:
                answer = "allow"
            else:
                resp = console.input("Approve? [y/N/a(lways)] ").strip().lower()
                answer = {"y": "allow", "yes": "allow", "a": "always", "always": "always"}.get(resp, "deny")
            result = await loop.respond(sess.id, req.id, answer, sink) or result
        return result

    result = asyncio.run(_drive())
    style = {"done": "green", "awaiting-confirmation": "yellow"}.get(result.state.value, "red")
    console.print(f"\n[{style}]{result.state.value}[/{style}] after {result.iterations} iteration(s)")
    if result.state.value == "failed":
        raise typer.Exit(code=1)


@app.command()
def events(
    session: str = typer.Option(..., "--session", help="Session id to inspect events."),
    tail: int = typer.Option(200, "--tail", help="Show last N events."),
    root: Path = typer.Option(None, "--root", help="Events directory (defaults to the user data dir)."),
):
    """Show recent structured events (LLM calls, tool calls, permissions) recorded for a session."""
    es = EventStore.open(root)
    evs = list(es.iter_events(session))
    evs = evs[-tail:] if tail and tail > 0 else evs
    console.print(Panel.fit(f"session: {session}\nfile: {es.path_for(session)}\nevents: {len(evs)}", title="Events"))
    for e in evs:
        ts = datetime.fromtimestamp(e.ts).strftime("%Y-%m-%d %H:%M:%S")
        console.print(Panel.fit(json.dumps(e.data, ensure_ascii=False, indent=2)[:4000], title=f"{ts}  {e.type}"))


@app.command()
def sessions(
    root: Path = typer.Option(None, "--root", help="Sessions directory (defaults to the user data dir)."),
):
    """List persisted sessions with their message counts."""
    store = SessionStore(root or default_sessions_dir())
    table = Table(title="Sessions", show_lines=False)
    table.add_column("id", style="bold")
    table.add_column("messages", justify="right")
    table.add_column("working directory")
    for sid in store.list_sessions():
        sess = store.get_session(sid)
        table.add_row(sid, str(len(sess.messages)), sess.working_directory or "-")
    console.print(table)


if __name__ == "__main__":
    app()
