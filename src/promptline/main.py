from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import typer
from rich.align import Align
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .app_context import AppContext, open_permission_store
from .commands.setup import health_checks, init_files
from .commands.slash import SlashResult, app_version, handle_slash, permissions_table
from .config.loader import load_behavior_config
from .events.store import EventStore, summarize_events
from .llm.factory import DEFAULT_REGISTRY_FILE, load_provider_registry
from .permissions.prompt import AutoApprovePrompter, ConsolePrompter
from .runner import LoopOutcome, TerminalReason
from .session.models import Action, Observation, Thought
from .session.store import SessionStore

app = typer.Typer(add_completion=False, help="promptline: local coding agent with permission-gated tools.")
permissions_app = typer.Typer(add_completion=False, help="Inspect or reset stored permission decisions.")
app.add_typer(permissions_app, name="permissions")

console = Console()
err_console = Console(stderr=True)


def _resolve_cwd(cwd: Path | None) -> Path:
    cwd = Path(str(cwd or Path.cwd())).expanduser().resolve()
    if not cwd.is_dir():
        raise typer.BadParameter(f"--cwd must be an existing directory: {cwd}")
    return cwd


def _build_context(
    *,
    provider: str,
    config: Path,
    cwd: Path | None,
    session: str | None,
    behavior_config: Path | None,
    max_steps: int | None,
    timeout: float | None,
    trace: bool,
    stream: bool,
) -> tuple[AppContext, list[str]]:
    if max_steps is not None and max_steps < 1:
        raise typer.BadParameter(f"--max-steps must be at least 1, got {max_steps}")
    if timeout is not None and timeout <= 0:
        raise typer.BadParameter(f"--timeout must be positive, got {timeout:g}")
    try:
        reg = load_provider_registry(config)
        cfg = reg.get(provider)
    except (FileNotFoundError, ValueError) as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(code=2)
    ctx = AppContext.from_env(
        cwd=_resolve_cwd(cwd),
        provider_cfg=cfg,
        session_id=session,
        behavior_config=behavior_config,
        max_steps=max_steps,
        timeout=timeout,
        trace=trace,
        stream=stream,
    )
    return ctx, reg.names()


def _print_header(ctx: AppContext, known: list[str], title: str) -> None:
    table = Table.grid(padding=(0, 2))
    table.add_row("[bold green]cwd[/bold green]", f"[bright_cyan]{ctx.cwd}[/bright_cyan]")
    table.add_row("[bold green]session[/bold green]", f"[bright_cyan]{ctx.session.session_id}[/bright_cyan]")
    table.add_row("[bold green]provider[/bold green]", f"[bright_cyan]{ctx.provider_cfg.name}[/bright_cyan]")
    table.add_row("[bold green]model[/bold green]", f"[bright_cyan]{ctx.provider_cfg.model}[/bright_cyan]")
    table.add_row("[bold green]max steps[/bold green]", f"[bright_cyan]{ctx.behavior.max_steps}[/bright_cyan]")
    table.add_row("[bold green]permissions[/bold green]", f"[bright_cyan]{ctx.store.path} ({len(ctx.store)} stored)[/bright_cyan]")
    loaded = ", ".join(str(p) for p in ctx.behavior.loaded_from) or "(none)"
    table.add_row("[bold green]behavior_config[/bold green]", f"[bright_cyan]{loaded}[/bright_cyan]")
    table.add_row("[bold green]known providers[/bold green]", f"[bright_cyan]{', '.join(known)}[/bright_cyan]")
    console.print(Align.center(Panel(table, title=f"[bold magenta]{title}[/bold magenta]", border_style="bright_blue")))


def _print_outcome(outcome: LoopOutcome) -> None:
    if outcome.reason is TerminalReason.FINISHED:
        console.print("\n[bold]Assistant:[/bold]\n")
        console.print(escape(outcome.summary or "(done)"))
        return
    style = "yellow" if outcome.reason is TerminalReason.ABORTED_USER else "red"
    lines = [f"reason: {outcome.reason.value}", f"model turns: {outcome.turns}", f"tool executions: {outcome.executions}"]
    if outcome.error:
        lines.append(f"error: {outcome.error}")
    if outcome.last_observation is not None:
        lines.append(f"last observation: {outcome.last_observation.text[:500]}")
    console.print(Panel.fit(escape("\n".join(lines)), title="Aborted", border_style=style))


@app.command()
def run(
    prompt: str = typer.Option(..., "--prompt", "-p", help="Task to run once."),
    provider: str = typer.Option(..., "--provider", help="Provider name registered in the YAML registry."),
    config: Path = typer.Option(Path(DEFAULT_REGISTRY_FILE), "--config", help="Provider registry YAML (default: ./promptline.yaml)."),
    cwd: Path = typer.Option(None, "--cwd", help="Working directory (project root). Defaults to current directory."),
    session: str = typer.Option(None, "--session", help="Session id to continue (default creates new)."),
    yes: bool = typer.Option(False, "--yes", help="Allow non-destructive tool calls once without asking."),
    max_steps: int = typer.Option(None, "--max-steps", help="Max model turns before aborting."),
    timeout: float = typer.Option(None, "--timeout", help="Default tool timeout in seconds."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON (promptline.json) path."),
    trace: bool = typer.Option(False, "--trace", help="Print tool calls and results."),
    stream: bool = typer.Option(False, "--stream", help="Stream tokens while generating."),
):
    """Run one task; the exit code reflects how the loop ended."""
    ctx, known = _build_context(
        provider=provider, config=config, cwd=cwd, session=session, behavior_config=behavior_config,
        max_steps=max_steps, timeout=timeout, trace=trace, stream=stream,
    )
    _print_header(ctx, known, "promptline")
    prompter = AutoApprovePrompter(ConsolePrompter()) if yes else ConsolePrompter()
    try:
        console.print(f"\n[bold]You:[/bold] {escape(prompt)}\n")
        ctx.loop.submit(prompt)
        outcome = ctx.loop.run(prompter)
        _print_outcome(outcome)
    finally:
        ctx.close()
    raise typer.Exit(code=outcome.exit_code)


@app.command()
def repl(
    provider: str = typer.Option(..., "--provider", help="Provider name registered in the YAML registry."),
    config: Path = typer.Option(Path(DEFAULT_REGISTRY_FILE), "--config", help="Provider registry YAML (default: ./promptline.yaml)."),
    cwd: Path = typer.Option(None, "--cwd", help="Working directory (project root). Defaults to current directory."),
    session: str = typer.Option(None, "--session", help="Session id to continue (default creates new)."),
    yes: bool = typer.Option(False, "--yes", help="Allow non-destructive tool calls once without asking."),
    max_steps: int = typer.Option(None, "--max-steps", help="Max model turns per message."),
    timeout: float = typer.Option(None, "--timeout", help="Default tool timeout in seconds."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON (promptline.json) path."),
    trace: bool = typer.Option(False, "--trace", help="Print tool calls and results."),
    stream: bool = typer.Option(False, "--stream", help="Stream tokens while generating."),
):
    """Interactive session; type /help for commands."""
    ctx, known = _build_context(
        provider=provider, config=config, cwd=cwd, session=session, behavior_config=behavior_config,
        max_steps=max_steps, timeout=timeout, trace=trace, stream=stream,
    )
    _print_header(ctx, known, "promptline")
    prompter = AutoApprovePrompter(ConsolePrompter()) if yes else ConsolePrompter()
    try:
        while True:
            try:
                user = typer.prompt("You")
            except (EOFError, KeyboardInterrupt, typer.Abort):
                break
            res = handle_slash(ctx, user)
            if res is SlashResult.QUIT:
                break
            if res is SlashResult.HANDLED or not user.strip():
                continue
            ctx.loop.submit(user)
            _print_outcome(ctx.loop.run(prompter))
            console.print()
    finally:
        ctx.close()


@permissions_app.command("list")
def permissions_list(
    cwd: Path = typer.Option(None, "--cwd", help="Working directory used to find promptline.json."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON path."),
):
    """Show stored allow/deny decisions."""
    behavior = load_behavior_config(cwd=_resolve_cwd(cwd), explicit_path=behavior_config)
    store = open_permission_store(behavior, claim=False)
    records = store.records()
    if not records:
        console.print(f"No stored permissions in {store.path}.")
        return
    console.print(permissions_table(records))


@permissions_app.command("reset")
def permissions_reset(
    tool: str = typer.Option(None, "--tool", help="Only forget decisions for this tool."),
    scope: str = typer.Option(None, "--scope", help="Only forget decisions for this scope (with --tool)."),
    cwd: Path = typer.Option(None, "--cwd", help="Working directory used to find promptline.json."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON path."),
):
    """Forget stored decisions so the next matching call asks again."""
    if scope is not None and tool is None:
        raise typer.BadParameter("--scope requires --tool")
    behavior = load_behavior_config(cwd=_resolve_cwd(cwd), explicit_path=behavior_config)
    store = open_permission_store(behavior, claim=False)
    n = store.reset(tool=tool, scope=scope)
    console.print(f"Removed {n} stored permission(s) from {store.path}.")


@permissions_app.command("path")
def permissions_path(
    cwd: Path = typer.Option(None, "--cwd", help="Working directory used to find promptline.json."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON path."),
):
    """Print the permission store location."""
    behavior = load_behavior_config(cwd=_resolve_cwd(cwd), explicit_path=behavior_config)
    store = open_permission_store(behavior, claim=False)
    console.print(str(store.path))


@app.command()
def doctor(
    provider: str = typer.Option(None, "--provider", help="Also check this provider entry."),
    config: Path = typer.Option(Path(DEFAULT_REGISTRY_FILE), "--config", help="Provider registry YAML (default: ./promptline.yaml)."),
    cwd: Path = typer.Option(None, "--cwd", help="Working directory used to find promptline.json."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON path."),
):
    """Check configuration, API keys and the permission store without calling the model."""
    checks = health_checks(cwd=_resolve_cwd(cwd), config=config, provider=provider, behavior_config=behavior_config)
    table = Table(title=f"promptline {app_version()} health check")
    table.add_column("check")
    table.add_column("status")
    table.add_column("detail")
    for c in checks:
        table.add_row(c.name, "[green]ok[/green]" if c.ok else "[red]fail[/red]", escape(c.detail))
    console.print(table)
    if not all(c.ok for c in checks):
        raise typer.Exit(code=1)


@app.command()
def init(
    cwd: Path = typer.Option(None, "--cwd", help="Directory to write the starter files into."),
    force: bool = typer.Option(False, "--force", help="Overwrite existing files."),
):
    """Write a starter provider registry and behavior config."""
    written, skipped = init_files(_resolve_cwd(cwd), force=force)
    for p in written:
        console.print(f"[green]Wrote[/green] {escape(str(p))}")
    for p in skipped:
        console.print(f"[yellow]Kept existing[/yellow] {escape(str(p))} (use --force to overwrite)")
    if written:
        console.print("Next: set OPENAI_API_KEY, then run `promptline doctor --provider openai`.")


@app.command()
def replay(
    session: str = typer.Option(..., "--session", help="Session id to replay."),
    tail: int = typer.Option(50, "--tail", help="Show last N steps."),
):
    """Replay the recorded steps of a saved session."""
    store = SessionStore.open(session_id=session)
    steps = store.steps[-tail:] if tail and tail > 0 else store.steps

    console.print(Panel.fit(f"session: {store.session_id}\nfile: {store.path}\nsteps: {len(store.steps)}", title="Replay"))
    for s in steps:
        if isinstance(s, Thought):
            console.print(Panel(escape(s.text), title="thought", border_style="blue"))
        elif isinstance(s, Action):
            body = json.dumps(dict(s.call.arguments), ensure_ascii=False, indent=2)[:4000]
            console.print(Panel(escape(body), title=f"action {s.call.tool_name} ({s.call.call_id})", border_style="magenta"))
        elif isinstance(s, Observation):
            title = "user" if s.call_id is None and s.ok else f"observation ({s.call_id or '-'})"
            console.print(Panel(escape(s.text[:4000]), title=title, border_style="green" if s.ok else "red"))


@app.command()
def events(
    session: str = typer.Option(..., "--session", help="Session id to inspect events."),
    tail: int = typer.Option(200, "--tail", help="Show last N events."),
):
    """Show recent structured events (model turns, permission prompts, tool calls) for a session."""
    es = EventStore.open(session)
    evs = list(es.iter_events())
    evs = evs[-tail:] if tail and tail > 0 else evs
    console.print(Panel.fit(f"session: {session}\nfile: {es.path}\nevents: {len(evs)}", title="Events"))
    for e in evs:
        ts = datetime.fromtimestamp(e.ts).strftime("%Y-%m-%d %H:%M:%S")
        console.print(Panel.fit(escape(json.dumps(e.data, ensure_ascii=False, indent=2)[:4000]), title=f"{ts}  {e.type}"))


@app.command()
def stats(
    session: str = typer.Option(..., "--session", help="Session id to summarize."),
):
    """Show a compact observability summary for a session (latency, errors, tool usage)."""
    es = EventStore.open(session)
    st = summarize_events(es.iter_events())

    lines = [f"session: {session}", f"events_file: {es.path}"]
    lines.append(f"llm_requests: {st.llm_requests}  llm_errors: {st.llm_errors}")
    if st.llm_avg_ms is not None:
        lines.append(f"llm_avg_latency_ms: {st.llm_avg_ms:.1f}")
    lines.append(f"tool_calls: {st.tool_calls}  tool_failures: {st.tool_failures}  tool_denied: {st.tool_denied}")
    lines.append(f"permission_prompts: {st.prompts}")
    if st.tool_avg_ms is not None:
        lines.append(f"tool_avg_latency_ms: {st.tool_avg_ms:.1f}")
    if st.top_tools:
        lines.append("top_tools:")
        for name, c in st.top_tools:
            lines.append(f"  - {name}: {c}")
    if st.terminations:
        lines.append("terminations: " + ", ".join(st.terminations))

    console.print(Panel.fit("\n".join(lines), title="Stats"))


if __name__ == "__main__":
    app()
