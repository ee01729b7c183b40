from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Callable

from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()


def app_version() -> str:
    try:
        return version("promptline")
    except PackageNotFoundError:
        return "0.0.0+local"


class SlashResult(str, Enum):
    NOT_A_COMMAND = "not_a_command"
    HANDLED = "handled"
    QUIT = "quit"


@dataclass(frozen=True)
class SlashCommand:
    name: str
    aliases: tuple[str, ...]
    usage: str
    help: str
    handler: Callable[[Any, list[str]], SlashResult]


def permissions_table(records) -> Table:
    table = Table(title="Stored permissions")
    table.add_column("tool")
    table.add_column("scope")
    table.add_column("decision")
    table.add_column("created")
    for r in sorted(records, key=lambda r: str(r.key)):
        style = "green" if r.decision.allows else "red"
        table.add_row(escape(r.key.tool), escape(r.key.scope or "*"), f"[{style}]{r.decision.value}[/{style}]", r.created_at.isoformat(timespec="seconds"))
    return table


def _help(ctx, args: list[str]) -> SlashResult:
    for c in COMMANDS:
        names = ", ".join([c.usage, *c.aliases])
        console.print(f"[bold]{escape(names)}[/bold]  {c.help}")
    return SlashResult.HANDLED


def _permissions(ctx, args: list[str]) -> SlashResult:
    records = ctx.store.records()
    if not records:
        console.print("No stored permissions.")
    else:
        console.print(permissions_table(records))
    console.print(f"[dim]{ctx.store.path}[/dim]")
    return SlashResult.HANDLED


def _reset_permissions(ctx, args: list[str]) -> SlashResult:
    tool = args[0] if args else None
    n = ctx.engine.reset(tool=tool)
    what = f" for {tool}" if tool else ""
    console.print(f"Removed {n} stored permission(s){what}.")
    return SlashResult.HANDLED


def _status(ctx, args: list[str]) -> SlashResult:
    loop = ctx.loop
    table = Table.grid(padding=(0, 2))
    table.add_row("session", ctx.session.session_id)
    table.add_row("state", loop.state.value)
    table.add_row("memory", f"{len(loop.memory)} steps (trim above {loop.memory.policy.max_steps})")
    table.add_row("model turns", f"{loop.turns}/{loop.max_steps}")
    table.add_row("executions", str(loop.executions))
    table.add_row("stored permissions", str(len(ctx.store)))
    if loop.outcome is not None:
        table.add_row("last outcome", loop.outcome.reason.value)
    console.print(table)
    return SlashResult.HANDLED


def _model(ctx, args: list[str]) -> SlashResult:
    cfg = ctx.provider_cfg
    table = Table.grid(padding=(0, 2))
    table.add_row("provider", escape(cfg.name))
    table.add_row("model", escape(cfg.model))
    table.add_row("base url", escape(cfg.base_url))
    table.add_row("request timeout", f"{cfg.timeout:g}s")
    console.print(table)
    return SlashResult.HANDLED


def _settings(ctx, args: list[str]) -> SlashResult:
    b = ctx.behavior
    table = Table.grid(padding=(0, 2))
    table.add_row("max steps", str(ctx.loop.max_steps))
    table.add_row("default tool timeout", f"{ctx.loop.executor.default_timeout:g}s")
    overrides = ", ".join(f"{k}={v:g}s" for k, v in sorted(b.tool_timeouts.items())) or "(none)"
    table.add_row("tool timeouts", escape(overrides))
    policy = ctx.loop.memory.policy
    table.add_row("memory", f"trim above {policy.max_steps}, keep {policy.keep_recent}, clip at {policy.max_observation_chars} chars")
    table.add_row("config files", escape(", ".join(str(p) for p in b.loaded_from) or "(defaults)"))
    table.add_row("permissions file", escape(str(ctx.store.path)))
    console.print(table)
    return _permissions(ctx, args)


def _clear(ctx, args: list[str]) -> SlashResult:
    ctx.new_session()
    console.print(f"Started new session {ctx.session.session_id}.")
    return SlashResult.HANDLED


def _version(ctx, args: list[str]) -> SlashResult:
    console.print(f"promptline {app_version()}")
    return SlashResult.HANDLED


def _quit(ctx, args: list[str]) -> SlashResult:
    return SlashResult.QUIT


COMMANDS: list[SlashCommand] = [
    SlashCommand("help", ("/h",), "/help", "Show this help.", _help),
    SlashCommand("permissions", ("/perms",), "/permissions", "List stored permission decisions.", _permissions),
    SlashCommand("reset-permissions", (), "/reset-permissions [tool]", "Forget stored decisions (all, or one tool).", _reset_permissions),
    SlashCommand("status", (), "/status", "Show session and loop state.", _status),
    SlashCommand("model", (), "/model", "Show the provider and model in use.", _model),
    SlashCommand("settings", ("/config",), "/settings", "Show behavior settings and stored permissions.", _settings),
    SlashCommand("clear", ("/new",), "/clear", "Start a new session with empty memory.", _clear),
    SlashCommand("version", ("/v",), "/version", "Show the version.", _version),
    SlashCommand("quit", ("/exit", "/q"), "/quit", "Leave the REPL.", _quit),
]


def find_command(word: str) -> SlashCommand | None:
    for c in COMMANDS:
        if word == "/" + c.name or word in c.aliases:
            return c
    return None


def handle_slash(ctx, line: str) -> SlashResult:
    """Dispatch a REPL line starting with '/'; other lines are not commands."""
    text = line.strip()
    if not text.startswith("/"):
        return SlashResult.NOT_A_COMMAND
    word, *args = text.split()
    cmd = find_command(word.lower())
    if cmd is None:
        console.print(f"[red]Unknown command {escape(word)}.[/red] Type /help for the list.")
        return SlashResult.HANDLED
    return cmd.handler(ctx, args)
