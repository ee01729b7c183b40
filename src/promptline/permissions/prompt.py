from __future__ import annotations

from typing import Protocol, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt

from ..errors import UserAbort
from ..tools.danger import DangerClass
from .models import OPTION_LABELS, PermissionDecision

console = Console()

# Single-key answers shown next to each option.
_SHORTCUTS: dict[PermissionDecision, str] = {
    PermissionDecision.ALLOW_ONCE: "y",
    PermissionDecision.ALLOW_ALWAYS: "a",
    PermissionDecision.DENY_ONCE: "n",
    PermissionDecision.DENY_ALWAYS: "d",
}


class Prompter(Protocol):
    def present(
        self,
        prompt_text: str,
        options: Sequence[PermissionDecision],
        *,
        danger: DangerClass = DangerClass.SENSITIVE,
    ) -> PermissionDecision: ...


class ConsolePrompter:
    """Ask on the terminal. EOF or Ctrl-C while asking is a user abort."""

    def __init__(self, console_: Console | None = None):
        self.console = console_ or console

    def present(self, prompt_text: str, options: Sequence[PermissionDecision], *, danger: DangerClass = DangerClass.SENSITIVE) -> PermissionDecision:
        self.console.print(Panel(escape(prompt_text), title="[yellow]Tool requires approval[/yellow]", border_style="yellow"))
        by_key = {_SHORTCUTS[o]: o for o in options}
        legend = "  ".join(f"[bold]{_SHORTCUTS[o]}[/bold]={OPTION_LABELS[o]}" for o in options)
        self.console.print(legend)
        try:
            ans = Prompt.ask("Decision", choices=list(by_key.keys()), default="n", console=self.console)
        except (EOFError, KeyboardInterrupt):
            raise UserAbort("Interrupted at permission prompt")
        return by_key[ans.strip().lower()]


class AutoApprovePrompter:
    """Answer "allow once" for non-destructive prompts; defer the rest.

    Destructive calls always reach the wrapped (human) prompter.
    """

    def __init__(self, fallback: Prompter):
        self.fallback = fallback

    def present(self, prompt_text: str, options: Sequence[PermissionDecision], *, danger: DangerClass = DangerClass.SENSITIVE) -> PermissionDecision:
        if danger is DangerClass.DESTRUCTIVE or PermissionDecision.ALLOW_ONCE not in options:
            return self.fallback.present(prompt_text, options, danger=danger)
        return PermissionDecision.ALLOW_ONCE


class ScriptedPrompter:
    """Replays a fixed list of answers; for tests and non-interactive runs."""

    def __init__(self, answers: Sequence[PermissionDecision]):
        self.answers = list(answers)
        self.prompts: list[str] = []
        self.dangers: list[DangerClass] = []

    def present(self, prompt_text: str, options: Sequence[PermissionDecision], *, danger: DangerClass = DangerClass.SENSITIVE) -> PermissionDecision:
        self.prompts.append(prompt_text)
        self.dangers.append(danger)
        if not self.answers:
            raise UserAbort("No scripted answer left")
        ans = self.answers.pop(0)
        if ans not in options:
            raise ValueError(f"{ans} is not an offered option")
        return ans
