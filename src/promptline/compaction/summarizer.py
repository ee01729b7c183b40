from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from ..session.models import Action, AgentStep, Observation, Thought

SUMMARY_PREFIX = "Summary of earlier steps:"

SUMMARY_PROMPT = (
    "You are summarizing the earlier part of a coding agent's work log for future continuation.\n"
    "Write a concise but information-dense summary with these sections:\n"
    "- Goal\n- Key decisions\n- Current state (files touched, commands run, errors)\n- Next steps\n"
    "Keep it under 2500 characters."
)


class Summarizer(Protocol):
    def summarize(self, steps: Sequence[AgentStep]) -> str: ...


class ChatClient(Protocol):
    def chat(self, messages: list[dict[str, Any]], tools: list[dict] | None = None): ...


def _clip(text: str, n: int) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= n else text[: n - 3] + "..."


class OutlineSummarizer:
    """Deterministic summary: which tools ran, what failed, latest notes."""

    def summarize(self, steps: Sequence[AgentStep]) -> str:
        calls: Counter[str] = Counter()
        failures: Counter[str] = Counter()
        names: dict[str, str] = {}
        notes: list[str] = []
        for s in steps:
            if isinstance(s, Action):
                calls[s.call.tool_name] += 1
                names[s.call.call_id] = s.call.tool_name
            elif isinstance(s, Observation) and not s.ok:
                failures[names.get(s.call_id or "", s.error_kind.value)] += 1
            elif isinstance(s, Thought) and s.text.strip():
                notes.append(s.text)

        lines = [f"{len(steps)} earlier steps were condensed."]
        if calls:
            lines.append("Tools used: " + ", ".join(f"{n} x{c}" for n, c in calls.most_common()))
        if failures:
            lines.append("Failures: " + ", ".join(f"{n} x{c}" for n, c in failures.most_common()))
        for note in notes[-3:]:
            lines.append("Note: " + _clip(note, 300))
        return "\n".join(lines)


@dataclass
class ProviderSummarizer:
    """Ask the model for a summary; fall back to the outline on any failure.

    Tools are deliberately not offered to avoid tool calls.
    """

    client: ChatClient
    fallback: Summarizer = OutlineSummarizer()

    def summarize(self, steps: Sequence[AgentStep]) -> str:
        log = "\n".join(_render(s) for s in steps)
        messages = [
            {"role": "system", "content": SUMMARY_PROMPT},
            {"role": "user", "content": log[-60000:]},
        ]
        try:
            turn = self.client.chat(messages, tools=[])
        except Exception:
            return self.fallback.summarize(steps)
        text = (getattr(turn, "text", None) or "").strip()
        return text or self.fallback.summarize(steps)


def _render(step: AgentStep) -> str:
    if isinstance(step, Thought):
        return f"THOUGHT: {step.text}"
    if isinstance(step, Action):
        return f"ACTION {step.call.call_id}: {step.call.tool_name} {dict(step.call.arguments)}"
    return f"OBSERVATION {step.call_id}: {_clip(step.text, 2000)}"
