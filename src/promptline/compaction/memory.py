from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Sequence

from ..session.models import Action, AgentStep, Observation, Thought
from .policy import MemoryPolicy
from .summarizer import SUMMARY_PREFIX, Summarizer


def truncate_text(text: str, max_chars: int, *, marker: str = "... (truncated) ...") -> str:
    """Truncate long text by keeping head + tail.

    This keeps salient context (often errors are at the end) while preventing
    prompt blowups from huge outputs.
    """
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    half = max(1, max_chars // 2)
    return text[:half] + "\n\n" + marker + "\n\n" + text[-half:]


@dataclass
class TrimResult:
    dropped: int
    summary: str | None = None


@dataclass
class Memory:
    """Ordered, append-only log of agent steps, bounded by a policy.

    Trimming is the only operation that removes steps; it always removes a
    prefix, so causal order is preserved.
    """

    policy: MemoryPolicy = field(default_factory=MemoryPolicy)
    _steps: list[AgentStep] = field(default_factory=list)

    def append(self, step: AgentStep) -> AgentStep:
        if isinstance(step, Observation) and step.ok:
            clipped = truncate_text(step.payload, self.policy.max_observation_chars)
            if clipped != step.payload:
                step = Observation.success(step.call_id, clipped)
        self._steps.append(step)
        return step

    def extend(self, steps: Sequence[AgentStep]) -> None:
        for s in steps:
            self.append(s)

    @property
    def steps(self) -> tuple[AgentStep, ...]:
        return tuple(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[AgentStep]:
        return iter(tuple(self._steps))

    def clear(self) -> None:
        self._steps.clear()

    def last_observation(self) -> Observation | None:
        for s in reversed(self._steps):
            if isinstance(s, Observation):
                return s
        return None

    def pending_action(self) -> Action | None:
        """The most recent Action if no Observation answers it yet."""
        for s in reversed(self._steps):
            if isinstance(s, Observation):
                return None
            if isinstance(s, Action):
                return s
        return None

    def over_bound(self) -> bool:
        return len(self._steps) > self.policy.max_steps

    def _cut_index(self) -> int:
        steps = self._steps
        cut = len(steps) - self.policy.keep_recent

        # An unanswered action stays, with everything after it.
        pending = self.pending_action()
        if pending is not None:
            for i in range(len(steps) - 1, -1, -1):
                if steps[i] is pending:
                    cut = min(cut, i)
                    break

        # Never separate an action from the observation answering it.
        while 0 < cut < len(steps):
            head, first = steps[cut - 1], steps[cut]
            if isinstance(first, Observation) and isinstance(head, Action) and first.call_id == head.call.call_id:
                cut -= 1
            else:
                break
        return max(cut, 0)

    def trim(self, summarizer: Summarizer | None = None) -> TrimResult | None:
        """Condense the oldest steps once the log exceeds its bound.

        With a summarizer the dropped prefix is replaced by one summary
        Thought; without one it is simply dropped.
        """
        if not self.over_bound():
            return None
        cut = self._cut_index()
        if cut <= 0:
            return None
        head = self._steps[:cut]
        tail = self._steps[cut:]
        summary = None
        if summarizer is not None:
            summary = summarizer.summarize(head)
            self._steps = [Thought(f"{SUMMARY_PREFIX}\n{summary}")] + tail
        else:
            self._steps = list(tail)
        return TrimResult(dropped=len(head), summary=summary)
