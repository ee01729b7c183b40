from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MemoryPolicy:
    """Knobs for keeping the step log within a reasonable size."""

    # Trim once the log holds more than this many steps.
    max_steps: int = 60

    # Steps kept verbatim at the tail when trimming.
    keep_recent: int = 20

    # Max characters of a single observation kept in memory.
    max_observation_chars: int = 12000

    def __post_init__(self) -> None:
        if self.max_steps < 2:
            raise ValueError("memory max_steps must be at least 2")
        if self.keep_recent < 1:
            raise ValueError("memory keep_recent must be at least 1")
        # Leave room for the summary step.
        if self.keep_recent >= self.max_steps:
            object.__setattr__(self, "keep_recent", self.max_steps - 1)
