from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..compaction.policy import MemoryPolicy


def _positive_number(v: Any) -> float | None:
    if isinstance(v, bool) or not isinstance(v, (int, float)) or v <= 0:
        return None
    return float(v)


def _positive_int(v: Any) -> int | None:
    if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
        return None
    return v


@dataclass
class MemoryConfig:
    max_steps: int = 60
    keep_recent: int = 20
    max_observation_chars: int = 12000

    @staticmethod
    def from_obj(obj: Any) -> "MemoryConfig":
        out = MemoryConfig()
        if not isinstance(obj, dict):
            return out
        for name in ("max_steps", "keep_recent", "max_observation_chars"):
            v = _positive_int(obj.get(name))
            if v is not None:
                setattr(out, name, v)
        return out

    def policy(self) -> MemoryPolicy:
        return MemoryPolicy(
            max_steps=max(self.max_steps, 2),
            keep_recent=self.keep_recent,
            max_observation_chars=self.max_observation_chars,
        )


@dataclass
class BehaviorConfig:
    """Behavior config loaded from JSON.

    Invalid values are ignored and the default kept.
    """

    max_steps: int = 25
    default_tool_timeout: float = 30.0
    tool_timeouts: dict[str, float] = field(default_factory=dict)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    permissions_file: Path | None = None
    system_prompt: str | None = None

    loaded_from: list[Path] = field(default_factory=list)

    def apply(self, obj: dict[str, Any], *, base_dir: Path) -> None:
        ms = _positive_int(obj.get("max_steps"))
        if ms is not None:
            self.max_steps = ms

        dt = _positive_number(obj.get("default_tool_timeout"))
        if dt is not None:
            self.default_tool_timeout = dt

        tt = obj.get("tool_timeouts")
        if isinstance(tt, dict):
            for name, v in tt.items():
                secs = _positive_number(v)
                if isinstance(name, str) and secs is not None:
                    self.tool_timeouts[name] = secs

        if "memory" in obj:
            self.memory = MemoryConfig.from_obj(obj.get("memory"))

        pf = obj.get("permissions_file")
        if isinstance(pf, str) and pf.strip():
            self.permissions_file = (base_dir / pf.strip()).expanduser()

        sp = obj.get("system_prompt")
        if isinstance(sp, str) and sp.strip():
            self.system_prompt = sp
