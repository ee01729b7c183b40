from __future__ import annotations

import json
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from platformdirs import user_data_dir

APP_NAME = "promptline"


def _events_dir() -> Path:
    root = Path(user_data_dir(APP_NAME))
    d = root / "events"
    d.mkdir(parents=True, exist_ok=True)
    return d


@dataclass
class Event:
    ts: float
    type: str
    data: dict[str, Any]


@dataclass
class EventStore:
    """Simple jsonl event store per session.

    This is intentionally append-only and tolerant of partial corruption.
    """

    session_id: str
    path: Path

    @staticmethod
    def open(session_id: str, directory: Path | None = None) -> "EventStore":
        d = directory or _events_dir()
        d.mkdir(parents=True, exist_ok=True)
        return EventStore(session_id=session_id, path=d / f"{session_id}.jsonl")

    def append(self, event_type: str, data: dict[str, Any]) -> None:
        ev = Event(ts=time.time(), type=event_type, data=data)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(ev.__dict__, ensure_ascii=False, default=str) + "\n")

    def iter_events(self) -> Iterable[Event]:
        if not self.path.exists():
            return []
        out: list[Event] = []
        for line in self.path.read_text(encoding="utf-8", errors="replace").splitlines():
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
                out.append(Event(ts=float(obj.get("ts", 0.0)), type=str(obj.get("type")), data=obj.get("data") or {}))
            except (ValueError, AttributeError):
                continue
        return out


@dataclass
class EventStats:
    llm_requests: int = 0
    llm_errors: int = 0
    tool_calls: int = 0
    tool_failures: int = 0
    tool_denied: int = 0
    prompts: int = 0
    llm_avg_ms: float | None = None
    tool_avg_ms: float | None = None
    top_tools: list[tuple[str, int]] = field(default_factory=list)
    terminations: list[str] = field(default_factory=list)


def _avg_ms(items: list[Event]) -> float | None:
    vals = [float(e.data["elapsed_ms"]) for e in items if isinstance(e.data.get("elapsed_ms"), (int, float))]
    return (sum(vals) / len(vals)) if vals else None


def summarize_events(events: Iterable[Event]) -> EventStats:
    evs = list(events)
    by_type: dict[str, list[Event]] = {}
    for e in evs:
        by_type.setdefault(e.type, []).append(e)

    tool_res = by_type.get("tool.result", [])
    freq = Counter(str(e.data.get("tool")) for e in by_type.get("tool.call", []) if e.data.get("tool"))
    return EventStats(
        llm_requests=len(by_type.get("llm.request", [])),
        llm_errors=len(by_type.get("llm.error", [])),
        tool_calls=len(by_type.get("tool.call", [])),
        tool_failures=sum(1 for e in tool_res if not e.data.get("ok", True)),
        tool_denied=len(by_type.get("tool.denied", [])),
        prompts=len(by_type.get("permission.ask", [])),
        llm_avg_ms=_avg_ms(by_type.get("llm.response", [])),
        tool_avg_ms=_avg_ms(tool_res),
        top_tools=freq.most_common(12),
        terminations=[str(e.data.get("reason")) for e in by_type.get("loop.terminated", [])],
    )
