from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from platformdirs import user_data_dir

from ..errors import ErrorKind
from .models import Action, AgentStep, Observation, step_from_dict

APP_NAME = "promptline"

INTERRUPTED_MESSAGE = "interrupted before a result was recorded; the action was not re-run"

def _sessions_dir() -> Path:
    root = Path(user_data_dir(APP_NAME))
    d = root / "sessions"
    d.mkdir(parents=True, exist_ok=True)
    return d

@dataclass
class SessionStore:
    """Append-only JSONL transcript of every step of a conversation."""

    session_id: str
    path: Path
    steps: list[AgentStep]

    @staticmethod
    def open(session_id: str | None = None, directory: Path | None = None) -> "SessionStore":
        sid = session_id or uuid.uuid4().hex[:12]
        path = (directory or _sessions_dir()) / f"{sid}.jsonl"
        steps: list[AgentStep] = []
        if path.exists():
            for line in path.read_text(encoding="utf-8").splitlines():
                if not line.strip():
                    continue
                try:
                    steps.append(step_from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError):
                    # Best-effort: ignore corrupted/partial trailing lines.
                    # This can happen if the process was terminated mid-write.
                    continue
        store = SessionStore(session_id=sid, path=path, steps=steps)
        store.close_dangling_action()
        return store

    def close_dangling_action(self) -> Observation | None:
        """Answer an Action left without an Observation by a crashed run.

        The action is reported as failed rather than executed again, since
        the authorization it ran under belonged to the previous process.
        """
        if not self.steps or not isinstance(self.steps[-1], Action):
            return None
        obs = Observation.failure(self.steps[-1].call.call_id, ErrorKind.TOOL_EXECUTION_ERROR, INTERRUPTED_MESSAGE)
        self.append(obs)
        return obs

    def append(self, step: AgentStep) -> None:
        self.steps.append(step)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Crash-safety: append + flush + fsync so a reopened session sees
        # every action that may have run.
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(step.to_dict(), ensure_ascii=False) + "\n")
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError:
                # Best-effort: some filesystems may not support fsync.
                pass

    def extend(self, steps: Iterable[AgentStep]) -> None:
        for s in steps:
            self.append(s)
