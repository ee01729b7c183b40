from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Union

from ..tools.danger import DangerClass


@dataclass(frozen=True)
class PermissionKey:
    """Scope at which a decision is cached: a tool plus an optional resource."""

    tool: str
    scope: str | None = None

    def __str__(self) -> str:
        return self.tool if self.scope is None else f"{self.tool}:{self.scope}"


class PermissionDecision(str, Enum):
    ALLOW_ONCE = "allow_once"
    ALLOW_ALWAYS = "allow_always"
    DENY_ONCE = "deny_once"
    DENY_ALWAYS = "deny_always"

    @property
    def durable(self) -> bool:
        return self in (PermissionDecision.ALLOW_ALWAYS, PermissionDecision.DENY_ALWAYS)

    @property
    def allows(self) -> bool:
        return self in (PermissionDecision.ALLOW_ONCE, PermissionDecision.ALLOW_ALWAYS)


# Order in which the options are presented to the user.
PROMPT_OPTIONS: tuple[PermissionDecision, ...] = (
    PermissionDecision.ALLOW_ONCE,
    PermissionDecision.ALLOW_ALWAYS,
    PermissionDecision.DENY_ONCE,
    PermissionDecision.DENY_ALWAYS,
)

OPTION_LABELS: dict[PermissionDecision, str] = {
    PermissionDecision.ALLOW_ONCE: "Allow once",
    PermissionDecision.ALLOW_ALWAYS: "Allow always",
    PermissionDecision.DENY_ONCE: "Deny once",
    PermissionDecision.DENY_ALWAYS: "Deny always",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@dataclass(frozen=True)
class PermissionRecord:
    key: PermissionKey
    decision: PermissionDecision
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.decision.durable:
            raise ValueError(f"Only durable decisions can be stored, got {self.decision.value}")

    def to_obj(self) -> dict[str, Any]:
        return {
            "tool": self.key.tool,
            "scope": self.key.scope,
            "decision": self.decision.value,
            "created_at": self.created_at.isoformat(),
        }

    @staticmethod
    def from_obj(obj: Mapping[str, Any]) -> "PermissionRecord":
        """Parse one stored entry; unknown fields are ignored.

        Raises ValueError for entries that cannot be trusted.
        """
        tool = obj.get("tool")
        if not isinstance(tool, str) or not tool.strip():
            raise ValueError("missing tool")
        scope = obj.get("scope")
        if scope is not None:
            scope = str(scope)
        decision = PermissionDecision(str(obj.get("decision")))
        created_raw = obj.get("created_at")
        if isinstance(created_raw, datetime):
            created = created_raw
        elif isinstance(created_raw, str) and created_raw.strip():
            created = datetime.fromisoformat(created_raw.strip())
        else:
            created = _utcnow()
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return PermissionRecord(key=PermissionKey(tool.strip(), scope), decision=decision, created_at=created)


@dataclass(frozen=True)
class Allow:
    key: PermissionKey


@dataclass(frozen=True)
class Deny:
    key: PermissionKey
    reason: str = "denied by policy"


@dataclass(frozen=True)
class AskUser:
    key: PermissionKey
    prompt_text: str
    danger: DangerClass
    options: tuple[PermissionDecision, ...] = PROMPT_OPTIONS


Verdict = Union[Allow, Deny, AskUser]
