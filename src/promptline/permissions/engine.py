from __future__ import annotations

import json
from dataclasses import dataclass

from ..errors import PolicyStoreError, ProtocolViolation
from ..session.models import ToolCall
from ..tools.danger import DangerClass
from ..tools.registry import ToolRegistry
from .models import (
    Allow,
    AskUser,
    Deny,
    OPTION_LABELS,
    PermissionDecision,
    PermissionKey,
    PermissionRecord,
    Verdict,
)
from .store import PermissionStore


def _args_preview(args: dict) -> str:
    try:
        s = json.dumps(args, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        s = str(args)
    if len(s) > 2000:
        s = s[:2000] + "\n... (truncated)"
    return s


def render_prompt(call: ToolCall, key: PermissionKey, danger: DangerClass, stored: PermissionRecord | None) -> str:
    lines = [f"Tool {call.tool_name} wants to run ({danger.value})."]
    lines.append(f"Scope: {key}")
    if danger is DangerClass.DESTRUCTIVE:
        lines.append("This call is classified DESTRUCTIVE and always requires explicit approval.")
        if stored is not None and stored.decision is PermissionDecision.ALLOW_ALWAYS:
            lines.append("A stored 'allow always' grant exists for this scope but does not cover destructive calls.")
    lines.append("Arguments:")
    lines.append(_args_preview(dict(call.arguments)))
    return "\n".join(lines)


@dataclass
class PolicyEngine:
    """Decides Allow / Deny / AskUser for each proposed tool call.

    The engine is the only component that reads or writes the permission store.
    """

    registry: ToolRegistry
    store: PermissionStore

    def classify(self, call: ToolCall) -> tuple[DangerClass, PermissionKey]:
        tool = self.registry.lookup(call.tool_name)
        if tool is None:
            raise ProtocolViolation(f"Unknown tool '{call.tool_name}'")
        args = dict(call.arguments)
        return tool.classify(args), tool.derive_key(args)

    def decide(self, call: ToolCall) -> Verdict:
        danger, key = self.classify(call)
        records = self.lookup(key)
        stored = records[0] if records else None

        # Destructive calls are never authorized by a stored grant.
        if danger is DangerClass.DESTRUCTIVE:
            return AskUser(key=key, prompt_text=render_prompt(call, key, danger, stored), danger=danger)

        for r in records:
            if r.decision is PermissionDecision.DENY_ALWAYS:
                return Deny(key=key, reason=f"denied by policy (stored deny_always for {r.key})")
        for r in records:
            if r.decision is PermissionDecision.ALLOW_ALWAYS:
                return Allow(key=key)

        return AskUser(key=key, prompt_text=render_prompt(call, key, danger, stored), danger=danger)

    def lookup(self, key: PermissionKey) -> list[PermissionRecord]:
        """Stored records covering key: the exact scope first, then the tool-wide one."""
        keys = [key] if key.scope is None else [key, PermissionKey(key.tool)]
        return [r for r in (self.store.get(k) for k in keys) if r is not None]

    def resolve(self, key: PermissionKey, decision: PermissionDecision) -> bool:
        """Apply the user's answer; persist it if durable. Returns whether the call may run.

        Durable answers are flushed before returning. If the write fails the
        in-memory store is rolled back so it keeps matching disk, and
        PolicyStoreError is raised; the answer still applies to this call.
        """
        if decision.durable:
            record = PermissionRecord(key=key, decision=decision)
            previous = self.store.upsert(record)
            try:
                self.store.flush()
            except PolicyStoreError:
                self.store.restore(key, previous)
                raise
        return decision.allows

    def reset(self, tool: str | None = None, scope: str | None = None) -> int:
        return self.store.reset(tool=tool, scope=scope)

    @property
    def warnings(self) -> list[str]:
        return self.store.warnings

    @staticmethod
    def describe(decision: PermissionDecision) -> str:
        return OPTION_LABELS[decision]
