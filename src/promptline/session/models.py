from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Union

from ..errors import ErrorKind


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class ToolCall:
    """A validated request to run one tool.

    Built only by ToolRegistry.make_call, after the arguments passed schema
    validation. The argument mapping is read-only and keeps the model's order.
    """

    tool_name: str
    arguments: Mapping[str, Any]
    call_id: str = field(default_factory=new_call_id)

    def __post_init__(self) -> None:
        if not isinstance(self.arguments, MappingProxyType):
            object.__setattr__(self, "arguments", MappingProxyType(dict(self.arguments)))

    def to_dict(self) -> dict[str, Any]:
        return {"tool_name": self.tool_name, "arguments": dict(self.arguments), "call_id": self.call_id}

    @staticmethod
    def from_dict(obj: Mapping[str, Any]) -> "ToolCall":
        return ToolCall(
            tool_name=str(obj["tool_name"]),
            arguments=dict(obj.get("arguments") or {}),
            call_id=str(obj.get("call_id") or new_call_id()),
        )


@dataclass(frozen=True)
class Thought:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "thought", "text": self.text}


@dataclass(frozen=True)
class Action:
    call: ToolCall

    def to_dict(self) -> dict[str, Any]:
        return {"type": "action", "call": self.call.to_dict()}


@dataclass(frozen=True)
class Observation:
    """Result of an action: success(payload) or failure(error_kind, message).

    call_id is None for observations not tied to a specific call, e.g. a
    provider failure or a malformed proposal that never became a ToolCall.
    """

    call_id: str | None
    payload: str = ""
    error_kind: ErrorKind | None = None
    message: str = ""

    @staticmethod
    def success(call_id: str | None, payload: str) -> "Observation":
        return Observation(call_id=call_id, payload=payload)

    @staticmethod
    def failure(call_id: str | None, kind: ErrorKind, message: str) -> "Observation":
        return Observation(call_id=call_id, error_kind=kind, message=message)

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @property
    def text(self) -> str:
        if self.ok:
            return self.payload
        return f"[{self.error_kind.value}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "observation",
            "call_id": self.call_id,
            "payload": self.payload,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
        }


AgentStep = Union[Thought, Action, Observation]


def step_from_dict(obj: Mapping[str, Any]) -> AgentStep:
    t = obj.get("type")
    if t == "thought":
        return Thought(text=str(obj.get("text") or ""))
    if t == "action":
        return Action(call=ToolCall.from_dict(obj["call"]))
    if t == "observation":
        kind = obj.get("error_kind")
        return Observation(
            call_id=obj.get("call_id"),
            payload=str(obj.get("payload") or ""),
            error_kind=ErrorKind(kind) if kind else None,
            message=str(obj.get("message") or ""),
        )
    raise ValueError(f"Unknown step type: {t!r}")


@dataclass(frozen=True)
class Finish:
    summary: str = ""


@dataclass(frozen=True)
class ActionProposal:
    call: ToolCall
    # Free text the model produced alongside the call, if any.
    thought: str | None = None


Proposal = Union[Finish, ActionProposal]
