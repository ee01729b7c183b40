from __future__ import annotations
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..permissions.models import PermissionKey
from .danger import DangerClass

@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]   # JSONSchema
    timeout: float | None = None  # seconds; None -> configured default

class Tool(Protocol):
    """Invocation contract every registered tool fulfils.

    classify and derive_key must be pure functions of the arguments.
    """
    spec: ToolSpec
    def classify(self, args: dict[str, Any]) -> DangerClass: ...
    def derive_key(self, args: dict[str, Any]) -> PermissionKey: ...
    def execute(self, ctx: "ToolContext", args: dict[str, Any]) -> "ToolResult": ...

@dataclass
class ToolResult:
    content: str
    is_error: bool = False
    timed_out: bool = False

@dataclass
class ToolContext:
    cwd: str
    # Optional session id for tools that want to persist state
    session_id: str | None = None
    # Seconds left for this invocation; tools that spawn processes must honour it.
    timeout: float | None = None
    # Set when the loop wants the invocation to stop (interrupt or deadline).
    cancel: threading.Event = field(default_factory=threading.Event)
