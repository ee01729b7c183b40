from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..errors import ProtocolViolation
from ..session.models import ToolCall, new_call_id
from .base import Tool, ToolSpec
from .schema import validate_arguments

@dataclass
class ToolRegistry:
    """Tool name -> invocation contract.

    Tools are registered once at startup; freeze() makes the registry
    read-only for the rest of the process.
    """
    _tools: Dict[str, Tool] = field(default_factory=dict)
    _frozen: bool = False

    def register(self, tool: Tool) -> None:
        if self._frozen:
            raise RuntimeError("Tool registry is frozen; register tools at startup.")
        name = tool.spec.name
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = tool

    def freeze(self) -> "ToolRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Tool:
        if name not in self._tools:
            raise KeyError(f"Unknown tool: {name}")
        return self._tools[name]

    def lookup(self, name: str) -> Optional[Tool]:
        """Return a tool if registered, otherwise None.

        Use this in agent loops to avoid crashing when the model hallucinates
        an unknown tool name.
        """
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools.keys())

    def list_specs(self) -> list[ToolSpec]:
        return [t.spec for t in self._tools.values()]

    def make_call(self, name: str, raw_args: Any, call_id: str | None = None) -> ToolCall:
        """Validate a model-proposed call and build an immutable ToolCall."""
        tool = self.lookup(name or "")
        if tool is None:
            known = ", ".join(self.names()) or "(none)"
            raise ProtocolViolation(f"Unknown tool '{name}'. Available tools: {known}")
        args = validate_arguments(tool.spec.parameters, raw_args)
        return ToolCall(tool_name=tool.spec.name, arguments=args, call_id=call_id or new_call_id())
