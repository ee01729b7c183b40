from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any

from ..errors import ToolExecutionError, UserAbort
from ..session.models import Observation, ToolCall
from .base import Tool, ToolContext, ToolResult

POLL_INTERVAL = 0.05


@dataclass
class ToolExecutor:
    """Runs one tool call at a time with a deadline and cooperative cancel.

    The tool runs on a worker thread; the caller blocks until it finishes,
    the deadline passes, or `abort` is set. On deadline or abort the tool's
    cancel event is set so process-backed tools kill their children.
    """

    cwd: str
    session_id: str | None = None
    default_timeout: float = 30.0
    timeouts: dict[str, float] = field(default_factory=dict)
    # Extra time a tool gets to wind down after its cancel event is set.
    grace: float = 2.0

    def timeout_for(self, tool: Tool) -> float:
        name = tool.spec.name
        if name in self.timeouts:
            return float(self.timeouts[name])
        if tool.spec.timeout is not None:
            return float(tool.spec.timeout)
        return float(self.default_timeout)

    def execute(self, tool: Tool, call: ToolCall, abort: threading.Event | None = None) -> Observation:
        """Run `call` and wrap the outcome as an Observation."""
        try:
            return Observation.success(call.call_id, self.run(tool, call, abort))
        except ToolExecutionError as e:
            return Observation.failure(call.call_id, e.kind, str(e))

    def run(self, tool: Tool, call: ToolCall, abort: threading.Event | None = None) -> str:
        """Run `call` and return its output.

        Raises ToolExecutionError when the tool fails or times out, and
        UserAbort if `abort` fires while it runs.
        """
        timeout = self.timeout_for(tool)
        ctx = ToolContext(cwd=self.cwd, session_id=self.session_id, timeout=timeout)
        box: dict[str, Any] = {}

        def _work() -> None:
            try:
                box["result"] = tool.execute(ctx, dict(call.arguments))
            except Exception as e:
                box["error"] = e

        worker = threading.Thread(target=_work, name=f"tool-{call.tool_name}", daemon=True)
        worker.start()
        deadline = time.monotonic() + timeout

        while worker.is_alive():
            try:
                worker.join(POLL_INTERVAL)
            except KeyboardInterrupt:
                ctx.cancel.set()
                worker.join(self.grace)
                raise UserAbort(f"Interrupted while running {call.tool_name}")
            if not worker.is_alive():
                break
            if abort is not None and abort.is_set():
                ctx.cancel.set()
                worker.join(self.grace)
                raise UserAbort(f"Interrupted while running {call.tool_name}")
            if time.monotonic() >= deadline:
                ctx.cancel.set()
                worker.join(self.grace)
                raise ToolExecutionError(f"Tool {call.tool_name} timed out after {timeout:g}s and was cancelled.", timed_out=True)

        if "error" in box:
            raise ToolExecutionError(f"Tool {call.tool_name} exception: {box['error']}") from box["error"]

        res: ToolResult | None = box.get("result")
        if res is None:
            raise ToolExecutionError(f"Tool {call.tool_name} stopped without returning a result.")
        if res.timed_out:
            raise ToolExecutionError(res.content or f"Tool {call.tool_name} timed out.", timed_out=True)
        if res.is_error:
            raise ToolExecutionError(res.content)
        return res.content
