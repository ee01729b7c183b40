from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from .compaction.memory import Memory
from .compaction.summarizer import Summarizer
from .errors import (
    ErrorKind,
    PolicyStoreError,
    PromptLineError,
    ProtocolViolation,
    StepLimitExceeded,
    ToolExecutionError,
    UserAbort,
)
from .events.store import EventStore
from .permissions.engine import PolicyEngine
from .permissions.models import Allow, AskUser, Deny, PermissionDecision
from .permissions.prompt import Prompter
from .session.models import (
    Action,
    ActionProposal,
    AgentStep,
    Finish,
    Observation,
    Proposal,
    Thought,
    ToolCall,
)
from .session.store import SessionStore
from .tools.executor import ToolExecutor
from .tools.registry import ToolRegistry

console = Console()
err_console = Console(stderr=True)


class LoopState(str, Enum):
    THINKING = "thinking"
    AWAITING_PERMISSION = "awaiting_permission"
    EXECUTING = "executing"
    FINISHED = "finished"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (LoopState.FINISHED, LoopState.ABORTED)


class TerminalReason(str, Enum):
    FINISHED = "finished"
    ABORTED_USER = "aborted_user"
    ABORTED_STEP_LIMIT = "aborted_step_limit"
    ABORTED_ERROR = "aborted_error"


EXIT_CODES: dict[TerminalReason, int] = {
    TerminalReason.FINISHED: 0,
    TerminalReason.ABORTED_ERROR: 1,
    TerminalReason.ABORTED_STEP_LIMIT: 3,
    TerminalReason.ABORTED_USER: 130,
}

# Terminal reason for each error kind that ends the loop.
FATAL_REASONS: dict[ErrorKind, TerminalReason] = {
    ErrorKind.STEP_LIMIT_EXCEEDED: TerminalReason.ABORTED_STEP_LIMIT,
    ErrorKind.USER_ABORT: TerminalReason.ABORTED_USER,
}


class ModelProvider(Protocol):
    def propose(self, memory: Sequence[AgentStep]) -> Proposal: ...


@dataclass
class LoopOutcome:
    state: LoopState
    reason: TerminalReason
    summary: str = ""
    last_observation: Observation | None = None
    turns: int = 0
    executions: int = 0
    error: str | None = None

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.reason]


@dataclass
class PendingPermission:
    call: ToolCall
    verdict: AskUser


class AgentLoop:
    """Alternates model turns with permission-gated tool execution.

    The loop is a plain state machine. advance() performs one transition out
    of THINKING or EXECUTING; in AWAITING_PERMISSION the only way forward is
    resume(decision). run() drives both with a Prompter until FINISHED or
    ABORTED.
    """

    def __init__(
        self,
        *,
        provider: ModelProvider,
        registry: ToolRegistry,
        engine: PolicyEngine,
        executor: ToolExecutor,
        memory: Memory | None = None,
        max_steps: int = 25,
        summarizer: Summarizer | None = None,
        events: EventStore | None = None,
        session: SessionStore | None = None,
        trace: bool = False,
    ):
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self.provider = provider
        self.registry = registry
        self.engine = engine
        self.executor = executor
        self.memory = memory if memory is not None else Memory()
        self.max_steps = max_steps
        self.summarizer = summarizer
        self.events = events
        self.session = session
        self.trace = trace

        self.state = LoopState.THINKING
        self.pending: PendingPermission | None = None
        self.outcome: LoopOutcome | None = None
        self.turns = 0
        self.executions = 0
        self._authorized: ToolCall | None = None
        self._abort = threading.Event()

    # ---- public API ----

    def submit(self, text: str) -> None:
        """Add user input and (re)start thinking; used for each new task."""
        if self.state in (LoopState.AWAITING_PERMISSION, LoopState.EXECUTING):
            raise RuntimeError(f"Cannot submit input while {self.state.value}")
        self._record(Observation.success(None, text))
        self.outcome = None
        self.turns = 0
        self.executions = 0
        self._abort.clear()
        self._set_state(LoopState.THINKING)

    def interrupt(self) -> None:
        """Request a user abort; safe to call from another thread."""
        self._abort.set()

    def advance(self) -> LoopState:
        if self.state.terminal:
            return self.state
        if self._abort.is_set():
            self._abort_now(TerminalReason.ABORTED_USER, "interrupted by user")
            return self.state
        if self.state is LoopState.AWAITING_PERMISSION:
            raise RuntimeError("Loop is awaiting permission; call resume() with a decision")
        try:
            if self.state is LoopState.THINKING:
                self._think()
            elif self.state is LoopState.EXECUTING:
                self._execute()
        except PromptLineError as e:
            if not e.fatal:
                raise
            self._stop(e)
        return self.state

    def resume(self, decision: PermissionDecision) -> LoopState:
        if self.state is not LoopState.AWAITING_PERMISSION or self.pending is None:
            raise RuntimeError(f"resume() is only valid while awaiting permission (state={self.state.value})")
        pending = self.pending
        if decision not in pending.verdict.options:
            raise ValueError(f"{decision.value} was not offered")
        self.pending = None

        allowed = decision.allows
        try:
            allowed = self.engine.resolve(pending.verdict.key, decision)
        except PolicyStoreError as e:
            # The answer still applies to this call; only the "always" part is lost.
            self._warn(f"{e}. The decision applies to this call only.")
            self._emit("permission.store_warning", {"error": str(e), "key": str(pending.verdict.key)})

        self._emit("permission.resolve", {
            "tool": pending.call.tool_name,
            "tool_call_id": pending.call.call_id,
            "key": str(pending.verdict.key),
            "decision": decision.value,
        })

        if allowed:
            self._authorized = pending.call
            self._set_state(LoopState.EXECUTING)
        else:
            self._emit("tool.denied", {"tool": pending.call.tool_name, "tool_call_id": pending.call.call_id, "by": "user"})
            self._record(Observation.failure(pending.call.call_id, ErrorKind.PERMISSION_DENIED, f"denied by user ({decision.value})"))
            self._set_state(LoopState.THINKING)
        return self.state

    def run(self, prompter: Prompter) -> LoopOutcome:
        while not self.state.terminal:
            try:
                if self.state is LoopState.AWAITING_PERMISSION:
                    verdict = self.pending.verdict
                    decision = prompter.present(verdict.prompt_text, verdict.options, danger=verdict.danger)
                    self.resume(decision)
                else:
                    self.advance()
            except UserAbort as e:
                self._stop(e)
            except KeyboardInterrupt:
                self._abort.set()
                self._abort_now(TerminalReason.ABORTED_USER, "interrupted by user")
            except Exception as e:
                self._abort_now(TerminalReason.ABORTED_ERROR, f"{e.__class__.__name__}: {e}")
        return self.outcome

    # ---- transitions ----

    def _think(self) -> None:
        if self.turns >= self.max_steps:
            raise StepLimitExceeded(f"no finish after {self.max_steps} model turns")

        if self.memory.over_bound():
            trimmed = self.memory.trim(self.summarizer)
            if trimmed is not None:
                self._emit("memory.trimmed", {"dropped": trimmed.dropped, "summarized": trimmed.summary is not None})

        self.turns += 1
        self._emit("llm.request", {"step": self.turns, "memory_len": len(self.memory)})
        t0 = time.perf_counter()
        try:
            proposal = self.provider.propose(self.memory.steps)
        except ProtocolViolation as e:
            self._emit("llm.error", {"step": self.turns, "kind": e.kind.value, "error": str(e)[:2000]})
            self._record(Observation.failure(None, ErrorKind.PROTOCOL_VIOLATION, str(e)))
            return
        except (UserAbort, KeyboardInterrupt):
            raise
        except Exception as e:
            # Any provider failure is reported to the model, never fatal.
            self._emit("llm.error", {"step": self.turns, "kind": ErrorKind.PROVIDER_ERROR.value, "error": str(e)[:2000]})
            self._record(Observation.failure(None, ErrorKind.PROVIDER_ERROR, str(e) or e.__class__.__name__))
            return
        elapsed_ms = int((time.perf_counter() - t0) * 1000)

        if isinstance(proposal, Finish):
            self._emit("llm.response", {"step": self.turns, "elapsed_ms": elapsed_ms, "finish": True, "text": proposal.summary[:4000]})
            if proposal.summary:
                self._record(Thought(proposal.summary))
            self._terminate(LoopState.FINISHED, TerminalReason.FINISHED, summary=proposal.summary)
            return

        if not isinstance(proposal, ActionProposal):
            self._record(Observation.failure(None, ErrorKind.PROTOCOL_VIOLATION, f"Unexpected proposal type {type(proposal).__name__}"))
            return

        call = proposal.call
        self._emit("llm.response", {
            "step": self.turns,
            "elapsed_ms": elapsed_ms,
            "finish": False,
            "text": (proposal.thought or "")[:4000],
            "tool_call": {"id": call.call_id, "name": call.tool_name, "arguments": dict(call.arguments)},
        })
        if proposal.thought:
            self._record(Thought(proposal.thought))
        self._record(Action(call))
        self._trace_action(call)

        try:
            verdict = self.engine.decide(call)
        except ProtocolViolation as e:
            self._record(Observation.failure(call.call_id, ErrorKind.PROTOCOL_VIOLATION, str(e)))
            return

        if isinstance(verdict, Allow):
            self._authorized = call
            self._set_state(LoopState.EXECUTING)
        elif isinstance(verdict, Deny):
            self._emit("tool.denied", {"tool": call.tool_name, "tool_call_id": call.call_id, "key": str(verdict.key), "by": "policy"})
            self._record(Observation.failure(call.call_id, ErrorKind.PERMISSION_DENIED, verdict.reason))
        else:
            self.pending = PendingPermission(call=call, verdict=verdict)
            self._emit("permission.ask", {
                "tool": call.tool_name,
                "tool_call_id": call.call_id,
                "key": str(verdict.key),
                "danger": verdict.danger.value,
            })
            self._set_state(LoopState.AWAITING_PERMISSION)

    def _execute(self) -> None:
        call = self._authorized
        tool = self.registry.lookup(call.tool_name) if call is not None else None
        if call is None or tool is None:
            raise RuntimeError("Executing without an authorized call")

        self._emit("tool.call", {"step": self.turns, "tool": call.tool_name, "tool_call_id": call.call_id, "args": dict(call.arguments)})
        t0 = time.perf_counter()
        timed_out = False
        try:
            obs = Observation.success(call.call_id, self.executor.run(tool, call, abort=self._abort))
        except ToolExecutionError as e:
            timed_out = e.timed_out
            obs = Observation.failure(call.call_id, e.kind, str(e))
        elapsed_ms = int((time.perf_counter() - t0) * 1000)

        self._authorized = None
        self.executions += 1
        obs = self._record(obs)
        self._emit("tool.result", {
            "step": self.turns,
            "tool": call.tool_name,
            "tool_call_id": call.call_id,
            "ok": obs.ok,
            "error_kind": obs.error_kind.value if obs.error_kind else None,
            "timed_out": timed_out,
            "elapsed_ms": elapsed_ms,
            "content_preview": obs.text[:4000],
        })
        self._trace_observation(call, obs)
        self._set_state(LoopState.THINKING)

    # ---- termination ----

    def _stop(self, e: PromptLineError) -> None:
        """End the loop for an error kind that is fatal."""
        reason = FATAL_REASONS[e.kind]
        if reason is TerminalReason.ABORTED_USER:
            self._abort.set()
            self._abort_now(reason, str(e) or "interrupted by user")
        else:
            self._abort_now(reason, f"{e.kind.value}: {e}")

    def _abort_now(self, reason: TerminalReason, message: str) -> None:
        if self.state.terminal:
            return
        # Never leave an action without an observation.
        dangling = self._authorized or (self.pending.call if self.pending else None)
        if dangling is not None:
            self._record(Observation.failure(dangling.call_id, ErrorKind.USER_ABORT if reason is TerminalReason.ABORTED_USER else ErrorKind.TOOL_EXECUTION_ERROR, message))
        self._authorized = None
        self.pending = None
        self._terminate(LoopState.ABORTED, reason, error=message)

    def _terminate(self, state: LoopState, reason: TerminalReason, *, summary: str = "", error: str | None = None) -> None:
        self._set_state(state)
        self.outcome = LoopOutcome(
            state=state,
            reason=reason,
            summary=summary,
            last_observation=self.memory.last_observation(),
            turns=self.turns,
            executions=self.executions,
            error=error,
        )
        self._emit("loop.terminated", {"reason": reason.value, "turns": self.turns, "executions": self.executions, "error": error})

    # ---- helpers ----

    def _set_state(self, state: LoopState) -> None:
        if state is not self.state:
            self._emit("loop.state", {"from": self.state.value, "to": state.value})
        self.state = state

    def _record(self, step: AgentStep) -> AgentStep:
        step = self.memory.append(step)
        if self.session is not None:
            self.session.append(step)
        return step

    def _emit(self, event_type: str, data: dict) -> None:
        if self.events is not None:
            self.events.append(event_type, data)

    def _warn(self, message: str) -> None:
        err_console.print(f"[yellow]Warning:[/yellow] {escape(message)}")

    def _trace_action(self, call: ToolCall) -> None:
        if not self.trace:
            return
        console.print(
            Panel.fit(
                escape(json.dumps({"tool": call.tool_name, "args": dict(call.arguments)}, ensure_ascii=False, indent=2)[:4000]),
                title=f"step {self.turns}: {call.tool_name}",
                border_style="magenta",
            )
        )

    def _trace_observation(self, call: ToolCall, obs: Observation) -> None:
        if not self.trace:
            return
        text = obs.text
        console.print(
            Panel.fit(
                escape(text[:1200] + ("..." if len(text) > 1200 else "")),
                title=f"tool:{call.tool_name} ({'ok' if obs.ok else 'error'})",
                border_style="green" if obs.ok else "red",
            )
        )
