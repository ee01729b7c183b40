from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from .compaction.memory import Memory
from .compaction.summarizer import ProviderSummarizer
from .config.loader import load_behavior_config
from .config.models import BehaviorConfig
from .events.store import EventStore
from .llm.factory import ProviderConfig
from .llm.proposer import ChatModelProvider
from .permissions.engine import PolicyEngine
from .permissions.store import PermissionStore
from .runner import AgentLoop
from .session.store import SessionStore
from .tools.builtin import builtin_registry
from .tools.executor import ToolExecutor
from .tools.registry import ToolRegistry

err_console = Console(stderr=True)


def open_permission_store(behavior: BehaviorConfig, *, claim: bool = True) -> PermissionStore:
    """Open the durable store and surface its load warnings on stderr."""
    store = PermissionStore.open(behavior.permissions_file, claim=claim)
    for w in store.warnings:
        err_console.print(f"[yellow]Warning:[/yellow] {escape(w)}")
    return store


@dataclass
class AppContext:
    cwd: Path
    behavior: BehaviorConfig
    provider_cfg: ProviderConfig
    registry: ToolRegistry
    store: PermissionStore
    engine: PolicyEngine
    session: SessionStore
    events: EventStore
    loop: AgentLoop
    trace: bool = False
    stream: bool = False

    def close(self) -> None:
        """Release the permission store's instance marker."""
        self.store.close()

    def new_session(self) -> None:
        """Start a fresh transcript and an empty memory, keeping permissions."""
        self.session = SessionStore.open()
        self.events = EventStore.open(self.session.session_id)
        self.loop = self._build_loop(self.session, self.events)

    def _build_loop(self, session: SessionStore, events: EventStore) -> AgentLoop:
        client = self.provider_cfg.client()
        provider = ChatModelProvider(
            client=client,
            registry=self.registry,
            extra_instructions=self.behavior.system_prompt,
            stream=self.stream,
            on_token=(lambda tok: err_console.print(tok, end="", markup=False, highlight=False)) if self.stream else None,
        )
        memory = Memory(policy=self.behavior.memory.policy())
        memory.extend(session.steps)
        executor = ToolExecutor(
            cwd=str(self.cwd),
            session_id=session.session_id,
            default_timeout=self.behavior.default_tool_timeout,
            timeouts=dict(self.behavior.tool_timeouts),
        )
        return AgentLoop(
            provider=provider,
            registry=self.registry,
            engine=self.engine,
            executor=executor,
            memory=memory,
            max_steps=self.behavior.max_steps,
            summarizer=ProviderSummarizer(client),
            events=events,
            session=session,
            trace=self.trace,
        )

    @staticmethod
    def from_env(
        cwd: Path,
        provider_cfg: ProviderConfig,
        session_id: str | None = None,
        behavior_config: Path | None = None,
        max_steps: int | None = None,
        timeout: float | None = None,
        trace: bool = False,
        stream: bool = False,
    ) -> "AppContext":
        behavior = load_behavior_config(cwd=cwd, explicit_path=behavior_config)
        # CLI flags override config files.
        if max_steps is not None:
            behavior.max_steps = max_steps
        if timeout is not None:
            behavior.default_tool_timeout = timeout

        registry = builtin_registry()
        store = open_permission_store(behavior)
        engine = PolicyEngine(registry=registry, store=store)

        session = SessionStore.open(session_id=session_id)
        events = EventStore.open(session.session_id)
        for w in store.warnings:
            events.append("permission.store_warning", {"error": w, "path": str(store.path)})

        ctx = AppContext(
            cwd=cwd,
            behavior=behavior,
            provider_cfg=provider_cfg,
            registry=registry,
            store=store,
            engine=engine,
            session=session,
            events=events,
            loop=None,  # type: ignore[arg-type]
            trace=trace,
            stream=stream,
        )
        ctx.loop = ctx._build_loop(session, events)
        return ctx
