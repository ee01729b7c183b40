from __future__ import annotations

import json
import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from promptline.app_context import AppContext
from promptline.config.loader import load_behavior_config
from promptline.errors import ErrorKind, ToolExecutionError, UserAbort
from promptline.llm.factory import ProviderConfig
from promptline.session.models import ToolCall
from promptline.tools.base import ToolContext, ToolResult, ToolSpec
from promptline.tools.builtin_tools.bash_tool import ShellExecuteTool
from promptline.tools.danger import DangerClass
from promptline.permissions.models import PermissionKey
from promptline.tools.executor import ToolExecutor
from promptline.util.subprocess import run_cmd

needs_bash = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")


@dataclass
class FakeTool:
    """Sleeps until cancelled or `duration` passes, then returns `content`."""

    spec: ToolSpec
    duration: float = 0.0
    content: str = "done"
    error: BaseException | None = None
    is_error: bool = False
    cancelled: bool = False

    def classify(self, args: dict[str, Any]) -> DangerClass:
        return DangerClass.SAFE

    def derive_key(self, args: dict[str, Any]) -> PermissionKey:
        return PermissionKey(self.spec.name)

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        if self.error is not None:
            raise self.error
        if ctx.cancel.wait(self.duration):
            self.cancelled = True
            return ToolResult("cancelled", is_error=True)
        return ToolResult(self.content, is_error=self.is_error)


def _tool(name: str = "fake", **kw) -> FakeTool:
    return FakeTool(spec=ToolSpec(name=name, description="fake", parameters={"type": "object"}), **kw)


def _call(name: str = "fake") -> ToolCall:
    return ToolCall(name, {}, call_id="c1")


def test_timeout_resolution_order() -> None:
    ex = ToolExecutor(cwd=".", default_timeout=30, timeouts={"fake": 5})
    assert ex.timeout_for(_tool()) == 5
    assert ex.timeout_for(_tool("other")) == 30
    spec_timeout = FakeTool(spec=ToolSpec("slow", "", {}, timeout=90))
    assert ex.timeout_for(spec_timeout) == 90


def test_success_observation() -> None:
    obs = ToolExecutor(cwd=".").execute(_tool(content="hello"), _call())
    assert obs.ok and obs.payload == "hello" and obs.call_id == "c1"


def test_tool_error_result_becomes_failure() -> None:
    obs = ToolExecutor(cwd=".").execute(_tool(content="bad input", is_error=True), _call())
    assert obs.error_kind is ErrorKind.TOOL_EXECUTION_ERROR
    assert obs.message == "bad input"


def test_tool_exception_becomes_failure() -> None:
    obs = ToolExecutor(cwd=".").execute(_tool(error=RuntimeError("kaboom")), _call())
    assert obs.error_kind is ErrorKind.TOOL_EXECUTION_ERROR
    assert "kaboom" in obs.message


def test_deadline_cancels_tool_and_reports_timeout() -> None:
    tool = _tool(duration=10)
    ex = ToolExecutor(cwd=".", timeouts={"fake": 0.2}, grace=2.0)
    t0 = time.monotonic()
    obs = ex.execute(tool, _call())
    assert time.monotonic() - t0 < 3
    assert obs.error_kind is ErrorKind.TOOL_EXECUTION_ERROR
    assert "timed out" in obs.message
    assert tool.cancelled


def test_abort_event_raises_user_abort_and_cancels() -> None:
    tool = _tool(duration=10)
    abort = threading.Event()
    threading.Timer(0.1, abort.set).start()
    with pytest.raises(UserAbort):
        ToolExecutor(cwd=".", grace=2.0).execute(tool, _call(), abort=abort)
    assert tool.cancelled


@needs_bash
def test_run_cmd_kills_process_group_on_timeout(tmp_path: Path) -> None:
    t0 = time.monotonic()
    res = run_cmd(["bash", "-c", "sleep 30 & sleep 30; echo never"], cwd=str(tmp_path), timeout=0.3)
    assert time.monotonic() - t0 < 5
    assert res.timed_out
    assert "never" not in res.stdout


@needs_bash
def test_run_cmd_cancel(tmp_path: Path) -> None:
    cancel = threading.Event()
    threading.Timer(0.1, cancel.set).start()
    res = run_cmd(["bash", "-c", "sleep 30"], cwd=str(tmp_path), timeout=None, cancel=cancel)
    assert res.cancelled and not res.timed_out


@needs_bash
def test_shell_tool_timeout_through_executor(tmp_path: Path) -> None:
    ex = ToolExecutor(cwd=str(tmp_path), timeouts={"shell_execute": 0.3}, grace=5.0)
    call = ToolCall("shell_execute", {"cmd": "sleep 30"}, call_id="c1")
    obs = ex.execute(ShellExecuteTool(), call)
    assert obs.error_kind is ErrorKind.TOOL_EXECUTION_ERROR
    assert "timed out" in obs.message


@needs_bash
def test_shell_tool_reports_exit_code(tmp_path: Path) -> None:
    ex = ToolExecutor(cwd=str(tmp_path))
    ok = ex.execute(ShellExecuteTool(), ToolCall("shell_execute", {"cmd": "echo hi"}, call_id="a"))
    assert ok.ok and "hi" in ok.payload and "EXIT_CODE: 0" in ok.payload
    bad = ex.execute(ShellExecuteTool(), ToolCall("shell_execute", {"cmd": "exit 3"}, call_id="b"))
    assert not bad.ok and "EXIT_CODE: 3" in bad.message


def test_shell_tool_follows_the_default_timeout() -> None:
    ex = ToolExecutor(cwd=".", default_timeout=7)
    assert ex.timeout_for(ShellExecuteTool()) == 7
    assert ToolExecutor(cwd=".", default_timeout=7, timeouts={"shell_execute": 90}).timeout_for(ShellExecuteTool()) == 90


@needs_bash
def test_configured_default_timeout_bounds_shell_commands(tmp_path: Path) -> None:
    cfg_file = tmp_path / "promptline.json"
    cfg_file.write_text(json.dumps({"default_tool_timeout": 0.3}), encoding="utf-8")
    cfg = load_behavior_config(cwd=tmp_path, global_paths=[])
    ex = ToolExecutor(cwd=str(tmp_path), default_timeout=cfg.default_tool_timeout, grace=5.0)

    t0 = time.monotonic()
    obs = ex.execute(ShellExecuteTool(), ToolCall("shell_execute", {"cmd": "sleep 30"}, call_id="c1"))
    assert time.monotonic() - t0 < 6
    assert obs.error_kind is ErrorKind.TOOL_EXECUTION_ERROR
    assert "timed out after 0.3s" in obs.message


def test_timeout_flag_overrides_config_for_shell(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("promptline.config.loader._global_candidate_paths", lambda: [])
    monkeypatch.setattr("promptline.session.store._sessions_dir", lambda: tmp_path / "sessions")
    monkeypatch.setattr("promptline.events.store._events_dir", lambda: tmp_path / "events")
    explicit = tmp_path / "ci.json"
    explicit.write_text(json.dumps({"default_tool_timeout": 45, "permissions_file": "perms.yaml"}), encoding="utf-8")
    provider = ProviderConfig(name="local", base_url="http://localhost:1/v1", model="m", api_key="k")

    ctx = AppContext.from_env(cwd=tmp_path, provider_cfg=provider, behavior_config=explicit, timeout=2.5)
    try:
        shell = ctx.registry.get("shell_execute")
        assert ctx.loop.executor.timeout_for(shell) == 2.5
        assert ctx.store.path == tmp_path.resolve() / "perms.yaml"
    finally:
        ctx.close()


def test_run_raises_tool_execution_errors() -> None:
    ex = ToolExecutor(cwd=".", timeouts={"fake": 0.2}, grace=2.0)
    assert ex.run(_tool(content="fine"), _call()) == "fine"

    with pytest.raises(ToolExecutionError) as err:
        ex.run(_tool(duration=10), _call())
    assert err.value.timed_out
    assert err.value.kind is ErrorKind.TOOL_EXECUTION_ERROR

    with pytest.raises(ToolExecutionError) as err:
        ex.run(_tool(content="bad input", is_error=True), _call())
    assert not err.value.timed_out
    assert str(err.value) == "bad input"


def test_tool_thread_dying_without_result_is_a_failure() -> None:
    obs = ToolExecutor(cwd=".").execute(_tool(error=SystemExit(2)), _call())
    assert obs.error_kind is ErrorKind.TOOL_EXECUTION_ERROR
    assert "without returning a result" in obs.message
