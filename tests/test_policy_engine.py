from __future__ import annotations

from pathlib import Path

import pytest

from promptline.errors import PolicyStoreError, ProtocolViolation
from promptline.permissions.engine import PolicyEngine
from promptline.permissions.models import (
    Allow,
    AskUser,
    Deny,
    PROMPT_OPTIONS,
    PermissionDecision,
    PermissionKey,
    PermissionRecord,
)
from promptline.permissions.prompt import AutoApprovePrompter, ScriptedPrompter
from promptline.permissions.store import PermissionStore
from promptline.session.models import ToolCall
from promptline.tools.builtin import builtin_registry
from promptline.tools.danger import DangerClass


def _engine(tmp_path: Path) -> PolicyEngine:
    store = PermissionStore.open(tmp_path / "permissions.yaml", claim=False)
    return PolicyEngine(registry=builtin_registry(), store=store)


def _call(engine: PolicyEngine, name: str, args: dict) -> ToolCall:
    return engine.registry.make_call(name, args)


def test_fresh_store_asks_then_allow_always_is_remembered(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    call = _call(engine, "list_files", {"path": "."})

    verdict = engine.decide(call)
    assert isinstance(verdict, AskUser)
    assert verdict.options == PROMPT_OPTIONS
    assert verdict.key == PermissionKey("list_files", ".")
    assert verdict.danger is DangerClass.SAFE

    assert engine.resolve(verdict.key, PermissionDecision.ALLOW_ALWAYS) is True
    assert len(engine.store) == 1

    again = engine.decide(_call(engine, "list_files", {"path": "./"}))
    assert isinstance(again, Allow)


def test_allow_always_survives_reload(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    call = _call(engine, "read_file", {"path": "src/app.py"})
    engine.resolve(engine.decide(call).key, PermissionDecision.ALLOW_ALWAYS)

    fresh = _engine(tmp_path)
    assert isinstance(fresh.decide(call), Allow)


def test_destructive_call_asks_despite_allow_always(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    engine.store.upsert(PermissionRecord(PermissionKey("shell_execute", None), PermissionDecision.ALLOW_ALWAYS))
    engine.store.upsert(PermissionRecord(PermissionKey("shell_execute", "rm"), PermissionDecision.ALLOW_ALWAYS))

    call = _call(engine, "shell_execute", {"cmd": "rm -rf /"})
    verdict = engine.decide(call)
    assert isinstance(verdict, AskUser)
    assert verdict.danger is DangerClass.DESTRUCTIVE
    assert "does not cover destructive calls" in verdict.prompt_text

    # Answering allow_always does not make the next destructive call silent.
    engine.resolve(verdict.key, PermissionDecision.ALLOW_ALWAYS)
    assert isinstance(engine.decide(call), AskUser)


def test_delete_file_always_asks(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    call = _call(engine, "delete_file", {"path": "build"})
    for _ in range(2):
        v = engine.decide(call)
        assert isinstance(v, AskUser)
        engine.resolve(v.key, PermissionDecision.ALLOW_ALWAYS)


def test_deny_always_returns_deny(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    call = _call(engine, "shell_execute", {"cmd": "git push origin main"})
    v = engine.decide(call)
    assert engine.resolve(v.key, PermissionDecision.DENY_ALWAYS) is False
    denied = engine.decide(_call(engine, "shell_execute", {"cmd": "git push upstream"}))
    assert isinstance(denied, Deny)
    assert "denied by policy" in denied.reason
    # A different prefix is a different key.
    assert isinstance(engine.decide(_call(engine, "shell_execute", {"cmd": "git status"})), AskUser)


def test_once_decisions_do_not_touch_the_store(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    call = _call(engine, "write_file", {"path": "a.txt", "content": "x"})
    key = engine.decide(call).key
    assert engine.resolve(key, PermissionDecision.ALLOW_ONCE) is True
    assert engine.resolve(key, PermissionDecision.ALLOW_ONCE) is True
    assert engine.resolve(key, PermissionDecision.DENY_ONCE) is False
    assert len(engine.store) == 0
    assert not (tmp_path / "permissions.yaml").exists()
    assert isinstance(engine.decide(call), AskUser)


def test_store_write_failure_rolls_back(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    store = PermissionStore.open(blocker / "permissions.yaml", claim=False)
    engine = PolicyEngine(registry=builtin_registry(), store=store)
    key = PermissionKey("list_files", ".")
    with pytest.raises(PolicyStoreError):
        engine.resolve(key, PermissionDecision.ALLOW_ALWAYS)
    assert store.get(key) is None


def test_reset_makes_calls_ask_again(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    call = _call(engine, "list_files", {"path": "."})
    engine.resolve(engine.decide(call).key, PermissionDecision.ALLOW_ALWAYS)
    assert engine.reset(tool="list_files") == 1
    assert isinstance(engine.decide(call), AskUser)


def test_unknown_tool_is_a_protocol_violation(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    with pytest.raises(ProtocolViolation):
        engine.decide(ToolCall(tool_name="nope", arguments={}))


def test_auto_approve_never_answers_destructive_prompts() -> None:
    human = ScriptedPrompter([PermissionDecision.DENY_ONCE])
    auto = AutoApprovePrompter(human)
    assert auto.present("x", PROMPT_OPTIONS, danger=DangerClass.SENSITIVE) is PermissionDecision.ALLOW_ONCE
    assert human.prompts == []
    assert auto.present("rm", PROMPT_OPTIONS, danger=DangerClass.DESTRUCTIVE) is PermissionDecision.DENY_ONCE
    assert human.prompts == ["rm"]


def test_tool_wide_deny_covers_every_scope(tmp_path: Path) -> None:
    (tmp_path / "permissions.yaml").write_text("shell_execute: never\nlist_files: always\n", encoding="utf-8")
    engine = _engine(tmp_path)

    denied = engine.decide(_call(engine, "shell_execute", {"cmd": "ls"}))
    assert isinstance(denied, Deny)
    assert denied.key == PermissionKey("shell_execute", "ls")
    assert isinstance(engine.decide(_call(engine, "list_files", {"path": "src"})), Allow)


def test_deny_wins_over_allow_at_either_level(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    engine.store.upsert(PermissionRecord(PermissionKey("read_file"), PermissionDecision.ALLOW_ALWAYS))
    engine.store.upsert(PermissionRecord(PermissionKey("read_file", ".env"), PermissionDecision.DENY_ALWAYS))
    engine.store.upsert(PermissionRecord(PermissionKey("write_file"), PermissionDecision.DENY_ALWAYS))
    engine.store.upsert(PermissionRecord(PermissionKey("write_file", "notes.md"), PermissionDecision.ALLOW_ALWAYS))

    assert isinstance(engine.decide(_call(engine, "read_file", {"path": "README.md"})), Allow)
    assert isinstance(engine.decide(_call(engine, "read_file", {"path": ".env"})), Deny)
    assert isinstance(engine.decide(_call(engine, "write_file", {"path": "notes.md", "content": "x"})), Deny)


def test_tool_wide_allow_never_covers_destructive_calls(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    engine.store.upsert(PermissionRecord(PermissionKey("shell_execute"), PermissionDecision.ALLOW_ALWAYS))
    assert isinstance(engine.decide(_call(engine, "shell_execute", {"cmd": "make test"})), Allow)
    assert isinstance(engine.decide(_call(engine, "shell_execute", {"cmd": "rm -r build"})), AskUser)
