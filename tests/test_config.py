from __future__ import annotations

import json
from pathlib import Path

import pytest

from promptline.config.loader import load_behavior_config
from promptline.llm.factory import load_provider_registry


def _write(p: Path, obj) -> Path:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(obj) if not isinstance(obj, str) else obj, encoding="utf-8")
    return p


def test_defaults_without_files(tmp_path: Path) -> None:
    cfg = load_behavior_config(cwd=tmp_path, global_paths=[])
    assert cfg.max_steps == 25
    assert cfg.default_tool_timeout == 30
    assert cfg.tool_timeouts == {}
    assert cfg.memory.policy().max_steps == 60
    assert cfg.memory.policy().keep_recent == 20
    assert cfg.permissions_file is None
    assert cfg.loaded_from == []


def test_merge_order_global_project_explicit(tmp_path: Path) -> None:
    g = _write(tmp_path / "global" / "promptline.json", {
        "max_steps": 10, "default_tool_timeout": 5, "memory": {"max_steps": 30, "keep_recent": 5},
    })
    proj = tmp_path / "proj"
    _write(proj / ".promptline.json", {"max_steps": 12, "tool_timeouts": {"shell_execute": 90}})
    _write(proj / "promptline.json", {"max_steps": 99})  # shadowed by .promptline.json
    explicit = _write(tmp_path / "ci.json", {"memory": {"keep_recent": 7}, "system_prompt": "Be brief."})

    cfg = load_behavior_config(cwd=proj, explicit_path=explicit, global_paths=[g])
    assert cfg.max_steps == 12
    assert cfg.default_tool_timeout == 5
    assert cfg.tool_timeouts == {"shell_execute": 90}
    assert cfg.memory.max_steps == 30
    assert cfg.memory.keep_recent == 7
    assert cfg.system_prompt == "Be brief."
    assert cfg.loaded_from == [g, proj / ".promptline.json", explicit.resolve()]


def test_invalid_files_and_values_are_ignored(tmp_path: Path) -> None:
    _write(tmp_path / ".promptline.json", "{ not json")
    _write(tmp_path / "promptline.json", {"max_steps": 7})
    cfg = load_behavior_config(cwd=tmp_path, global_paths=[])
    # The broken dotfile is skipped, so the next candidate wins.
    assert cfg.max_steps == 7

    bad = _write(tmp_path / "bad.json", {
        "max_steps": -1, "default_tool_timeout": "soon", "tool_timeouts": {"x": 0, "y": 2}, "memory": {"keep_recent": True},
    })
    cfg = load_behavior_config(cwd=tmp_path, explicit_path=bad, global_paths=[])
    assert cfg.max_steps == 7
    assert cfg.default_tool_timeout == 30
    assert cfg.tool_timeouts == {"y": 2}
    assert cfg.memory.keep_recent == 20


def test_permissions_file_is_relative_to_its_config(tmp_path: Path) -> None:
    explicit = _write(tmp_path / "conf" / "promptline.json", {"permissions_file": "perms.yaml"})
    cfg = load_behavior_config(cwd=tmp_path / "elsewhere", explicit_path=explicit, global_paths=[])
    assert cfg.permissions_file == explicit.resolve().parent / "perms.yaml"


REGISTRY = """
providers:
  local:
    PROMPTLINE_BASE_URL: http://localhost:11434/v1
    PROMPTLINE_MODEL: qwen2.5-coder
    PROMPTLINE_API_KEY: ${LOCAL_KEY}
    timeout: 30
  openai:
    PROMPTLINE_BASE_URL: https://api.openai.com/v1
    PROMPTLINE_MODEL: gpt-4o-mini
    PROMPTLINE_API_KEY: sk-literal
"""


def test_provider_registry_expands_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOCAL_KEY", "secret")
    reg = load_provider_registry(_write(tmp_path / "promptline.yaml", REGISTRY))
    assert reg.names() == ["local", "openai"]
    local = reg.get("LOCAL")
    assert local.api_key == "secret"
    assert local.timeout == 30
    client = local.client(model="other")
    assert client.model == "other" and client.base_url == "http://localhost:11434/v1"
    assert reg.get("openai").api_key == "sk-literal"


def test_provider_registry_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOCAL_KEY", raising=False)
    path = _write(tmp_path / "promptline.yaml", REGISTRY)
    with pytest.raises(ValueError, match="LOCAL_KEY"):
        load_provider_registry(path)

    with pytest.raises(FileNotFoundError):
        load_provider_registry(tmp_path / "missing.yaml")

    missing_model = _write(tmp_path / "m.yaml", "providers:\n  x:\n    PROMPTLINE_BASE_URL: u\n    PROMPTLINE_API_KEY: k\n")
    with pytest.raises(ValueError, match="PROMPTLINE_MODEL"):
        load_provider_registry(missing_model)

    monkeypatch.setenv("LOCAL_KEY", "secret")
    reg = load_provider_registry(path)
    with pytest.raises(ValueError, match="Known providers: local, openai"):
        reg.get("anthropic")
