from __future__ import annotations

import json
from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from promptline.commands.setup import BEHAVIOR_TEMPLATE, health_checks, init_files
from promptline.main import _build_context, app


@pytest.fixture(autouse=True)
def _isolated(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("promptline.config.loader._global_candidate_paths", lambda: [])
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")


def _checks_by_name(checks) -> dict:
    return {c.name: c for c in checks}


def test_init_writes_starter_files_once(tmp_path: Path) -> None:
    written, skipped = init_files(tmp_path)
    assert sorted(p.name for p in written) == [".promptline.json", "promptline.yaml"]
    assert skipped == []
    assert json.loads((tmp_path / ".promptline.json").read_text(encoding="utf-8")) == BEHAVIOR_TEMPLATE

    (tmp_path / "promptline.yaml").write_text("custom", encoding="utf-8")
    written, skipped = init_files(tmp_path)
    assert written == []
    assert len(skipped) == 2
    assert (tmp_path / "promptline.yaml").read_text(encoding="utf-8") == "custom"

    written, _ = init_files(tmp_path, force=True)
    assert len(written) == 2
    assert "providers:" in (tmp_path / "promptline.yaml").read_text(encoding="utf-8")


def test_health_checks_pass_after_init(tmp_path: Path) -> None:
    init_files(tmp_path)
    checks = _checks_by_name(health_checks(cwd=tmp_path, config=tmp_path / "promptline.yaml", provider="openai"))
    assert checks["provider registry"].ok
    assert "gpt-4o-mini" in checks["provider"].detail
    assert checks["behavior config"].ok
    assert "max_steps=25" in checks["behavior config"].detail


def test_health_checks_report_problems(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    checks = _checks_by_name(health_checks(cwd=tmp_path, config=tmp_path / "missing.yaml"))
    assert not checks["provider registry"].ok
    assert "provider" not in checks

    init_files(tmp_path)
    monkeypatch.delenv("OPENAI_API_KEY")
    checks = _checks_by_name(health_checks(cwd=tmp_path, config=tmp_path / "promptline.yaml"))
    assert not checks["provider registry"].ok
    assert "OPENAI_API_KEY" in checks["provider registry"].detail

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    checks = _checks_by_name(
        health_checks(cwd=tmp_path, config=tmp_path / "promptline.yaml", provider="nope", behavior_config=tmp_path / "absent.json")
    )
    assert not checks["provider"].ok
    assert not checks["behavior config file"].ok


def test_corrupt_permission_store_fails_the_check(tmp_path: Path) -> None:
    (tmp_path / ".promptline.json").write_text(json.dumps({"permissions_file": "perms.yaml"}), encoding="utf-8")
    (tmp_path / "perms.yaml").write_text("[unclosed", encoding="utf-8")
    checks = _checks_by_name(health_checks(cwd=tmp_path, config=tmp_path / "missing.yaml"))
    assert not checks["permission store"].ok


def test_init_and_doctor_commands(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(app, ["init", "--cwd", str(tmp_path)])
    assert result.exit_code == 0
    assert (tmp_path / "promptline.yaml").is_file()
    settings = json.loads((tmp_path / ".promptline.json").read_text(encoding="utf-8"))
    settings["permissions_file"] = "perms.yaml"
    (tmp_path / ".promptline.json").write_text(json.dumps(settings), encoding="utf-8")

    config = str(tmp_path / "promptline.yaml")
    result = runner.invoke(app, ["doctor", "--cwd", str(tmp_path), "--config", config, "--provider", "openai"])
    assert result.exit_code == 0, result.output

    result = runner.invoke(app, ["doctor", "--cwd", str(tmp_path), "--config", config, "--provider", "nope"])
    assert result.exit_code == 1


@pytest.mark.parametrize("max_steps, timeout", [(0, None), (-3, None), (None, 0.0), (None, -1.0)])
def test_invalid_limits_are_rejected(tmp_path: Path, max_steps, timeout) -> None:
    with pytest.raises(typer.BadParameter):
        _build_context(
            provider="openai", config=tmp_path / "promptline.yaml", cwd=tmp_path, session=None,
            behavior_config=None, max_steps=max_steps, timeout=timeout, trace=False, stream=False,
        )
