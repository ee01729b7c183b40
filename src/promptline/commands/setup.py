from __future__ import annotations

import json
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..config.loader import load_behavior_config
from ..llm.factory import load_provider_registry
from ..permissions.store import PermissionStore

REGISTRY_TEMPLATE = """\
providers:
  openai:
    PROMPTLINE_BASE_URL: https://api.openai.com/v1
    PROMPTLINE_MODEL: gpt-4o-mini
    PROMPTLINE_API_KEY: ${OPENAI_API_KEY}
  local:
    PROMPTLINE_BASE_URL: http://localhost:11434/v1
    PROMPTLINE_MODEL: qwen2.5-coder
    PROMPTLINE_API_KEY: ollama
"""

BEHAVIOR_TEMPLATE = {
    "max_steps": 25,
    "default_tool_timeout": 30,
    "tool_timeouts": {"shell_execute": 120},
    "memory": {"max_steps": 60, "keep_recent": 20},
}


@dataclass
class HealthCheck:
    name: str
    ok: bool
    detail: str = ""


def health_checks(
    *,
    cwd: Path,
    config: Path,
    provider: str | None = None,
    behavior_config: Path | None = None,
) -> list[HealthCheck]:
    """Inspect configuration without contacting the model."""
    checks: list[HealthCheck] = []

    try:
        reg = load_provider_registry(config)
    except (FileNotFoundError, ValueError) as e:
        checks.append(HealthCheck("provider registry", False, str(e)))
    else:
        checks.append(HealthCheck("provider registry", True, f"{config} ({', '.join(reg.names())})"))
        if provider is not None:
            try:
                cfg = reg.get(provider)
            except ValueError as e:
                checks.append(HealthCheck("provider", False, str(e)))
            else:
                checks.append(HealthCheck("provider", True, f"{cfg.name}: {cfg.model} at {cfg.base_url}"))

    behavior = load_behavior_config(cwd=cwd, explicit_path=behavior_config)
    loaded = ", ".join(str(p) for p in behavior.loaded_from) or "defaults only"
    checks.append(HealthCheck("behavior config", True, f"{loaded}; max_steps={behavior.max_steps}"))
    if behavior_config is not None and behavior_config.expanduser().resolve() not in behavior.loaded_from:
        checks.append(HealthCheck("behavior config file", False, f"could not load {behavior_config}"))

    store = PermissionStore.open(behavior.permissions_file, claim=False)
    if store.warnings:
        checks.append(HealthCheck("permission store", False, "; ".join(store.warnings)))
    else:
        checks.append(HealthCheck("permission store", True, f"{store.path} ({len(store)} stored)"))

    shell = shutil.which("bash") or shutil.which("sh")
    checks.append(HealthCheck("shell", shell is not None, shell or "neither bash nor sh found on PATH"))
    return checks


def init_files(directory: Path, *, force: bool = False) -> tuple[list[Path], list[Path]]:
    """Write starter promptline.yaml and .promptline.json; returns (written, skipped)."""
    targets = {
        directory / "promptline.yaml": REGISTRY_TEMPLATE,
        directory / ".promptline.json": json.dumps(BEHAVIOR_TEMPLATE, indent=2) + "\n",
    }
    written: list[Path] = []
    skipped: list[Path] = []
    for path, text in targets.items():
        if path.exists() and not force:
            skipped.append(path)
            continue
        path.write_text(text, encoding="utf-8")
        written.append(path)
    return written, skipped
