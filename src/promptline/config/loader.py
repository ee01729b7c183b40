from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

from .models import BehaviorConfig

APP_NAME = "promptline"


def _candidate_paths(cwd: Path) -> list[Path]:
    # project-level (higher priority)
    return [
        cwd / ".promptline.json",
        cwd / "promptline.json",
    ]


def _global_candidate_paths() -> list[Path]:
    return [Path(user_config_dir(APP_NAME)) / "promptline.json"]


def _load_json(p: Path) -> dict[str, Any] | None:
    try:
        obj = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return obj if isinstance(obj, dict) else None


def _merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge_dicts(out[k], v)
        else:
            out[k] = v
    return out


def load_behavior_config(*, cwd: Path, explicit_path: Path | None = None, global_paths: list[Path] | None = None) -> BehaviorConfig:
    """Load behavior config.

    Merge order: global < project < explicit_path. Unreadable files are skipped.
    """
    cfg = BehaviorConfig()
    layers: list[tuple[Path, dict[str, Any]]] = []

    for p in (global_paths if global_paths is not None else _global_candidate_paths()):
        if p.is_file():
            obj = _load_json(p)
            if obj is not None:
                layers.append((p, obj))

    for p in _candidate_paths(cwd):
        if p.is_file():
            obj = _load_json(p)
            if obj is not None:
                layers.append((p, obj))
                break  # first match wins for project-level

    if explicit_path is not None:
        p = explicit_path.expanduser().resolve()
        if p.is_file():
            obj = _load_json(p)
            if obj is not None:
                layers.append((p, obj))

    merged: dict[str, Any] = {}
    for p, obj in layers:
        merged = _merge_dicts(merged, obj)
        cfg.loaded_from.append(p)
    # Relative permissions_file paths resolve against the file that set it.
    base_dir = cwd
    for p, obj in layers:
        if "permissions_file" in obj:
            base_dir = p.parent
    cfg.apply(merged, base_dir=base_dir)
    return cfg
