from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ..danger import DangerClass, normalize_path
from ...permissions.models import PermissionKey
from ...util.fs import resolve_path, FsError

@dataclass
class ListFilesTool:
    spec: ToolSpec = ToolSpec(
        name="list_files",
        description="List files/directories under a path (relative to cwd).",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory path relative to cwd. Default '.'"},
                "max_entries": {"type": "integer", "description": "Max entries to return", "default": 200},
                "recursive": {"type": "boolean", "description": "If true, list recursively", "default": False},
            },
            "required": [],
        },
    )

    def classify(self, args: dict[str, Any]) -> DangerClass:
        return DangerClass.SAFE

    def derive_key(self, args: dict[str, Any]) -> PermissionKey:
        return PermissionKey(self.spec.name, normalize_path(args.get("path")))

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd).expanduser().resolve()
        path = args.get("path", ".")
        max_entries = int(args.get("max_entries", 200))
        recursive = bool(args.get("recursive", False))
        try:
            p = resolve_path(cwd, path)
        except FsError as e:
            return ToolResult(str(e), is_error=True)
        if not p.exists():
            return ToolResult(f"Path not found: {path}", is_error=True)
        if not p.is_dir():
            return ToolResult(f"Not a directory: {path}", is_error=True)

        entries: list[str] = []
        if recursive:
            for root, dirs, files in os.walk(p):
                if ctx.cancel.is_set():
                    return ToolResult("Listing cancelled.", is_error=True)
                dirs.sort()
                rootp = Path(root)
                for name in dirs + sorted(files):
                    entries.append(str((rootp / name).relative_to(cwd)))
                    if len(entries) >= max_entries:
                        break
                if len(entries) >= max_entries:
                    break
        else:
            for child in sorted(p.iterdir(), key=lambda x: (not x.is_dir(), x.name.lower())):
                suffix = "/" if child.is_dir() else ""
                entries.append(str(child.relative_to(cwd)) + suffix)
                if len(entries) >= max_entries:
                    break

        out = "\n".join(entries) if entries else "(empty)"
        return ToolResult(out)
