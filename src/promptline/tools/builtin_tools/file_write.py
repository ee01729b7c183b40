from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ..danger import DangerClass, normalize_path
from ...permissions.models import PermissionKey
from ...util.fs import resolve_path, FsError

@dataclass
class WriteFileTool:
    spec: ToolSpec = ToolSpec(
        name="write_file",
        description="Create or overwrite a file with given content.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to cwd."},
                "content": {"type": "string", "description": "Full file content."},
                "mkdirs": {"type": "boolean", "default": True, "description": "Create parent directories if needed."},
            },
            "required": ["path", "content"],
        },
    )

    def classify(self, args: dict[str, Any]) -> DangerClass:
        return DangerClass.SENSITIVE

    def derive_key(self, args: dict[str, Any]) -> PermissionKey:
        return PermissionKey(self.spec.name, normalize_path(args.get("path")))

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd)
        path = args["path"]
        content = args["content"]
        mkdirs = bool(args.get("mkdirs", True))
        try:
            p = resolve_path(cwd, path)
        except FsError as e:
            return ToolResult(str(e), is_error=True)
        if p.is_dir():
            return ToolResult(f"Is a directory: {path}", is_error=True)
        if mkdirs:
            p.parent.mkdir(parents=True, exist_ok=True)
        elif not p.parent.exists():
            return ToolResult(f"Parent directory does not exist: {path}", is_error=True)
        p.write_text(content, encoding="utf-8")
        return ToolResult(f"Wrote {path} ({len(content)} chars).")
