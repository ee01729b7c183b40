from __future__ import annotations
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ..danger import DangerClass, normalize_path
from ...permissions.models import PermissionKey
from ...util.fs import resolve_path, FsError

@dataclass
class DeleteFileTool:
    spec: ToolSpec = ToolSpec(
        name="delete_file",
        description="Delete a file, or a directory tree when recursive=true.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path relative to cwd."},
                "recursive": {"type": "boolean", "default": False},
            },
            "required": ["path"],
        },
    )

    def classify(self, args: dict[str, Any]) -> DangerClass:
        return DangerClass.DESTRUCTIVE

    def derive_key(self, args: dict[str, Any]) -> PermissionKey:
        return PermissionKey(self.spec.name, normalize_path(args.get("path")))

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd).resolve()
        path = args["path"]
        try:
            p = resolve_path(cwd, path)
        except FsError as e:
            return ToolResult(str(e), is_error=True)
        if p == cwd:
            return ToolResult("Refusing to delete the working directory itself.", is_error=True)
        if not p.exists() and not p.is_symlink():
            return ToolResult(f"Path not found: {path}", is_error=True)
        if p.is_dir() and not p.is_symlink():
            if not args.get("recursive"):
                return ToolResult(f"{path} is a directory; pass recursive=true to delete it.", is_error=True)
            shutil.rmtree(p)
            return ToolResult(f"Deleted directory {path}.")
        p.unlink()
        return ToolResult(f"Deleted {path}.")
