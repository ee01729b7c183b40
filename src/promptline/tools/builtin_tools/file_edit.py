from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ..danger import DangerClass, normalize_path
from ...permissions.models import PermissionKey
from ...util.fs import resolve_path, read_text, FsError

@dataclass
class EditFileTool:
    spec: ToolSpec = ToolSpec(
        name="edit_file",
        description="Replace a line range in a file. Lines are 1-based inclusive.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to cwd."},
                "start_line": {"type": "integer", "description": "1-based start line (inclusive)."},
                "end_line": {"type": "integer", "description": "1-based end line (inclusive)."},
                "new_text": {"type": "string", "description": "Replacement text for the range."},
            },
            "required": ["path", "start_line", "end_line", "new_text"],
        },
    )

    def classify(self, args: dict[str, Any]) -> DangerClass:
        return DangerClass.SENSITIVE

    def derive_key(self, args: dict[str, Any]) -> PermissionKey:
        return PermissionKey(self.spec.name, normalize_path(args.get("path")))

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd)
        path = args["path"]
        start = int(args["start_line"])
        end = int(args["end_line"])
        new_text = args["new_text"]

        try:
            p = resolve_path(cwd, path)
        except FsError as e:
            return ToolResult(str(e), is_error=True)
        if not p.exists() or not p.is_file():
            return ToolResult(f"File not found: {path}", is_error=True)

        text = read_text(p)
        lines = text.splitlines()
        if start < 1 or end < start or start > len(lines) + 1:
            return ToolResult(f"Invalid line range {start}-{end} for file with {len(lines)} lines.", is_error=True)
        # end past EOF appends
        end = min(end, len(lines))

        merged = lines[:start-1] + new_text.splitlines() + lines[end:]
        p.write_text("\n".join(merged) + ("\n" if text.endswith("\n") else ""), encoding="utf-8")
        return ToolResult(f"Edited {path}: replaced lines {start}-{end}.")
