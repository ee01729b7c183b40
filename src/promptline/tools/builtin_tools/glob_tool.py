from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any
import glob as _glob

from ..base import ToolSpec, ToolResult, ToolContext
from ..danger import DangerClass
from ...permissions.models import PermissionKey

@dataclass
class GlobTool:
    spec: ToolSpec = ToolSpec(
        name="glob_files",
        description="Find files matching a glob pattern (relative to cwd).",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Glob pattern, e.g. 'src/**/*.py'."},
                "max_results": {"type": "integer", "default": 200},
            },
            "required": ["pattern"],
        },
    )

    def classify(self, args: dict[str, Any]) -> DangerClass:
        return DangerClass.SAFE

    def derive_key(self, args: dict[str, Any]) -> PermissionKey:
        return PermissionKey(self.spec.name, str(args.get("pattern") or "").strip())

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd).resolve()
        pattern = args["pattern"]
        max_results = int(args.get("max_results", 200))
        if Path(pattern).is_absolute() or ".." in Path(pattern).parts:
            return ToolResult(f"Pattern must stay inside the working directory: {pattern}", is_error=True)
        matches = sorted(_glob.glob(str(cwd / pattern), recursive=True))
        rel = []
        for m in matches:
            try:
                rel.append(str(Path(m).resolve().relative_to(cwd)))
            except ValueError:
                # symlink pointing outside cwd
                continue
            if len(rel) >= max_results:
                break
        return ToolResult("\n".join(rel) if rel else "(no matches)")
