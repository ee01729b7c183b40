from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator
import re

from ..base import ToolSpec, ToolResult, ToolContext
from ..danger import DangerClass, normalize_path
from ...permissions.models import PermissionKey
from ...util.fs import resolve_path, read_text, FsError

SKIP_DIRS = {".git", ".hg", ".svn", "__pycache__", "node_modules", ".venv", ".mypy_cache", ".pytest_cache"}


def compile_matcher(pattern: str, *, regex: bool = True, ignore_case: bool = False) -> re.Pattern[str]:
    """Literal patterns are escaped so both modes share one code path."""
    flags = re.IGNORECASE if ignore_case else 0
    return re.compile(pattern if regex else re.escape(pattern), flags)


def iter_search_files(target: Path, include: str | None = None) -> Iterator[Path]:
    """Files under target in sorted order, skipping VCS and cache directories."""
    if target.is_file():
        yield target
        return
    for p in sorted(target.rglob("*")):
        if not p.is_file() or SKIP_DIRS.intersection(p.relative_to(target).parts[:-1]):
            continue
        if include and not p.match(include):
            continue
        yield p


def _looks_binary(path: Path) -> bool:
    try:
        with path.open("rb") as f:
            return b"\0" in f.read(4096)
    except OSError:
        return True


@dataclass
class SearchTool:
    spec: ToolSpec = ToolSpec(
        name="search",
        description="Search file contents for a pattern. Returns 'path:line: text' for each matching line.",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Regex (default) or literal string if regex=false."},
                "path": {"type": "string", "description": "File or directory to search (relative to cwd). Default '.'"},
                "regex": {"type": "boolean", "default": True},
                "ignore_case": {"type": "boolean", "default": False},
                "include": {"type": "string", "description": "Optional glob filter like '*.py'."},
                "max_matches": {"type": "integer", "default": 200},
            },
            "required": ["pattern"],
        },
    )

    def classify(self, args: dict[str, Any]) -> DangerClass:
        return DangerClass.SAFE

    def derive_key(self, args: dict[str, Any]) -> PermissionKey:
        return PermissionKey(self.spec.name, normalize_path(args.get("path")))

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd).expanduser().resolve()
        path = args.get("path", ".")
        limit = max(1, int(args.get("max_matches", 200)))
        try:
            target = resolve_path(cwd, path)
            rx = compile_matcher(
                args["pattern"],
                regex=bool(args.get("regex", True)),
                ignore_case=bool(args.get("ignore_case", False)),
            )
        except FsError as e:
            return ToolResult(str(e), is_error=True)
        except re.error as e:
            return ToolResult(f"Invalid regex: {e}", is_error=True)
        if not target.exists():
            return ToolResult(f"Path not found: {path}", is_error=True)

        hits: list[str] = []
        for f in iter_search_files(target, args.get("include")):
            if ctx.cancel.is_set():
                return ToolResult("Search cancelled.", is_error=True)
            if _looks_binary(f):
                continue
            rel = f.relative_to(cwd).as_posix()
            for no, line in enumerate(read_text(f).splitlines(), start=1):
                if rx.search(line):
                    hits.append(f"{rel}:{no}: {line}")
                    if len(hits) >= limit:
                        hits.append(f"(stopped after {limit} matches)")
                        return ToolResult("\n".join(hits))
        return ToolResult("\n".join(hits) if hits else "(no matches)")
