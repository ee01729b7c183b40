from __future__ import annotations
from dataclasses import dataclass
from typing import Any
import os
import shutil

from ..base import ToolSpec, ToolResult, ToolContext
from ..danger import DangerClass, classify_shell_command, command_prefix
from ...permissions.models import PermissionKey
from ...util.subprocess import run_cmd

@dataclass
class ShellExecuteTool:
    spec: ToolSpec = ToolSpec(
        name="shell_execute",
        description="Run a shell command in the working directory. Returns stdout/stderr and exit code.",
        parameters={
            "type": "object",
            "properties": {
                "cmd": {"type": "string", "description": "Shell command to run."},
                "timeout": {"type": "number", "description": "Timeout seconds (capped by the configured limit)."},
            },
            "required": ["cmd"],
        },
    )

    def classify(self, args: dict[str, Any]) -> DangerClass:
        return classify_shell_command(str(args.get("cmd") or ""))

    def derive_key(self, args: dict[str, Any]) -> PermissionKey:
        return PermissionKey(self.spec.name, command_prefix(str(args.get("cmd") or "")) or None)

    def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cmd = (args.get("cmd") or "").strip()
        if not cmd:
            return ToolResult("Empty command.", is_error=True)

        timeout = ctx.timeout
        requested = args.get("timeout")
        if requested is not None and float(requested) > 0:
            timeout = float(requested) if timeout is None else min(float(requested), timeout)

        # Use a real shell so built-ins like `cd`, pipes, &&, env expansion work.
        if os.name == "nt":
            parts = ["cmd.exe", "/c", cmd]
        else:
            shell = "bash" if shutil.which("bash") else "sh"
            parts = [shell, "-c", cmd]

        res = run_cmd(parts, cwd=ctx.cwd, timeout=timeout, cancel=ctx.cancel)

        out = ""
        if res.stdout:
            out += f"STDOUT:\n{res.stdout}\n"
        if res.stderr:
            out += f"STDERR:\n{res.stderr}\n"
        if res.timed_out:
            return ToolResult(out + f"Command timed out after {timeout}s and was killed.", is_error=True, timed_out=True)
        if res.cancelled:
            return ToolResult(out + "Command was cancelled and killed.", is_error=True)
        out += f"EXIT_CODE: {res.returncode}"
        return ToolResult(out, is_error=(res.returncode != 0))
