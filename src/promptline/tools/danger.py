from __future__ import annotations

import posixpath
import re
import shlex
from enum import Enum


class DangerClass(str, Enum):
    SAFE = "safe"
    SENSITIVE = "sensitive"
    DESTRUCTIVE = "destructive"


# Matched against the whole command line, case-insensitive.
DESTRUCTIVE_SHELL_PATTERNS: tuple[tuple[str, str], ...] = (
    (r"\brm\b[^;&|\n]*\s(-[a-z]*r[a-z]*|--recursive)\b", "recursive removal"),
    (r"\bmkfs(\.\w+)?\b", "filesystem format"),
    (r"\bdd\b.*\bof=/dev/", "raw write to a device"),
    (r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:", "fork bomb"),
    (r"\b(shutdown|reboot|halt|poweroff)\b", "host power state"),
    (r"\bgit\s+reset\s+--hard\b", "discards local changes"),
    (r"\bgit\s+clean\s+-[a-z]*f", "deletes untracked files"),
    (r"\bgit\s+push\b.*(--force\b|-f\b|--force-with-lease\b)", "rewrites remote history"),
    (r"\bch(mod|own)\s+(-[a-z]*R[a-z]*|--recursive)\s+\S*\s*/(\s|$)", "recursive permission change at root"),
    (r">\s*/dev/(sd|nvme|hd|disk)\w*", "redirect onto a block device"),
    (r"\bsudo\b", "privilege escalation"),
    (r"\bfind\b.*\s-delete\b", "bulk deletion"),
)

_COMPILED = tuple((re.compile(p, re.IGNORECASE), why) for p, why in DESTRUCTIVE_SHELL_PATTERNS)

# Programs whose first positional argument selects what they actually do.
SUBCOMMAND_PROGRAMS = frozenset({
    "git", "npm", "pnpm", "yarn", "pip", "pip3", "cargo", "docker", "kubectl",
    "go", "make", "poetry", "uv", "brew", "apt", "apt-get", "systemctl",
})


def destructive_reason(command: str) -> str | None:
    """Return why a shell command is destructive, or None."""
    for rx, why in _COMPILED:
        if rx.search(command or ""):
            return why
    return None


def classify_shell_command(command: str) -> DangerClass:
    if destructive_reason(command) is not None:
        return DangerClass.DESTRUCTIVE
    # Any shell command can have side effects.
    return DangerClass.SENSITIVE


def command_prefix(command: str) -> str:
    """Stable scope for shell permissions: program plus subcommand if any.

    "git push origin main" -> "git push"; "/usr/bin/ls -la" -> "ls".
    """
    try:
        parts = shlex.split(command or "")
    except ValueError:
        parts = (command or "").split()
    # Skip leading VAR=value assignments.
    while parts and re.match(r"^[A-Za-z_][A-Za-z0-9_]*=", parts[0]):
        parts = parts[1:]
    if not parts:
        return ""
    prog = posixpath.basename(parts[0])
    if prog in SUBCOMMAND_PROGRAMS:
        for tok in parts[1:]:
            if tok.startswith("-"):
                continue
            return f"{prog} {tok}"
    return prog


def normalize_path(path: str | None) -> str:
    """Lexical normalization only; never touches the filesystem."""
    p = (path or ".").strip().replace("\\", "/")
    if not p:
        p = "."
    return posixpath.normpath(p)
