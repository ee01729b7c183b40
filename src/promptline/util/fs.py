from __future__ import annotations
import os
import tempfile
from pathlib import Path

class FsError(RuntimeError):
    pass

def resolve_path(cwd: Path, path_str: str) -> Path:
    p = Path(path_str)
    if not p.is_absolute():
        p = (cwd / p).resolve()
    else:
        p = p.resolve()
    # File tools stay inside the working directory.
    try:
        p.relative_to(cwd.resolve())
    except ValueError:
        raise FsError(f"Path escapes working directory: {path_str}")
    return p

def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")

def atomic_write_text(path: Path, text: str) -> None:
    """Write via temp file + fsync + rename so readers never see a torn file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
