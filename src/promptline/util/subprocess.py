from __future__ import annotations
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Sequence, Optional

# How often the wait loop checks for cancellation.
POLL_INTERVAL = 0.05

@dataclass
class CmdResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    cancelled: bool = False

def _kill_tree(p: subprocess.Popen) -> None:
    if p.poll() is not None:
        return
    try:
        if os.name == "nt":
            p.kill()
        else:
            # The child leads its own session, so this reaches grandchildren too.
            os.killpg(p.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        p.kill()

def run_cmd(
    cmd: Sequence[str],
    cwd: str,
    timeout: Optional[float] = 120,
    cancel: Optional[threading.Event] = None,
) -> CmdResult:
    """Run a command, killing its whole process group on timeout or cancel."""
    kwargs = {}
    if os.name == "nt":
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
    else:
        kwargs["start_new_session"] = True
    p = subprocess.Popen(
        list(cmd),
        cwd=cwd,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        shell=False,
        **kwargs,
    )
    deadline = None if timeout is None else time.monotonic() + timeout
    timed_out = cancelled = False
    while True:
        try:
            out, err = p.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            pass
        if cancel is not None and cancel.is_set():
            cancelled = True
        elif deadline is not None and time.monotonic() >= deadline:
            timed_out = True
        if timed_out or cancelled:
            _kill_tree(p)
            out, err = p.communicate()
            break
    return CmdResult(p.returncode, out or "", err or "", timed_out=timed_out, cancelled=cancelled)
