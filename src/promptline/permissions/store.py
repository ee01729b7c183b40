"""Durable store of "always" permission decisions.

The document is YAML so operators can edit it by hand:

    version: 1
    permissions:
      - tool: list_files
        scope: .
        decision: allow_always
        created_at: '2026-01-01T00:00:00+00:00'

Loading never fails the process: an unreadable or corrupt document yields an
empty store (every decision falls back to asking) plus a warning.
"""
from __future__ import annotations

import json
import os
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import yaml
from platformdirs import user_config_dir

from ..errors import PolicyStoreError
from ..util.fs import atomic_write_text
from .models import PermissionDecision, PermissionKey, PermissionRecord

APP_NAME = "promptline"
STORE_VERSION = 1

# Values accepted in the legacy flat {tool: level} document.
_LEGACY_LEVELS = {
    "always": PermissionDecision.ALLOW_ALWAYS,
    "allow": PermissionDecision.ALLOW_ALWAYS,
    "never": PermissionDecision.DENY_ALWAYS,
    "deny": PermissionDecision.DENY_ALWAYS,
}


def default_store_path() -> Path:
    return Path(user_config_dir(APP_NAME)) / "permissions.yaml"


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    except OSError:
        return False
    return True


@dataclass
class LoadResult:
    records: dict[PermissionKey, PermissionRecord]
    warnings: list[str] = field(default_factory=list)
    corrupt: bool = False
    migrated_from: int | None = None


def parse_document(data: Any) -> LoadResult:
    """Turn a parsed YAML document into records. Pure; never raises."""
    res = LoadResult(records={})
    if data is None:
        return res

    if isinstance(data, dict) and "permissions" not in data and "version" not in data:
        # version 0: {tool: always|never}
        res.migrated_from = 0
        for tool, level in data.items():
            decision = _LEGACY_LEVELS.get(str(level).strip().lower())
            if not isinstance(tool, str) or decision is None:
                res.warnings.append(f"Ignoring legacy permission entry {tool!r}: {level!r}")
                continue
            key = PermissionKey(tool.strip())
            res.records[key] = PermissionRecord(key=key, decision=decision)
        return res

    if not isinstance(data, dict):
        res.corrupt = True
        res.warnings.append("Permission store is not a mapping; starting with an empty store.")
        return res

    version = data.get("version", STORE_VERSION)
    if isinstance(version, int) and version > STORE_VERSION:
        res.warnings.append(f"Permission store version {version} is newer than supported ({STORE_VERSION}); reading known fields only.")

    entries = data.get("permissions") or []
    if not isinstance(entries, list):
        res.corrupt = True
        res.warnings.append("'permissions' is not a list; starting with an empty store.")
        return res

    for i, obj in enumerate(entries):
        if not isinstance(obj, dict):
            res.warnings.append(f"Ignoring permission entry #{i}: not a mapping")
            continue
        try:
            rec = PermissionRecord.from_obj(obj)
        except ValueError as e:
            # Covers unknown and non-durable decisions too.
            res.warnings.append(f"Ignoring permission entry #{i}: {e}")
            continue
        # Later entries win, matching what a hand editor expects.
        res.records.pop(rec.key, None)
        res.records[rec.key] = rec
    return res


def render_document(records: Iterable[PermissionRecord]) -> str:
    doc = {"version": STORE_VERSION, "permissions": [r.to_obj() for r in records]}
    return yaml.safe_dump(doc, sort_keys=False, allow_unicode=True, default_flow_style=False)


class PermissionStore:
    """Process-wide mapping PermissionKey -> PermissionRecord.

    All access goes through an internal lock; the loop and tools never touch
    the store directly, only the policy engine does.
    """

    def __init__(self, path: Path | None = None):
        self.path = Path(path) if path is not None else default_store_path()
        self._records: dict[PermissionKey, PermissionRecord] = {}
        self._lock = threading.RLock()
        self._pending_backup = False
        self._marker_owned = False
        self.warnings: list[str] = []

    @property
    def marker_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    # ---- lifecycle ----

    @staticmethod
    def open(path: Path | None = None, *, claim: bool = True) -> "PermissionStore":
        store = PermissionStore(path)
        if claim:
            store.claim()
        store.load()
        return store

    def load(self) -> dict[PermissionKey, PermissionRecord]:
        with self._lock:
            res = self._read()
            self._records = res.records
            self._pending_backup = res.corrupt
            self.warnings.extend(res.warnings)
            return dict(self._records)

    def _read(self) -> LoadResult:
        if not self.path.exists():
            return LoadResult(records={})
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            return LoadResult(records={}, warnings=[f"Cannot read permission store {self.path}: {e}"])
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            return LoadResult(records={}, corrupt=True, warnings=[f"Permission store {self.path} is corrupt ({e.__class__.__name__}); starting with an empty store."])
        return parse_document(data)

    def close(self) -> None:
        self.release()

    # ---- queries ----

    def get(self, key: PermissionKey) -> PermissionRecord | None:
        with self._lock:
            return self._records.get(key)

    def records(self) -> list[PermissionRecord]:
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._records

    # ---- mutations ----

    def upsert(self, record: PermissionRecord) -> PermissionRecord | None:
        """Insert or replace; returns the record it replaced, if any."""
        with self._lock:
            previous = self._records.get(record.key)
            self._records[record.key] = record
            return previous

    def remove(self, key: PermissionKey) -> PermissionRecord | None:
        with self._lock:
            return self._records.pop(key, None)

    def restore(self, key: PermissionKey, previous: PermissionRecord | None) -> None:
        with self._lock:
            if previous is None:
                self._records.pop(key, None)
            else:
                self._records[key] = previous

    def reset(self, tool: str | None = None, scope: str | None = None) -> int:
        """Drop durable records (all, one tool, or one tool+scope) and flush."""
        with self._lock:
            doomed = [
                k for k in self._records
                if (tool is None or k.tool == tool) and (scope is None or k.scope == scope)
            ]
            if not doomed:
                return 0
            removed = {k: self._records.pop(k) for k in doomed}
            try:
                self.flush()
            except PolicyStoreError:
                self._records.update(removed)
                raise
            return len(doomed)

    def flush(self) -> None:
        with self._lock:
            try:
                if self._pending_backup and self.path.exists():
                    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
                    self.path.replace(self.path.with_name(f"{self.path.name}.corrupt-{stamp}"))
                atomic_write_text(self.path, render_document(self._records.values()))
            except OSError as e:
                raise PolicyStoreError(f"Failed to write permission store {self.path}: {e}") from e
            self._pending_backup = False

    # ---- single-instance marker ----

    def claim(self) -> None:
        """Write the instance marker, warning if another instance holds it."""
        marker = self.marker_path
        try:
            if marker.exists():
                try:
                    info = json.loads(marker.read_text(encoding="utf-8"))
                except (OSError, ValueError):
                    info = {}
                pid = info.get("pid") if isinstance(info, dict) else None
                host = info.get("host") if isinstance(info, dict) else None
                same_host = host in (None, socket.gethostname())
                if isinstance(pid, int) and pid != os.getpid() and same_host and _pid_alive(pid):
                    self.warnings.append(
                        f"Another promptline instance (pid {pid}) appears to be using {self.path}; "
                        "concurrent writers are not supported and may overwrite each other."
                    )
                    return
                if pid != os.getpid():
                    self.warnings.append(f"Replacing stale permission store marker {marker} (pid {pid}).")
            marker.parent.mkdir(parents=True, exist_ok=True)
            marker.write_text(
                json.dumps({"pid": os.getpid(), "host": socket.gethostname(), "started_at": time.time()}),
                encoding="utf-8",
            )
            self._marker_owned = True
        except OSError as e:
            self.warnings.append(f"Cannot write permission store marker {marker}: {e}")

    def release(self) -> None:
        if not self._marker_owned:
            return
        try:
            self.marker_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.warnings.append(f"Cannot remove permission store marker: {e}")
        self._marker_owned = False
