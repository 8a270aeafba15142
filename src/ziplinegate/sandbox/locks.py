"""Per-caller sandbox lock marker.

The marker is a small JSON file ``<sandbox>/.lock`` holding the acquisition
time and the SHA-256 hash of the owning credential.  Markers older than
``lock_timeout_seconds`` are considered stale and removed on sight.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path

from ziplinegate.sandbox.paths import SandboxPaths

logger = logging.getLogger(__name__)

LOCK_FILE = ".lock"


def read_lock(lock_path: Path) -> dict | None:
    """Return the parsed marker, or None when it is unreadable or malformed."""
    try:
        data = json.loads(lock_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict) or not isinstance(data.get("timestamp"), (int, float)):
        return None
    return data


def lock_is_stale(lock_path: Path, timeout_seconds: float, now: float | None = None) -> bool:
    data = read_lock(lock_path)
    if data is None:
        return True
    now = time.time() if now is None else now
    return now - data["timestamp"] > timeout_seconds


class SandboxLock:
    """Advisory lock on the caller's sandbox."""

    def __init__(self, paths: SandboxPaths, timeout_seconds: float) -> None:
        self._paths = paths
        self._timeout = timeout_seconds

    @property
    def lock_path(self) -> Path:
        return self._paths.root / LOCK_FILE

    def is_locked(self) -> bool:
        if not self._paths.sandboxing_enabled:
            return False
        lock_path = self.lock_path
        if not lock_path.exists():
            return False
        if lock_is_stale(lock_path, self._timeout):
            lock_path.unlink(missing_ok=True)
            return False
        return True

    def acquire(self) -> bool:
        """Take the lock. Returns False when it is already held."""
        if not self._paths.sandboxing_enabled:
            return True
        if self.is_locked():
            self._paths.log_operation("LOCK_ACQUIRE_FAILED", details="Reason: Already locked")
            return False

        self._paths.ensure_root()
        payload = json.dumps({"timestamp": time.time(), "owner": self._paths.owner_hash})
        try:
            with open(self.lock_path, "x", encoding="utf-8") as fh:
                fh.write(payload)
        except OSError:
            self._paths.log_operation(
                "LOCK_ACQUIRE_FAILED", details="Reason: Could not write lock file"
            )
            return False

        self._paths.log_operation(
            "LOCK_ACQUIRED", details=f"Timeout: {self._timeout / 60:g} minutes"
        )
        return True

    def release(self) -> bool:
        """Drop the lock if this credential owns it (or it is corrupt)."""
        if not self._paths.sandboxing_enabled:
            return True
        lock_path = self.lock_path
        if not lock_path.exists():
            self._paths.log_operation(
                "LOCK_RELEASE_NOT_NEEDED", details="Reason: No lock file exists"
            )
            return True

        data = read_lock(lock_path)
        if data is None:
            lock_path.unlink(missing_ok=True)
            self._paths.log_operation("LOCK_RELEASED", details="Reason: Lock file corrupted")
            return True
        if data.get("owner") != self._paths.owner_hash:
            self._paths.log_operation("LOCK_RELEASE_FAILED", details="Reason: Owner mismatch")
            return False

        lock_path.unlink(missing_ok=True)
        self._paths.log_operation("LOCK_RELEASED", details="Reason: Manual release")
        return True
