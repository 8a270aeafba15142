"""Zero-footprint guarantee for staged content.

``CleanupSupervisor.with_staged`` (and the ``staged`` context manager) own the
release of every staged handle: the buffer is cleared, or a self-written disk
artifact removed, whether the operation returns, raises, times out or is
cancelled.  ``reclaim_orphans`` runs once at startup and removes what a crashed
process left behind: abandoned per-caller sandboxes and stale lock markers.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from ziplinegate.sandbox.locks import LOCK_FILE, lock_is_stale
from ziplinegate.sandbox.paths import SandboxPaths
from ziplinegate.sandbox.staging import (
    DiskStaged,
    MemoryStaged,
    StagedContent,
    StageState,
    StagingManager,
)

if TYPE_CHECKING:
    from ziplinegate.config import GateConfig

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass
class CleanupSummary:
    sandboxes_cleaned: int = 0
    locks_cleaned: int = 0
    errors: int = 0


class CleanupSupervisor:
    """Scoped acquisition of staged content plus the startup orphan sweep."""

    def __init__(
        self,
        config: GateConfig,
        staging: StagingManager,
        paths: SandboxPaths | None = None,
    ) -> None:
        self._config = config
        self._staging = staging
        self._paths = paths or SandboxPaths(config)
        self._handles: dict[int, StagedContent] = {}

    @property
    def outstanding(self) -> int:
        return len(self._handles)

    @asynccontextmanager
    async def staged(
        self, resolved_path: Path, size_bytes: int | None = None
    ) -> AsyncIterator[StagedContent]:
        """Stage ``resolved_path`` for the duration of the ``async with`` block."""
        handle = await self._staging.stage(resolved_path, size_bytes)
        self._handles[id(handle)] = handle
        try:
            yield handle
        finally:
            await self._release(handle)

    async def with_staged(
        self,
        resolved_path: Path,
        size_bytes: int | None,
        operation: Callable[[StagedContent], Awaitable[R]],
    ) -> R:
        """Stage, run ``operation`` and release, on every exit path."""
        async with self.staged(resolved_path, size_bytes) as handle:
            return await operation(handle)

    def adopt(self, handle: StagedContent) -> None:
        """Track a handle created elsewhere, such as an in-flight download."""
        self._handles[id(handle)] = handle

    async def release(self, handle: StagedContent) -> None:
        await self._release(handle)

    async def _release(self, handle: StagedContent) -> None:
        self._handles.pop(id(handle), None)
        try:
            # Shielded so a cancellation arriving now cannot skip the release.
            await asyncio.shield(self._staging.release(handle))
        except asyncio.CancelledError:
            _release_sync(handle)
            raise
        except Exception:
            logger.warning("Failed to release staged %s", handle.path.name, exc_info=True)

    async def release_all(self) -> int:
        """Release every handle still outstanding. Used on shutdown."""
        handles = list(self._handles.values())
        for handle in handles:
            await self._release(handle)
        if handles:
            logger.info("Released %d outstanding staged handle(s) on shutdown", len(handles))
        return len(handles)

    # ── Startup sweep ────────────────────────────────────────────────────────

    async def reclaim_orphans(self, timeout: float | None = None) -> CleanupSummary:
        """Remove abandoned sandboxes and stale locks. Never raises.

        Runs off the event loop and is bounded by ``timeout`` (defaults to
        ``sweep_timeout_seconds``).
        """
        if not self._paths.sandboxing_enabled:
            return CleanupSummary()

        timeout = self._config.sweep_timeout_seconds if timeout is None else timeout
        summary = CleanupSummary()
        try:
            await asyncio.wait_for(asyncio.to_thread(self._sweep, summary), timeout)
        except asyncio.TimeoutError:
            summary.errors += 1
            logger.warning("Startup cleanup timed out after %.1fs", timeout)
        except Exception:
            summary.errors += 1
            logger.exception("Startup cleanup failed")

        self._paths.log_operation(
            "STARTUP_CLEANUP",
            details=(
                f"Sandboxes: {summary.sandboxes_cleaned}, Locks: {summary.locks_cleaned}, "
                f"Errors: {summary.errors}"
            ),
        )
        return summary

    def _sweep(self, summary: CleanupSummary) -> None:
        users_dir = self._paths.users_dir
        if not users_dir.exists():
            return

        now = time.time()
        max_age = self._config.sandbox_max_age_seconds
        for entry in users_dir.iterdir():
            try:
                if not entry.is_dir():
                    continue
                age = now - entry.stat().st_mtime
                if age > max_age:
                    shutil.rmtree(entry)
                    summary.sandboxes_cleaned += 1
                    self._paths.log_operation(
                        "SANDBOX_CLEANED", details=f"Age: {age / 3600:.0f} hours"
                    )
                    continue

                lock_path = entry / LOCK_FILE
                if lock_path.exists() and lock_is_stale(
                    lock_path, self._config.lock_timeout_seconds, now
                ):
                    lock_path.unlink(missing_ok=True)
                    summary.locks_cleaned += 1
                    self._paths.log_operation("STALE_LOCK_CLEANED")
            except OSError as exc:
                summary.errors += 1
                self._paths.log_operation("SANDBOX_CLEANUP_FAILED", details=f"Error: {exc}")


def _release_sync(handle: StagedContent) -> None:
    """Last-resort release when the async path was cancelled mid-flight."""
    handle.state = StageState.RELEASED
    if isinstance(handle, MemoryStaged):
        if handle.content is not None:
            handle.content[:] = bytes(len(handle.content))
        handle.content = None
    elif isinstance(handle, DiskStaged) and handle.owned:
        try:
            handle.path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to remove staged %s", handle.path.name, exc_info=True)
