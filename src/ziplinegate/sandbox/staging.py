"""Memory / disk staging of validated content.

A file below ``memory_threshold_bytes`` is read into an owned ``bytearray``;
anything larger is referenced on disk in place.  Both variants are scanned for
secrets before they are handed out, and both are released through
:meth:`StagingManager.release`, which the cleanup supervisor calls on every
exit path.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Literal, Union

from ziplinegate.errors import PayloadTooLargeError, SecretDetectionError
from ziplinegate.sandbox.scanner import SecretFinding, SecretScanner

if TYPE_CHECKING:
    from ziplinegate.config import GateConfig

logger = logging.getLogger(__name__)


class StageState(str, enum.Enum):
    UNSTAGED = "unstaged"
    STAGED = "staged"
    RELEASED = "released"


@dataclass(eq=False)
class MemoryStaged:
    """Content held in an owned buffer."""

    path: Path
    content: bytearray | None
    size: int
    state: StageState = StageState.UNSTAGED
    kind: Literal["memory"] = field(default="memory", init=False)


@dataclass(eq=False)
class DiskStaged:
    """Content referenced on disk.

    ``owned`` is True only when the gate wrote the file itself (an in-flight
    download); caller-owned files are never deleted.
    """

    path: Path
    size: int
    owned: bool = False
    state: StageState = StageState.UNSTAGED
    kind: Literal["disk"] = field(default="disk", init=False)


StagedContent = Union[MemoryStaged, DiskStaged]


class StagingManager:
    """Stages files for upload, enforcing size limits and the secret scan."""

    def __init__(self, config: GateConfig, scanner: SecretScanner | None = None) -> None:
        self._config = config
        self._scanner = scanner or SecretScanner()

    @property
    def memory_threshold(self) -> int:
        return self._config.memory_threshold_bytes

    @property
    def max_payload(self) -> int:
        return self._config.max_payload_bytes

    def check_size(self, size_bytes: int) -> None:
        if size_bytes > self.max_payload:
            raise PayloadTooLargeError(size_bytes, self.max_payload)

    async def stage(self, resolved_path: Path, size_bytes: int | None = None) -> StagedContent:
        """Stage ``resolved_path`` in memory or on disk.

        Raises:
            PayloadTooLargeError: Before any read when the file is too big.
            SecretDetectionError: When the content matches a secret pattern;
                the partial staging is released first.
            FileNotFoundError: When the file does not exist.
        """
        if size_bytes is not None:
            self.check_size(size_bytes)
        else:
            size_bytes = (await asyncio.to_thread(os.stat, resolved_path)).st_size
            self.check_size(size_bytes)

        staged: StagedContent
        if size_bytes < self.memory_threshold:
            try:
                data = await asyncio.to_thread(_read_into_buffer, resolved_path)
                staged = MemoryStaged(path=resolved_path, content=data, size=len(data))
            except MemoryError:
                logger.warning(
                    "Memory staging of %s failed, falling back to disk staging",
                    resolved_path.name,
                )
                staged = DiskStaged(path=resolved_path, size=size_bytes)
        else:
            staged = DiskStaged(path=resolved_path, size=size_bytes)

        await self._verify(staged, resolved_path.name)
        logger.debug("Staged %s (%s, %d bytes)", resolved_path.name, staged.kind, staged.size)
        return staged

    async def _verify(self, staged: StagedContent, filename: str) -> None:
        try:
            finding = await self._scan(staged, filename)
        except BaseException:
            await self.release(staged)
            raise
        if finding.detected:
            await self.release(staged)
            logger.warning(
                "Staging rejected %s: %s pattern detected", filename, finding.pattern_label
            )
            raise SecretDetectionError(finding.kind or "unknown", finding.pattern_label or "unknown")
        staged.state = StageState.STAGED

    async def _scan(self, staged: StagedContent, filename: str) -> SecretFinding:
        if isinstance(staged, MemoryStaged):
            return self._scanner.scan(staged.content or b"", filename)
        return await asyncio.to_thread(self._scanner.scan_file, staged.path, filename)

    async def release(self, staged: StagedContent) -> None:
        """Release ``staged``. Safe to call more than once."""
        if staged.state is StageState.RELEASED:
            return
        staged.state = StageState.RELEASED
        if isinstance(staged, MemoryStaged):
            if staged.content is not None:
                staged.content[:] = bytes(len(staged.content))
            staged.content = None
            return
        if staged.owned:
            await asyncio.to_thread(staged.path.unlink, missing_ok=True)


def _read_into_buffer(path: Path) -> bytearray:
    with open(path, "rb") as fh:
        return bytearray(fh.read())


def open_private(path: Path) -> BinaryIO:
    """Create ``path`` (mode 0o600) for writing. Fails if it already exists."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    return os.fdopen(fd, "wb")
