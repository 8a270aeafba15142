"""Minimal file management inside the caller's sandbox.

Only bare filenames are accepted.  Every operation is logged through
``SandboxPaths.log_operation`` so the credential hash never appears in logs.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from ziplinegate.errors import PayloadTooLargeError
from ziplinegate.sandbox.locks import LOCK_FILE
from ziplinegate.sandbox.paths import SandboxPaths

logger = logging.getLogger(__name__)


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} bytes"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


@dataclass(frozen=True)
class WorkspaceFile:
    name: str
    path: Path
    size: int


class SandboxWorkspace:
    """LIST / CREATE / READ / PATH over the caller sandbox."""

    def __init__(self, paths: SandboxPaths, max_read_bytes: int) -> None:
        self._paths = paths
        self._max_read_bytes = max_read_bytes

    async def list_files(self) -> list[str]:
        root = await asyncio.to_thread(self._paths.ensure_root)
        names = await asyncio.to_thread(_list_regular_files, root)
        self._paths.log_operation("FILE_LIST", details=f"Files: {len(names)}")
        return names

    async def create_file(self, name: str, content: str = "") -> WorkspaceFile:
        """Create or overwrite ``name`` with UTF-8 ``content``."""
        await asyncio.to_thread(self._paths.ensure_root)
        target = self._paths.resolve_filename(name)
        try:
            await asyncio.to_thread(_write_text_private, target, content)
            size = (await asyncio.to_thread(os.stat, target)).st_size
        except OSError as exc:
            self._paths.log_operation("FILE_CREATE_FAILED", name, f"Error: {exc.strerror}")
            raise
        self._paths.log_operation("FILE_CREATED", name, f"Size: {format_file_size(size)}")
        return WorkspaceFile(name=name, path=target, size=size)

    async def read_file(self, name: str) -> str:
        """Return the text of ``name``; refuses files above the read limit."""
        target = self._paths.resolve_filename(name)
        try:
            size = (await asyncio.to_thread(os.stat, target)).st_size
        except OSError as exc:
            self._paths.log_operation("FILE_READ_FAILED", name, f"Error: {exc.strerror}")
            raise
        if size > self._max_read_bytes:
            self._paths.log_operation(
                "FILE_READ_FAILED", name, f"Reason: File too large ({format_file_size(size)})"
            )
            raise PayloadTooLargeError(size, self._max_read_bytes)
        data = await asyncio.to_thread(target.read_text, encoding="utf-8")
        self._paths.log_operation("FILE_READ", name, f"Size: {format_file_size(size)}")
        return data

    def path_of(self, name: str) -> Path:
        target = self._paths.resolve_filename(name)
        self._paths.log_operation("FILE_PATH", name)
        return target


def _list_regular_files(root: Path) -> list[str]:
    return sorted(
        entry.name for entry in root.iterdir() if entry.is_file() and entry.name != LOCK_FILE
    )


def _write_text_private(path: Path, content: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(content)
