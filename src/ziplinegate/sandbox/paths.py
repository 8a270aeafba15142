"""Path confinement for caller-supplied relative paths.

``resolve`` and ``is_within`` are pure textual operations: they never touch the
filesystem and leave case sensitivity to the host OS.  ``SandboxPaths`` binds
them to the per-caller sandbox root derived from the credential hash.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING

from ziplinegate.errors import PathEscapeError

if TYPE_CHECKING:
    from ziplinegate.config import GateConfig

logger = logging.getLogger(__name__)

_DRIVE_LETTER = re.compile(r"^[A-Za-z]:[\\/]")

BARE_FILENAME_RULES = (
    "Filenames must not include path separators, dot segments, or be empty. "
    "Only bare filenames in your sandbox are allowed."
)


def resolve(candidate: object, root: str | os.PathLike[str]) -> Path:
    """Resolve a relative ``candidate`` under ``root``.

    Raises:
        PathEscapeError: For empty, NUL-containing, absolute or traversing
            input, or when the canonical result is not under ``root``.
    """
    if candidate is None:
        raise PathEscapeError("Path cannot be None")
    if not isinstance(candidate, str):
        raise PathEscapeError("Path must be a string")
    trimmed = candidate.strip()
    if not trimmed:
        raise PathEscapeError("Path cannot be empty or whitespace-only")
    if "\x00" in trimmed:
        raise PathEscapeError("Path contains null bytes")
    if _DRIVE_LETTER.match(trimmed):
        raise PathEscapeError(f"Absolute Windows paths are not allowed: {candidate!r}")

    normalized = trimmed.replace("\\", "/")
    if normalized.startswith("/"):
        raise PathEscapeError(f"Absolute paths are not allowed: {candidate!r}")
    if ".." in normalized.split("/"):
        raise PathEscapeError(f"Path traversal attempt detected: {candidate!r}")

    root_text = os.path.normpath(os.fspath(root))
    resolved = os.path.normpath(os.path.join(root_text, normalized))
    if not _under(resolved, root_text):
        raise PathEscapeError(f"Path traversal attempt detected: {candidate!r}")
    return Path(resolved)


def is_within(path: object, root: str | os.PathLike[str]) -> bool:
    """Return True when ``path`` is ``root`` or lies beneath it. Never raises."""
    if path is None:
        return False
    if isinstance(path, os.PathLike):
        path = os.fspath(path)
    if not isinstance(path, str):
        return False
    trimmed = path.strip()
    if not trimmed or "\x00" in trimmed:
        return False
    return _under(os.path.normpath(trimmed), os.path.normpath(os.fspath(root)))


def _under(path: str, root: str) -> bool:
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def check_bare_filename(name: object) -> str:
    """Validate a bare filename for caller-visible sandbox operations."""
    if not isinstance(name, str) or not name.strip():
        raise PathEscapeError(BARE_FILENAME_RULES)
    if (
        "/" in name
        or "\\" in name
        or ".." in name
        or name.startswith(".")
        or "\x00" in name
        or _DRIVE_LETTER.match(name)
    ):
        raise PathEscapeError(BARE_FILENAME_RULES)
    return name


def credential_hash(secret: str) -> str:
    """SHA-256 hex digest of the credential; the only form that touches disk."""
    return hashlib.sha256(secret.encode()).hexdigest()


class SandboxPaths:
    """Per-caller sandbox layout: ``<tmp_root>/users/<sha256(token)>``."""

    def __init__(self, config: GateConfig) -> None:
        self._config = config

    @property
    def tmp_root(self) -> Path:
        return self._config.tmp_root

    @property
    def users_dir(self) -> Path:
        return self._config.tmp_root / "users"

    @property
    def sandboxing_enabled(self) -> bool:
        return not self._config.disable_sandboxing

    @property
    def owner_hash(self) -> str:
        return credential_hash(self._config.secret)

    @property
    def root(self) -> Path:
        if not self.sandboxing_enabled:
            return self._config.tmp_root
        return self.users_dir / self.owner_hash

    def ensure_root(self) -> Path:
        """Create the sandbox root with owner-only permissions."""
        root = self.root
        root.mkdir(parents=True, exist_ok=True, mode=0o700)
        # mkdir's mode is filtered by the umask.
        os.chmod(root, 0o700)
        return root

    def resolve(self, candidate: object) -> Path:
        return resolve(candidate, self.root)

    def resolve_filename(self, name: object) -> Path:
        return resolve(check_bare_filename(name), self.root)

    def log_operation(
        self,
        operation: str,
        filename: str | None = None,
        details: str | None = None,
    ) -> None:
        """Emit one SANDBOX_OPERATION record with the credential hash hidden."""
        shown = str(self.root).replace(self.owner_hash, "[HASH]")
        message = f"SANDBOX_OPERATION: {operation}"
        if filename:
            message += f" - {filename}"
        message += f" - Path: {shown}"
        if details:
            message += f" - {details}"
        logger.info(message)
