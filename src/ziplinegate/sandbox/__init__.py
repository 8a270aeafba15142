"""Per-caller sandbox: path confinement, secret scanning, staging and cleanup.

The sandbox root is ``<tmp_root>/users/<sha256(token)>``; the raw credential
never touches disk or logs.  Set ``disable_sandboxing`` to share ``<tmp_root>``
between callers on single-user hosts.
"""

from .cleanup import CleanupSummary, CleanupSupervisor
from .locks import SandboxLock
from .masking import SecretMasker, SecretMaskingFilter, configure_logging, mask_token
from .paths import SandboxPaths, check_bare_filename, is_within, resolve
from .scanner import SecretFinding, SecretScanner
from .staging import DiskStaged, MemoryStaged, StagingManager, StageState
from .workspace import SandboxWorkspace

__all__ = [
    "CleanupSummary",
    "CleanupSupervisor",
    "DiskStaged",
    "MemoryStaged",
    "SandboxLock",
    "SandboxPaths",
    "SandboxWorkspace",
    "SecretFinding",
    "SecretMasker",
    "SecretMaskingFilter",
    "SecretScanner",
    "StageState",
    "StagingManager",
    "check_bare_filename",
    "configure_logging",
    "is_within",
    "mask_token",
    "resolve",
]
