"""Secret-pattern detection for content about to leave the host.

The scanner is heuristic: it looks for common credential shapes (API keys,
passwords, generic secrets, tokens, PEM private keys) and for environment-file
names.  Findings only ever carry the static pattern label, never the matched
text, so a finding is safe to log or return to the caller.
"""

from __future__ import annotations

import codecs
import logging
import re
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

BINARY_SNIFF_BYTES = 1024
_SCAN_CHUNK_BYTES = 1024 * 1024
# Longest match we expect to straddle a chunk boundary.
_CHUNK_OVERLAP_CHARS = 4096


@dataclass(frozen=True)
class SecretPattern:
    kind: str
    label: str
    regex: re.Pattern[str]


# Evaluated in this order; the first match wins.
SECRET_PATTERNS: tuple[SecretPattern, ...] = (
    SecretPattern(
        "api_key",
        "API key",
        re.compile(r"api[_\-]?key\s*[=:]\s*['\"]?[A-Za-z0-9_\-\.]{8,}", re.IGNORECASE),
    ),
    SecretPattern(
        "password",
        "password",
        re.compile(r"(?:password|passwd|pwd)\s*[=:]\s*['\"]?[^\s'\"]{4,}", re.IGNORECASE),
    ),
    SecretPattern(
        "secret",
        "generic secret",
        re.compile(r"secret(?:[_\-]?key)?\s*[=:]\s*['\"]?[^\s'\"]{8,}", re.IGNORECASE),
    ),
    SecretPattern(
        "token",
        "token",
        re.compile(
            r"(?:(?:access|auth|refresh|bearer)[_\-]?)?token\s*[=:]\s*['\"]?[A-Za-z0-9_\-\.]{8,}"
            r"|bearer\s+[A-Za-z0-9_\-\.=]{20,}",
            re.IGNORECASE,
        ),
    ),
    SecretPattern(
        "private_key",
        "private key",
        re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH |ENCRYPTED )?PRIVATE KEY-----", re.IGNORECASE),
    ),
)


@dataclass(frozen=True)
class SecretFinding:
    """Outcome of one scan call. Never persisted."""

    detected: bool
    kind: str | None = None
    pattern_label: str | None = None
    message: str = ""


_CLEAN = SecretFinding(detected=False, message="No secrets detected")
_BINARY = SecretFinding(detected=False, message="Binary content is exempt from secret scanning")


def is_env_filename(filename: str | None) -> bool:
    """``.env``, ``.env.local``, ``production.env`` and similar."""
    if not filename:
        return False
    base = Path(filename.replace("\\", "/")).name.lower()
    return base == ".env" or base.startswith(".env.") or base.endswith(".env")


def _finding(pattern: SecretPattern) -> SecretFinding:
    return SecretFinding(
        detected=True,
        kind=pattern.kind,
        pattern_label=pattern.label,
        message=f"Content matches the {pattern.label} pattern",
    )


class SecretScanner:
    """Scans text for credential-shaped substrings.

    The pattern list is fixed.  Callers that need to reject further formats can
    pass ``extra_patterns``; they are evaluated after the built-in classes.
    """

    def __init__(self, extra_patterns: tuple[SecretPattern, ...] = ()) -> None:
        self._patterns = SECRET_PATTERNS + tuple(extra_patterns)

    def scan(self, content: bytes | bytearray | str, filename: str | None = None) -> SecretFinding:
        if is_env_filename(filename):
            return SecretFinding(
                detected=True,
                kind="env_file",
                pattern_label="environment file",
                message="Environment files may contain secrets and are never uploaded",
            )

        if isinstance(content, str):
            text = content
        else:
            if b"\x00" in content[:BINARY_SNIFF_BYTES]:
                return _BINARY
            try:
                text = bytes(content).decode("utf-8")
            except UnicodeDecodeError:
                return _BINARY

        return self._match(text) or _CLEAN

    def scan_file(
        self,
        path: Path,
        filename: str | None = None,
        *,
        chunk_size: int = _SCAN_CHUNK_BYTES,
    ) -> SecretFinding:
        """Scan a file in chunks without loading it whole. Blocking."""
        if is_env_filename(filename or path.name):
            return self.scan(b"", filename or path.name)

        decoder = codecs.getincrementaldecoder("utf-8")()
        tail = ""
        # Index of the earliest-declared class matched so far.
        best: int | None = None
        with open(path, "rb") as fh:
            first = True
            while True:
                chunk = fh.read(chunk_size)
                if first:
                    if b"\x00" in chunk[:BINARY_SNIFF_BYTES]:
                        return _BINARY
                    first = False
                final = not chunk
                try:
                    text = decoder.decode(chunk, final=final)
                except UnicodeDecodeError:
                    return _BINARY
                window = tail + text
                index = self._first_match(window, len(self._patterns) if best is None else best)
                if index is not None:
                    best = index
                    if best == 0:
                        break
                if final:
                    break
                tail = window[-_CHUNK_OVERLAP_CHARS:]

        if best is None:
            return _CLEAN
        logger.debug("Secret scan matched pattern class %s", self._patterns[best].kind)
        return _finding(self._patterns[best])

    def _match(self, text: str) -> SecretFinding | None:
        index = self._first_match(text, len(self._patterns))
        if index is None:
            return None
        logger.debug("Secret scan matched pattern class %s", self._patterns[index].kind)
        return _finding(self._patterns[index])

    def _first_match(self, text: str, limit: int) -> int | None:
        """Index of the first class among ``self._patterns[:limit]`` found in ``text``."""
        for index, pattern in enumerate(self._patterns[:limit]):
            if pattern.regex.search(text):
                return index
        return None
