"""Credential masking for anything that leaves the process as text.

Log records, error descriptions and CLI output all pass through
:class:`SecretMasker`.  ``configure_logging`` installs
:class:`SecretMaskingFilter` on every root handler so that a stray ``%s`` of a
raw token still comes out redacted.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping

MASK = "[REDACTED]"
UNSERIALIZABLE = "[Unserializable Object]"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def mask_token(text: object, secret: str | None) -> object:
    """Replace every occurrence of ``secret`` in ``text`` with ``[REDACTED]``.

    Non-string ``text`` and an empty ``secret`` are returned unchanged.
    """
    if not isinstance(text, str) or not secret:
        return text
    return text.replace(secret, MASK)


class SecretMasker:
    """Masks the live credential out of strings, log args and structures."""

    def __init__(self, secret: str | None) -> None:
        self._secret = secret or None

    def mask_sensitive_data(self, text: object) -> object:
        return mask_token(text, self._secret)

    def mask_value(self, value: object) -> object:
        """Mask one log argument.

        Strings are masked directly.  Mappings and sequences are round-tripped
        through JSON so nested values are masked too; anything that cannot be
        serialized is replaced by an opaque placeholder.
        """
        if isinstance(value, str):
            return self.mask_sensitive_data(value)
        if isinstance(value, (int, float, bool)) or value is None:
            return value
        if isinstance(value, (bytes, bytearray)):
            return UNSERIALIZABLE
        if isinstance(value, (Mapping, list, tuple)):
            try:
                serialized = json.dumps(value)
            except (TypeError, ValueError, RecursionError):
                return UNSERIALIZABLE
            masked = self.mask_sensitive_data(serialized)
            try:
                return json.loads(masked)
            except ValueError:
                # The secret overlapped JSON syntax; keep the masked text.
                return masked
        # Arbitrary objects may embed the secret in their repr.
        return self.mask_sensitive_data(str(value))

    def mask_args(self, *args: object) -> tuple[object, ...]:
        return tuple(self.mask_value(arg) for arg in args)

    def secure_log(
        self,
        logger: logging.Logger,
        level: int,
        message: str,
        *args: object,
    ) -> None:
        """Log ``message % args`` with the credential masked out of both."""
        masked_message = self.mask_sensitive_data(message)
        masked_args = self.mask_args(*args)
        try:
            rendered = masked_message % masked_args if masked_args else masked_message
        except (TypeError, ValueError):
            rendered = " ".join([str(masked_message), *map(str, masked_args)])
        # Formatting can reassemble a secret split across arguments.
        logger.log(level, "%s", self.mask_sensitive_data(rendered))


class SecretMaskingFilter(logging.Filter):
    """Logging filter that renders each record and masks the result."""

    def __init__(self, masker: SecretMasker) -> None:
        super().__init__()
        self._masker = masker

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            rendered = record.getMessage()
        except Exception:
            rendered = UNSERIALIZABLE
        record.msg = self._masker.mask_sensitive_data(rendered)
        record.args = None
        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = self._masker.mask_sensitive_data(record.exc_text)
        return True


def configure_logging(level: str | int, masker: SecretMasker) -> None:
    """Set up root logging and attach the masking filter to every handler."""
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    masking_filter = SecretMaskingFilter(masker)
    for handler in logging.getLogger().handlers:
        handler.addFilter(masking_filter)
