"""Error taxonomy for the staging gate.

Local validation failures (path, secret, size) are raised before any network
call.  Remote failures are mapped from the HTTP status onto a closed set of
``ErrorKind`` values by :func:`map_status`, which is total over all integers.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ziplinegate.sandbox.masking import SecretMasker


class GateError(Exception):
    """Base class for every error raised by ziplinegate."""


class PathEscapeError(GateError, ValueError):
    """A caller-supplied path is malformed or escapes its sandbox root."""


class SecretDetectionError(GateError):
    """Staged content matched a secret pattern and was discarded.

    Only the static pattern label is carried; the matched value never is.
    """

    def __init__(self, kind: str, pattern_label: str) -> None:
        self.kind = kind
        self.pattern_label = pattern_label
        super().__init__(
            f"File rejected: content matches the {pattern_label} pattern ({kind})"
        )


class PayloadTooLargeError(GateError):
    """The payload exceeds the absolute size ceiling."""

    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            f"Payload of {size_bytes} bytes exceeds the {limit_bytes} byte limit"
        )


class ErrorKind(str, enum.Enum):
    """Closed set of remote failure kinds."""

    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    FORBIDDEN_OPERATION = "FORBIDDEN_OPERATION"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_ZIPLINE_ERROR = "INTERNAL_ZIPLINE_ERROR"


class ZiplineError(GateError):
    """A failed call to the Zipline API, mapped onto an :class:`ErrorKind`."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        http_status: int,
        response_body: str | None = None,
        resolution_guidance: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.http_status = http_status
        # Kept verbatim for diagnostics; mask before surfacing.
        self.response_body = response_body
        self.resolution_guidance = resolution_guidance

    def describe(self, masker: SecretMasker | None = None) -> str:
        """Return the user-facing text: message, body and resolution guidance.

        Everything passes through ``masker`` when one is given.
        """
        parts = [f"{self.kind.value}: {self.message}"]
        if self.response_body:
            parts.append(f"Response: {self.response_body[:500]}")
        parts.append(f"Resolution: {self.resolution_guidance}")
        text = "\n".join(parts)
        if masker is not None:
            text = masker.mask_sensitive_data(text)
        return text


# ── Status table ─────────────────────────────────────────────────────────────

_STATUS_KINDS: dict[int, tuple[ErrorKind, str]] = {
    401: (ErrorKind.UNAUTHORIZED_ACCESS, "Authentication failed"),
    403: (ErrorKind.FORBIDDEN_OPERATION, "Operation forbidden"),
    404: (ErrorKind.RESOURCE_NOT_FOUND, "Resource not found"),
    413: (ErrorKind.PAYLOAD_TOO_LARGE, "Payload too large"),
    429: (ErrorKind.RATE_LIMIT_EXCEEDED, "Rate limit exceeded"),
}

_GUIDANCE: dict[int, str] = {
    401: (
        "Check the ZIPLINE_TOKEN environment variable. Verify the token is valid "
        "and not expired, and that it has the correct permissions."
    ),
    403: (
        "Operation not permitted with the current token. Verify the token has the "
        "permissions this operation requires, or ask the server administrator for access."
    ),
    404: (
        "Requested resource does not exist. Verify the file or folder ID is correct; "
        "use list_user_files or list_folders to look up the correct ID."
    ),
    413: (
        "File size exceeds the server limit. Reduce the file size or check the "
        "Zipline server configuration for its upload size limit."
    ),
    429: (
        "Rate limit exceeded. Wait before retrying and reduce the request "
        "frequency, or ask the administrator for a higher limit."
    ),
}

_SERVER_GUIDANCE = (
    "Zipline server error. Check the server logs, verify the server is running "
    "and reachable, then retry after a brief delay."
)

_FALLBACK_GUIDANCE = (
    "Unexpected response from the Zipline API. Check network connectivity, "
    "verify the ZIPLINE_ENDPOINT setting and review the server logs."
)


def resolution_guidance(http_status: int) -> str:
    if http_status in _GUIDANCE:
        return _GUIDANCE[http_status]
    if 500 <= http_status <= 599:
        return _SERVER_GUIDANCE
    return _FALLBACK_GUIDANCE


def map_status(http_status: int, response_body: str | None = None) -> ZiplineError:
    """Map an HTTP status onto a :class:`ZiplineError`.

    Never raises: every status outside the table becomes
    ``INTERNAL_ZIPLINE_ERROR`` with the literal status in its message.
    """
    mapped = _STATUS_KINDS.get(http_status)
    if mapped is not None:
        kind, message = mapped
    else:
        kind = ErrorKind.INTERNAL_ZIPLINE_ERROR
        message = f"Internal Zipline error (HTTP {http_status})"

    return ZiplineError(
        message,
        kind,
        http_status,
        response_body=response_body,
        resolution_guidance=resolution_guidance(http_status),
    )


class ZiplineResponseError(GateError):
    """The Zipline API answered 2xx but with an unusable payload."""


class DownloadError(GateError):
    """Fetching an external URL into the sandbox failed."""
