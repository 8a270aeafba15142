"""Async client for the Zipline REST API.

Every upload goes through the sandbox: the filename is confined to the caller
sandbox, headers are validated before any I/O, and the content is staged (and
secret-scanned) by :class:`CleanupSupervisor`, which releases it on every exit
path.  Non-2xx responses are mapped onto :class:`ZiplineError` by
:func:`map_status`.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import re
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import quote, unquote, urlsplit

import httpx
from pydantic import ValidationError

from ziplinegate.cache import TTLCache
from ziplinegate.config import GateConfig
from ziplinegate.errors import (
    DownloadError,
    PayloadTooLargeError,
    ZiplineResponseError,
    map_status,
)
from ziplinegate.models import FileModel, Folder, ListUserFilesResponse
from ziplinegate.sandbox.cleanup import CleanupSupervisor
from ziplinegate.sandbox.masking import SecretMasker
from ziplinegate.sandbox.paths import SandboxPaths, check_bare_filename
from ziplinegate.sandbox.staging import (
    DiskStaged,
    MemoryStaged,
    StagedContent,
    StagingManager,
    open_private,
)

logger = logging.getLogger(__name__)

USER_AGENT = "ziplinegate/0.1.0"

ALLOWED_EXTENSIONS = frozenset({
    ".txt", ".md", ".gpx", ".html", ".htm", ".json", ".xml", ".csv",
    ".js", ".ts", ".css", ".py", ".sh", ".yaml", ".yml", ".toml",
    ".mp4", ".mkv", ".webm", ".avi",
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg",
})

UPLOAD_FORMATS = ("random", "uuid", "date", "name", "random-words")
_FORMAT_ALIASES = {"gfycat": "random-words"}

# mimetypes does not know these on every platform.
_MIME_OVERRIDES = {
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".avi": "video/x-msvideo",
    ".gpx": "application/gpx+xml",
    ".md": "text/markdown",
    ".ts": "text/typescript",
    ".yaml": "text/yaml",
    ".yml": "text/yaml",
    ".toml": "application/toml",
}

_RELATIVE_EXPIRY = re.compile(r"^\d+[mhdw]$")
_ALPHANUMERIC = re.compile(r"^[A-Za-z0-9]+$")
_DOWNLOAD_CHUNK_BYTES = 64 * 1024


# ── Validators ───────────────────────────────────────────────────────────────


def normalize_format(fmt: str) -> str:
    """Lower-case ``fmt`` and map legacy aliases (``gfycat``)."""
    if not isinstance(fmt, str) or not fmt.strip():
        raise ValueError("Upload format cannot be empty")
    normalized = fmt.strip().lower()
    normalized = _FORMAT_ALIASES.get(normalized, normalized)
    if normalized not in UPLOAD_FORMATS:
        raise ValueError(
            f"Invalid format: {fmt!r}. Expected one of: {', '.join(UPLOAD_FORMATS)}"
        )
    return normalized


def validate_deletes_at(value: str, *, now: datetime | None = None) -> str:
    """Accept ``<n><m|h|d|w>`` or ``date=<ISO-8601>`` in the future."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Expiration cannot be empty")
    value = value.strip()
    if _RELATIVE_EXPIRY.match(value):
        return value

    if not value.startswith("date="):
        raise ValueError(
            f"Invalid expiration {value!r}: use a duration such as '1d' or "
            "'date=<ISO-8601 timestamp>'"
        )
    raw = value[len("date="):]
    try:
        when = datetime.fromisoformat(raw)
    except ValueError:
        raise ValueError(f"Invalid expiration date: {raw!r}") from None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if when <= now:
        raise ValueError(f"Expiration date must be in the future: {raw!r}")
    return value


def validate_password(value: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Password cannot be empty")
    return value


def validate_max_views(value: object) -> int:
    # bool is an int subclass and must not pass.
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("max_views must be a non-negative integer")
    if value < 0:
        raise ValueError("max_views must be a non-negative integer")
    return value


def validate_folder(value: str) -> str:
    if not isinstance(value, str) or not _ALPHANUMERIC.match(value):
        raise ValueError("Folder ID must be alphanumeric")
    return value


def validate_original_name(value: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Original name cannot be empty")
    if "/" in value or "\\" in value or "\x00" in value:
        raise ValueError("Original name must not contain path separators")
    return value


def normalize_url(base: str, path: str) -> str:
    """Join ``base`` and ``path`` with exactly one slash.

    ``https://`` is assumed when ``base`` has no scheme.  Absolute ``path``
    values are returned as-is and an unparseable base falls back to plain
    concatenation.
    """
    if path.startswith(("http://", "https://")):
        return path
    candidate = base if "://" in base else f"https://{base}"
    parsed = urlsplit(candidate)
    if not parsed.netloc or any(ch.isspace() for ch in candidate):
        return f"{base.rstrip('/')}/{path.lstrip('/')}"
    return f"{candidate.rstrip('/')}/{path.lstrip('/')}"


def guess_mime_type(filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()
    if ext in _MIME_OVERRIDES:
        return _MIME_OVERRIDES[ext]
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


def build_upload_headers(
    *,
    fmt: str = "random",
    deletes_at: str | None = None,
    password: str | None = None,
    max_views: int | None = None,
    folder: str | None = None,
    original_name: str | None = None,
) -> dict[str, str]:
    """Validate upload options and render them as ``x-zipline-*`` headers."""
    headers = {"x-zipline-format": normalize_format(fmt)}
    if deletes_at is not None:
        headers["x-zipline-deletes-at"] = validate_deletes_at(deletes_at)
    if password is not None:
        headers["x-zipline-password"] = validate_password(password)
    if max_views is not None:
        headers["x-zipline-max-views"] = str(validate_max_views(max_views))
    if folder is not None:
        headers["x-zipline-folder"] = validate_folder(folder)
    if original_name is not None:
        headers["x-zipline-original-name"] = validate_original_name(original_name)
    return headers


_UNSET: Any = object()


class ZiplineClient:
    """Async Zipline API client bound to one credential."""

    def __init__(
        self,
        config: GateConfig,
        cache: TTLCache[ListUserFilesResponse] | None = None,
        masker: SecretMasker | None = None,
        *,
        supervisor: CleanupSupervisor | None = None,
    ):
        self.config = config
        self.paths = SandboxPaths(config)
        self.masker = masker or SecretMasker(config.secret)
        # An empty cache is falsy; compare against None.
        self.cache: TTLCache[ListUserFilesResponse] = (
            cache if cache is not None else TTLCache(config.cache_ttl_seconds)
        )
        self.supervisor = supervisor or CleanupSupervisor(
            config, StagingManager(config), self.paths
        )

        self._client: httpx.AsyncClient | None = None
        # External downloads must never carry the Zipline credential.
        self._external: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize HTTP clients."""
        self._client = httpx.AsyncClient(
            base_url=self.config.endpoint,
            headers={"authorization": self.config.secret, "User-Agent": USER_AGENT},
            timeout=self.config.request_timeout_seconds,
        )
        self._external = httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            timeout=self.config.request_timeout_seconds,
            follow_redirects=True,
        )
        logger.info("Zipline client started for %s", self.config.endpoint)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._external:
            await self._external.aclose()
            self._external = None

    async def __aenter__(self) -> ZiplineClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Zipline client not started")
        return self._client

    # ── Transport ────────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        resp = await self.client.request(method, path, **kwargs)
        if resp.is_success:
            return resp
        error = map_status(resp.status_code, resp.text)
        self.masker.secure_log(
            logger,
            logging.WARNING,
            "Zipline %s %s failed: %s (HTTP %d)",
            method,
            path,
            error.kind.value,
            resp.status_code,
        )
        raise error

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise ZiplineResponseError(
                f"Zipline returned a non-JSON response (HTTP {resp.status_code})"
            ) from exc

    def _absolute(self, file: FileModel) -> FileModel:
        if file.url:
            file.url = normalize_url(self.config.endpoint, file.url)
        return file

    def _parse_file(self, resp: httpx.Response) -> FileModel:
        try:
            return self._absolute(FileModel.model_validate(self._json(resp)))
        except ValidationError as exc:
            raise ZiplineResponseError(f"Unexpected file payload: {exc}") from exc

    def _parse_folder(self, resp: httpx.Response) -> Folder:
        try:
            return Folder.model_validate(self._json(resp))
        except ValidationError as exc:
            raise ZiplineResponseError(f"Unexpected folder payload: {exc}") from exc

    # ── Uploads ──────────────────────────────────────────────────────────────

    async def upload_file(
        self,
        filename: str,
        *,
        format: str = "random",
        deletes_at: str | None = None,
        password: str | None = None,
        max_views: int | None = None,
        folder: str | None = None,
        original_name: str | None = None,
    ) -> str:
        """Upload ``filename`` from the caller sandbox and return its URL.

        Raises:
            PathEscapeError: ``filename`` is not a bare sandbox filename.
            ValueError: Disallowed extension or invalid upload option.
            PayloadTooLargeError / SecretDetectionError: From staging.
            ZiplineError: The server rejected the upload.
        """
        target = self.paths.resolve_filename(filename)
        ext = target.suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValueError(
                f"File type {ext or '(none)'} is not allowed. "
                f"Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
            )
        headers = build_upload_headers(
            fmt=format,
            deletes_at=deletes_at,
            password=password,
            max_views=max_views,
            folder=folder,
            original_name=original_name,
        )

        async with self.supervisor.staged(target) as staged:
            url = await self._post_upload(staged, target.name, headers)

        self.cache.invalidate()
        self.paths.log_operation(
            "FILE_UPLOADED", target.name, f"Format: {headers['x-zipline-format']}"
        )
        return url

    async def _post_upload(
        self, staged: StagedContent, name: str, headers: dict[str, str]
    ) -> str:
        mime = guess_mime_type(name)
        if isinstance(staged, MemoryStaged):
            files = {"file": (name, bytes(staged.content or b""), mime)}
            resp = await self._request("POST", "/api/upload", headers=headers, files=files)
        else:
            fh = await asyncio.to_thread(open, staged.path, "rb")
            try:
                files = {"file": (name, fh, mime)}
                resp = await self._request("POST", "/api/upload", headers=headers, files=files)
            finally:
                await asyncio.to_thread(fh.close)

        payload = self._json(resp)
        try:
            url = payload["files"][0]["url"]
        except (KeyError, IndexError, TypeError):
            raise ZiplineResponseError("Upload response did not include a file URL") from None
        if not isinstance(url, str) or not url:
            raise ZiplineResponseError("Upload response did not include a file URL")
        return normalize_url(self.config.endpoint, url)

    # ── Files ────────────────────────────────────────────────────────────────

    async def list_user_files(
        self,
        page: int = 1,
        *,
        perpage: int = 15,
        filter: str | None = None,
        favorite: bool | None = None,
        sort_by: str | None = None,
        order: str | None = None,
        search_field: str | None = None,
        search_query: str | None = None,
    ) -> ListUserFilesResponse:
        """List the caller's files. Results are cached per parameter set."""
        params: dict[str, Any] = {
            "page": page,
            "perpage": perpage,
            "filter": filter,
            "favorite": favorite,
            "sortBy": sort_by,
            "order": order,
            "searchField": search_field,
            "searchQuery": search_query,
        }
        key = TTLCache.generate_key(params)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("File listing cache hit (page %d)", page)
            return cached

        query = {
            k: (str(v).lower() if isinstance(v, bool) else v)
            for k, v in params.items()
            if v is not None
        }
        resp = await self._request("GET", "/api/user/files", params=query)
        try:
            listing = ListUserFilesResponse.model_validate(self._json(resp))
        except ValidationError as exc:
            raise ZiplineResponseError(f"Unexpected file listing payload: {exc}") from exc
        for file in listing.page:
            self._absolute(file)

        self.cache.set(key, listing)
        return listing

    async def get_user_file(self, file_id: str) -> FileModel:
        resp = await self._request("GET", f"/api/user/files/{quote(file_id, safe='')}")
        return self._parse_file(resp)

    async def update_user_file(
        self,
        file_id: str,
        *,
        favorite: bool | None = None,
        max_views: int | None = None,
        original_name: str | None = None,
        type: str | None = None,
        tags: list[str] | None = None,
        name: str | None = None,
        password: str | None = _UNSET,
    ) -> FileModel:
        """PATCH file properties. ``password=None`` removes the password."""
        body: dict[str, Any] = {}
        if favorite is not None:
            body["favorite"] = favorite
        if max_views is not None:
            body["maxViews"] = validate_max_views(max_views)
        if original_name is not None:
            body["originalName"] = validate_original_name(original_name)
        if type is not None:
            body["type"] = type
        if tags is not None:
            body["tags"] = tags
        if name is not None:
            body["name"] = name
        if password is not _UNSET:
            body["password"] = password
        if not body:
            raise ValueError("At least one field to update is required")

        resp = await self._request(
            "PATCH", f"/api/user/files/{quote(file_id, safe='')}", json=body
        )
        self.cache.invalidate()
        return self._parse_file(resp)

    async def delete_user_file(self, file_id: str) -> FileModel:
        resp = await self._request("DELETE", f"/api/user/files/{quote(file_id, safe='')}")
        self.cache.invalidate()
        return self._parse_file(resp)

    # ── Folders ──────────────────────────────────────────────────────────────

    async def list_folders(
        self, page: int | None = None, *, noincl: bool | None = None
    ) -> list[Folder]:
        params: dict[str, Any] = {}
        if page is not None:
            params["page"] = page
        if noincl is not None:
            params["noincl"] = str(noincl).lower()
        resp = await self._request("GET", "/api/user/folders", params=params)
        data = self._json(resp)
        if not isinstance(data, list):
            raise ZiplineResponseError("Folder listing is not a list")
        try:
            return [Folder.model_validate(item) for item in data]
        except ValidationError as exc:
            raise ZiplineResponseError(f"Unexpected folder payload: {exc}") from exc

    async def get_folder(self, folder_id: str) -> Folder:
        resp = await self._request("GET", f"/api/user/folders/{quote(folder_id, safe='')}")
        return self._parse_folder(resp)

    async def create_folder(
        self, name: str, is_public: bool = False, files: list[str] | None = None
    ) -> Folder:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Folder name cannot be empty")
        body: dict[str, Any] = {"name": name, "isPublic": is_public}
        if files:
            body["files"] = files
        resp = await self._request("POST", "/api/user/folders", json=body)
        self.cache.invalidate()
        return self._parse_folder(resp)

    async def edit_folder(
        self,
        folder_id: str,
        *,
        name: str | None = None,
        is_public: bool | None = None,
        allow_uploads: bool | None = None,
    ) -> Folder:
        body: dict[str, Any] = {}
        if name is not None:
            body["name"] = name
        if is_public is not None:
            body["isPublic"] = is_public
        if allow_uploads is not None:
            body["allowUploads"] = allow_uploads
        if not body:
            raise ValueError("At least one field to update is required")
        resp = await self._request(
            "PATCH", f"/api/user/folders/{quote(folder_id, safe='')}", json=body
        )
        return self._parse_folder(resp)

    async def add_file_to_folder(self, folder_id: str, file_id: str) -> Folder:
        resp = await self._request(
            "PUT", f"/api/user/folders/{quote(folder_id, safe='')}", json={"id": file_id}
        )
        self.cache.invalidate()
        return self._parse_folder(resp)

    # ── External downloads ───────────────────────────────────────────────────

    async def download_external_url(
        self,
        url: str,
        *,
        timeout: float | None = None,
        max_file_size: int | None = None,
    ) -> Path:
        """Fetch an http(s) URL into the caller sandbox and return its path.

        The body is streamed into a private ``.<name>.part`` file tracked by the
        cleanup supervisor and moved onto the target only once complete.  On any
        failure the partial file is removed and an existing file of the same
        name is left untouched.
        """
        parsed = urlsplit(url) if isinstance(url, str) else None
        if parsed is None or not parsed.scheme or not parsed.netloc:
            raise ValueError(f"Invalid URL: {url!r}")
        if parsed.scheme not in ("http", "https"):
            raise ValueError(f"Unsupported URL scheme: {parsed.scheme}")

        limit = self.config.max_payload_bytes
        if max_file_size is not None:
            limit = min(limit, max_file_size)
        name = check_bare_filename(PurePosixPath(unquote(parsed.path)).name or "download")

        await asyncio.to_thread(self.paths.ensure_root)
        target = self.paths.resolve_filename(name)
        external = self._external
        if external is None:
            raise RuntimeError("Zipline client not started")

        part = target.with_name(f".{name}.part")
        try:
            fh = await asyncio.to_thread(open_private, part)
        except FileExistsError as exc:
            raise DownloadError(f"A download of {name} is already in progress") from exc
        handle = DiskStaged(path=part, size=0, owned=True)
        self.supervisor.adopt(handle)

        try:
            try:
                async with external.stream(
                    "GET", url, timeout=timeout or self.config.request_timeout_seconds
                ) as resp:
                    if not resp.is_success:
                        raise DownloadError(f"HTTP {resp.status_code}: {resp.reason_phrase}")
                    declared = resp.headers.get("content-length")
                    if declared and declared.isdigit() and int(declared) > limit:
                        raise PayloadTooLargeError(int(declared), limit)
                    async for chunk in resp.aiter_bytes(_DOWNLOAD_CHUNK_BYTES):
                        handle.size += len(chunk)
                        if handle.size > limit:
                            raise PayloadTooLargeError(handle.size, limit)
                        await asyncio.to_thread(fh.write, chunk)
            finally:
                fh.close()
            await asyncio.to_thread(os.replace, part, target)
        except httpx.TimeoutException as exc:
            raise DownloadError(f"Download timed out: {url}") from exc
        except httpx.HTTPError as exc:
            raise DownloadError(f"Download failed: {exc}") from exc
        finally:
            # Removes the part file unless it was already moved onto the target.
            await self.supervisor.release(handle)

        self.paths.log_operation("FILE_DOWNLOADED", name, f"Size: {handle.size} bytes")
        return target
