"""ziplinegate CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from ziplinegate.config import GateConfig, load_config
from ziplinegate.errors import GateError, ZiplineError
from ziplinegate.sandbox.cleanup import CleanupSupervisor
from ziplinegate.sandbox.locks import SandboxLock
from ziplinegate.sandbox.masking import SecretMasker, configure_logging
from ziplinegate.sandbox.paths import SandboxPaths
from ziplinegate.sandbox.staging import StagingManager
from ziplinegate.sandbox.workspace import SandboxWorkspace
from ziplinegate.zipline_client import ZiplineClient


async def _run(args: argparse.Namespace, config: GateConfig, masker: SecretMasker) -> int:
    paths = SandboxPaths(config)
    supervisor = CleanupSupervisor(config, StagingManager(config), paths)

    # Orphans from a crashed run are reclaimed before any request is issued.
    summary = await supervisor.reclaim_orphans()
    if args.command == "sweep":
        print(
            f"Sandboxes cleaned: {summary.sandboxes_cleaned}, "
            f"locks cleaned: {summary.locks_cleaned}, errors: {summary.errors}"
        )
        return 1 if summary.errors else 0

    if args.command == "workspace":
        return await _workspace(args, config, paths)

    client = ZiplineClient(config, masker=masker, supervisor=supervisor)
    try:
        async with client:
            if args.command == "upload":
                return await _upload(args, client, paths, config)
            if args.command == "files":
                listing = await client.list_user_files(
                    args.page,
                    perpage=args.perpage,
                    search_query=args.search,
                )
                for file in listing.page:
                    print(f"{file.id}\t{file.name}\t{file.size}\t{file.url or ''}")
                print(f"Page {args.page} of {listing.pages} ({listing.total} files)")
                return 0
            if args.command == "download":
                path = await client.download_external_url(args.url, timeout=args.timeout)
                print(path)
                return 0
    finally:
        await supervisor.release_all()
    return 1


async def _upload(
    args: argparse.Namespace,
    client: ZiplineClient,
    paths: SandboxPaths,
    config: GateConfig,
) -> int:
    lock = SandboxLock(paths, config.lock_timeout_seconds)
    if not lock.acquire():
        print("Error: sandbox is locked by another ziplinegate process", file=sys.stderr)
        return 1
    try:
        url = await client.upload_file(
            args.filename,
            format=args.format,
            deletes_at=args.deletes_at,
            password=args.password,
            max_views=args.max_views,
            folder=args.folder,
            original_name=args.original_name,
        )
    finally:
        lock.release()
    print(url)
    return 0


async def _workspace(args: argparse.Namespace, config: GateConfig, paths: SandboxPaths) -> int:
    workspace = SandboxWorkspace(paths, config.tmp_max_read_bytes)
    if args.action == "list":
        names = await workspace.list_files()
        print(json.dumps(names, indent=2))
    elif args.action == "create":
        content = sys.stdin.read() if args.content is None else args.content
        created = await workspace.create_file(args.name, content)
        print(created.path)
    elif args.action == "read":
        sys.stdout.write(await workspace.read_file(args.name))
    elif args.action == "path":
        print(workspace.path_of(args.name))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ziplinegate",
        description="ziplinegate: secure staging gate for the Zipline upload API",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional YAML config file (environment variables take precedence)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("sweep", help="Remove abandoned sandboxes and stale locks")

    upload_parser = subparsers.add_parser("upload", help="Upload a file from your sandbox")
    upload_parser.add_argument("filename", help="Bare filename inside your sandbox")
    upload_parser.add_argument(
        "--format",
        default="random",
        help="Name format: random, uuid, date, name, random-words (default: random)",
    )
    upload_parser.add_argument("--deletes-at", help="Expiry such as 1d, 2h or date=<ISO-8601>")
    upload_parser.add_argument("--password", help="Password-protect the file")
    upload_parser.add_argument("--max-views", type=int, help="Delete after this many views")
    upload_parser.add_argument("--folder", help="Target folder ID")
    upload_parser.add_argument("--original-name", help="Original filename to record")

    files_parser = subparsers.add_parser("files", help="List your uploaded files")
    files_parser.add_argument("--page", type=int, default=1)
    files_parser.add_argument("--perpage", type=int, default=15)
    files_parser.add_argument("--search", help="Search query")

    download_parser = subparsers.add_parser(
        "download", help="Download an http(s) URL into your sandbox"
    )
    download_parser.add_argument("url")
    download_parser.add_argument("--timeout", type=float, default=None)

    workspace_parser = subparsers.add_parser("workspace", help="Manage files in your sandbox")
    workspace_parser.add_argument("action", choices=["list", "create", "read", "path"])
    workspace_parser.add_argument("name", nargs="?", help="Bare filename")
    workspace_parser.add_argument(
        "--content", help="Content for 'create' (default: read from stdin)"
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)
    if args.command == "workspace" and args.action != "list" and not args.name:
        parser.error(f"workspace {args.action} requires a filename")

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    masker = SecretMasker(config.secret)
    configure_logging(args.log_level, masker)

    try:
        code = asyncio.run(_run(args, config, masker))
    except ZiplineError as exc:
        print(exc.describe(masker), file=sys.stderr)
        sys.exit(1)
    except (GateError, ValueError, OSError) as exc:
        print(f"Error: {masker.mask_sensitive_data(str(exc))}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
