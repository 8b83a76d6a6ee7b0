"""
Snapshot export/import CLI for MarketSync.

Works directly against the configured snapshot store (STORE_BACKEND,
SQLITE_PATH, ...), bypassing the HTTP front end. Useful for backups and for
moving a room between deployments.

Usage:
    marketsync-snapshot export --room <room> --key <key> [--file out.json]
    marketsync-snapshot import --room <room> --key <key> --file in.json [--overwrite]

Invariants:
    - Import goes through the same compare-and-swap write as the server
    - Export never modifies the store

How to change safely:
    - Keep the export document format in sync with merge/views.py
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from ..config import ServerConfig
from ..errors import MarketSyncError
from ..service import RoomService
from ..store import create_snapshot_store

logger = logging.getLogger(__name__)


async def run_export(service: RoomService, room: str, key: str, file: str | None) -> int:
    document = await service.export(room, key)
    if document is None:
        print(f"No state for room {room!r} key {key!r}", file=sys.stderr)
        return 1

    text = json.dumps(document, ensure_ascii=False, indent=2)
    if file:
        Path(file).write_text(text + "\n", encoding="utf-8")
        print(f"Exported room {room!r} to {file} (vTick {document['state']['vTick']})")
    else:
        print(text)
    return 0


async def run_import(
    service: RoomService,
    room: str,
    key: str,
    file: str | None,
    overwrite: bool,
) -> int:
    raw = Path(file).read_text(encoding="utf-8") if file else sys.stdin.read()
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as e:
        print(f"Import file is not valid JSON: {e}", file=sys.stderr)
        return 1

    result = await service.import_state(room, key, document, overwrite=overwrite)
    print(f"Imported into room {room!r}: v={result.v} vTick={result.v_tick}")
    return 0


async def run(args: argparse.Namespace, config: ServerConfig) -> int:
    service = RoomService(create_snapshot_store(config.store), config=config)
    await service.start()
    try:
        if args.command == "export":
            return await run_export(service, args.room, args.key, args.file)
        return await run_import(service, args.room, args.key, args.file, args.overwrite)
    except MarketSyncError as e:
        print(f"{args.command} failed [{e.code}]: {e.message}", file=sys.stderr)
        return 1
    finally:
        await service.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marketsync-snapshot",
        description="Export or import a MarketSync room snapshot",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", help="Write a room's state as JSON")
    import_parser = subparsers.add_parser("import", help="Replace a room's state from JSON")
    for sub in (export_parser, import_parser):
        sub.add_argument("--room", required=True, help="Room name")
        sub.add_argument("--key", required=True, help="State key within the room")
        sub.add_argument("--file", help="JSON file (stdout/stdin when omitted)")
    import_parser.add_argument(
        "--overwrite", action="store_true", help="Replace a room that already has data"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for the snapshot tool."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    return asyncio.run(run(args, config))


if __name__ == "__main__":
    sys.exit(main())
