#!/usr/bin/env python3
"""Print live snapshots of one request record.

Connects to the realtime database configured through ``RIDESYNC_*``
environment variables and prints every snapshot the watcher receives for a
request id. The id can be given directly or looked up as the active request
of a user (``--user``).
Generated ids start with ``-``, so pass them after ``--``.

Examples::

    RIDESYNC_DATABASE_URL=https://example-rtdb.firebaseio.com \\
        python scripts/watch_request.py --duration 60 -- -NxYz123

    python scripts/watch_request.py --user u1 --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from ridesync import RideSyncClient, StoreError, SyncConfig, WatchState, project  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Watch a ride/food request record and print its snapshots.",
    )
    parser.add_argument(
        "request_id",
        nargs="?",
        help="Request id to watch.",
    )
    parser.add_argument(
        "--user",
        help="Watch the active request of this user id instead.",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full record as JSON for each snapshot.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    args = parser.parse_args()
    if not args.request_id and not args.user:
        parser.error("either request_id or --user is required")
    return args


def _print_state(state: WatchState, *, as_json: bool) -> None:
    ts_text = time.strftime("%H:%M:%S")
    if state.is_loading:
        print(f"[watch] {ts_text} id={state.request_id} loading...")
        return
    record = state.latest
    if record is None:
        print(f"[watch] {ts_text} id={state.request_id} absent")
        return
    if as_json:
        print(json.dumps(record.model_dump(mode="json"), indent=2, ensure_ascii=False, sort_keys=True))
        return
    view = project(record)
    print(
        f"[watch] {ts_text} id={record.id} kind={record.kind} status={record.status} "
        f"driver={record.driver_id or '-'} accepted={state.is_accepted} view={type(view).__name__}",
    )


async def _watch(args: argparse.Namespace) -> int:
    config = SyncConfig.from_env()
    async with RideSyncClient(config) as client:
        request_id = args.request_id
        if request_id is None:
            request_id = await client.store.find_active_request(args.user)
            if request_id is None:
                print(f"[watch] No active request for user {args.user}")
                return 1
            print(f"[watch] Active request for user {args.user}: {request_id}")

        watcher = client.watch()
        watcher.add_listener(lambda state: _print_state(state, as_json=args.json))
        watcher.open(request_id)
        try:
            if args.duration > 0:
                await asyncio.sleep(args.duration)
                print(f"[watch] Reached --duration={args.duration}s, stopping.")
            else:
                await asyncio.Event().wait()
        finally:
            watcher.close()
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_watch(args))
    except KeyboardInterrupt:
        return 0
    except StoreError as exc:  # pragma: no cover - network/system interaction
        print(f"[watch] Store error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(_main())
