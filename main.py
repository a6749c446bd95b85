# ourapp/main.py
"""OurApp sync core: command-line entry point and service wiring."""
from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core import settings
from core.errors import OurAppError
from core.log import get_logger
from services.calendar_sync import CalendarSyncEngine
from services.event_repository import EventRepository
from services.events import EventService
from services.google_auth import GoogleAuth
from services.google_calendar import GoogleCalendar
from services.network_monitor import NetworkMonitor
from services.pending_ops_queue import PendingOpsQueue
from services.remote_store import RemoteStore
from services.sync_token_storage import SyncCursorStore
from storage.db import init_db, make_engine, make_session_factory


REMOTE_STORE_ENV = "OURAPP_REMOTE_STORE"

logger = get_logger("main")


@dataclass
class Services:
    remote: Optional[RemoteStore]
    monitor: NetworkMonitor
    queue: PendingOpsQueue
    events: EventService
    auth: GoogleAuth
    calendar: GoogleCalendar
    engine: CalendarSyncEngine
    cursor_store: SyncCursorStore


def load_remote_store(spec: Optional[str] = None) -> Optional[RemoteStore]:
    """Instantiate the document store named by ``module:factory``, if configured."""

    spec = spec or os.environ.get(REMOTE_STORE_ENV)
    if not spec:
        return None
    module_name, _, attr = spec.partition(":")
    factory = getattr(importlib.import_module(module_name), attr or "RemoteStore")
    return factory()


def build_services(
    remote: Optional[RemoteStore] = None,
    *,
    db_path: Path | str = settings.DB_PATH,
    cache_dir: Path | str = settings.CACHE_DIR,
    cursor_path: Path | str = settings.SYNC_CURSOR_PATH,
    token_path: Path | str = settings.TOKEN_PATH,
    secrets_path: Path | str = settings.CLIENT_SECRET_PATH,
    monitor: Optional[NetworkMonitor] = None,
) -> Services:
    """Construct every service once; callers pass the instances around."""

    engine = make_engine(db_path)
    init_db(engine)
    session_factory = make_session_factory(engine)

    monitor = monitor or NetworkMonitor()
    queue = PendingOpsQueue(remote, session_factory, cache_dir=cache_dir, monitor=monitor)
    repo = EventRepository(session_factory)
    events = EventService(repo, queue, remote, monitor)
    auth = GoogleAuth(secrets_path, token_path)
    calendar = GoogleCalendar(auth)
    cursor_store = SyncCursorStore(cursor_path)
    sync_engine = CalendarSyncEngine(calendar, repo, cursor_store, monitor=monitor)
    events.subscribe("after_delete", sync_engine.on_event_deleted)
    return Services(
        remote=remote,
        monitor=monitor,
        queue=queue,
        events=events,
        auth=auth,
        calendar=calendar,
        engine=sync_engine,
        cursor_store=cursor_store,
    )


def wire_triggers(services: Services, loop: asyncio.AbstractEventLoop) -> None:
    """Online edges drain the queue and sync; sign-in completion syncs."""

    monitor = services.monitor
    if services.remote is not None:
        monitor.on_transition(NetworkMonitor.dispatch_to(loop, services.queue.drain))
    monitor.on_transition(NetworkMonitor.dispatch_to(loop, services.engine.on_network_online))
    services.auth.on_signed_in(NetworkMonitor.dispatch_to(loop, services.engine.on_auth_completed))


def status_report(services: Services) -> dict:
    status = services.monitor.current_status()
    return {
        "network": {
            "connected": status.connected,
            "kind": status.kind.value,
            "isExpensive": status.is_expensive,
        },
        "queue": {
            "pending": services.queue.count(),
            "lastError": services.queue.last_error,
            "operations": [
                {
                    "id": op.id,
                    "type": op.op_type,
                    "retryCount": op.retry_count,
                    "lastError": op.last_error,
                }
                for op in services.queue.operations()
            ],
        },
        "calendar": dict(services.engine.status(), signedIn=services.auth.is_signed_in),
        "remoteStore": services.remote is not None,
    }


# ----- commands -----
def _require_remote(services: Services) -> None:
    if services.remote is None:
        raise OurAppError(f"No document store configured; set {REMOTE_STORE_ENV}=module:factory")


async def _cmd_sync(services: Services, args) -> int:
    services.monitor.poll_once()
    report = await services.engine.sync(user_initiated=True)
    if report is None:
        print("Sync skipped.")
        return 0
    print(
        f"Sync complete: pulled {report.pulled}, created {report.created}, "
        f"updated {report.updated}, failed {report.failed}."
    )
    return 0


async def _cmd_drain(services: Services, args) -> int:
    _require_remote(services)
    services.monitor.poll_once()
    result = await services.queue.drain()
    print(
        f"Drain: processed {result.processed}, failed {result.failed}, discarded {result.discarded}, "
        f"skipped {result.skipped}, pruned {result.pruned}; {services.queue.count()} pending."
    )
    return 0


async def _cmd_dedup(services: Services, args) -> int:
    services.monitor.poll_once()
    services.monitor.check_reachability()
    removed = await services.engine.remove_duplicates()
    print(f"Removed {removed} duplicate event(s).")
    return 0


async def _cmd_status(services: Services, args) -> int:
    services.monitor.poll_once()
    print(json.dumps(status_report(services), ensure_ascii=False, indent=2))
    return 0


async def _cmd_sign_in(services: Services, args) -> int:
    await asyncio.to_thread(services.auth.sign_in)
    print("Signed in to Google Calendar.")
    services.monitor.poll_once()
    await services.engine.on_auth_completed()
    return 0


async def _cmd_sign_out(services: Services, args) -> int:
    services.auth.sign_out()
    services.cursor_store.clear_all()
    print("Signed out of Google Calendar.")
    return 0


async def _cmd_clear_cache(services: Services, args) -> int:
    services.queue.clear()
    print("Offline cache cleared.")
    return 0


async def _cmd_run(services: Services, args) -> int:
    """Long-running mode: monitor connectivity, drain and sync on triggers."""

    loop = asyncio.get_running_loop()
    wire_triggers(services, loop)
    services.monitor.start()
    services.engine.start_auto_sync()
    try:
        if services.remote is not None:
            await services.queue.drain()
        await services.engine.on_foreground()
        await asyncio.Event().wait()
    finally:
        services.engine.stop_auto_sync()
        services.monitor.stop()
    return 0


COMMANDS = {
    "sync": (_cmd_sync, "Run a calendar sync pass now"),
    "drain": (_cmd_drain, "Replay queued offline writes"),
    "dedup": (_cmd_dedup, "Remove duplicate events from the remote calendar"),
    "status": (_cmd_status, "Show network, queue and sync status"),
    "sign-in": (_cmd_sign_in, "Connect a Google account"),
    "sign-out": (_cmd_sign_out, "Forget Google credentials and the sync cursor"),
    "clear-cache": (_cmd_clear_cache, "Drop queued operations and staged uploads"),
    "run": (_cmd_run, "Stay running: drain and sync on connectivity and timer triggers"),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ourapp", description=__doc__ or "")
    parser.add_argument(
        "--remote-store",
        default=None,
        help=f"Document store factory as module:callable (default: ${REMOTE_STORE_ENV})",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    for name, (_, help_text) in COMMANDS.items():
        sub.add_parser(name, help=help_text)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    handler, _ = COMMANDS[args.command]
    services = build_services(load_remote_store(args.remote_store))
    try:
        return asyncio.run(handler(services, args))
    except KeyboardInterrupt:
        return 130
    except OurAppError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
