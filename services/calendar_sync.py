"""Bidirectional calendar synchronisation.

One pass is: resolve the dedicated calendar, pull remote changes (incremental
when a sync token is stored, window-bounded otherwise), create unlinked local
events remotely, then push local edits of linked events.  The cursor file is
only ever replaced as a whole, after the step it records has completed.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from core.errors import ApiError, NotAuthenticated, TokenExpired
from core.log import get_logger
from core.settings import CALENDAR_SYNC, CalendarSyncSettings
from datetime_utils import add_months, to_rfc3339_utc, utc_now
from models.event import CalendarEvent
from models.sync_state import SyncCursorState
from services.event_repository import EventRepository
from services.google_calendar import build_event_body, event_start_date
from services.remote_store import call_remote
from services.sync_token_storage import SyncCursorStore
from storage.config import AppConfig, load_config


ERROR_RESET_SEC = 3.0


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass
class SyncReport:
    pulled: int = 0
    full_pull: bool = False
    created: int = 0
    updated: int = 0
    failed: int = 0


class CalendarSyncEngine:
    def __init__(
        self,
        calendar,
        repo: EventRepository,
        cursor_store: SyncCursorStore,
        *,
        config_loader: Callable[[], AppConfig] = load_config,
        monitor=None,
        settings: CalendarSyncSettings = CALENDAR_SYNC,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.calendar = calendar
        self.repo = repo
        self.cursor_store = cursor_store
        self._config_loader = config_loader
        self.monitor = monitor
        self.settings = settings
        self._clock = clock
        self.state = SyncState.IDLE
        self.last_error: Optional[str] = None
        self.last_pulled: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()
        self._current: Optional[asyncio.Future] = None
        self._cancel_requested = False
        self._auto_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self.logger = get_logger("calendar_sync")

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Triggers
    async def sync(self, user_initiated: bool = False) -> Optional[SyncReport]:
        """Run one pass; ``None`` when skipped, cancelled or (in background) failed."""

        if self._lock.locked():
            self.logger.info("Sync already in progress, ignoring trigger")
            return None
        async with self._lock:
            self.state = SyncState.SYNCING
            self._cancel_requested = False
            self._current = asyncio.ensure_future(self._run_pass())
            try:
                report = await self._current
            except asyncio.CancelledError:
                self.state = SyncState.IDLE
                if not self._cancel_requested:
                    raise
                self.logger.info("Sync pass cancelled")
                return None
            except Exception as exc:
                self._fail(exc)
                if user_initiated:
                    raise
                return None
            finally:
                self._current = None
            self.state = SyncState.IDLE
            self.last_error = None
            self.logger.info(
                "Sync done: pulled=%d (full=%s) created=%d updated=%d failed=%d",
                report.pulled,
                report.full_pull,
                report.created,
                report.updated,
                report.failed,
            )
            return report

    def cancel(self) -> bool:
        current = self._current
        if current is None or current.done():
            return False
        self._cancel_requested = True
        current.cancel()
        return True

    async def on_foreground(self) -> Optional[SyncReport]:
        last = self.cursor_store.load().last_sync_date
        gate = timedelta(seconds=self.settings.foreground_min_interval_sec)
        if last is not None and self._clock() - last <= gate:
            self.logger.debug("Foreground sync skipped, last sync at %s", to_rfc3339_utc(last))
            return None
        return await self.sync()

    async def on_auth_completed(self) -> Optional[SyncReport]:
        return await self.sync()

    async def on_network_online(self) -> Optional[SyncReport]:
        return await self.sync()

    def start_auto_sync(self) -> None:
        if self._auto_task is not None and not self._auto_task.done():
            return
        self._auto_task = asyncio.get_running_loop().create_task(self._auto_sync_loop())

    def stop_auto_sync(self) -> None:
        if self._auto_task is not None:
            self._auto_task.cancel()
        self._auto_task = None

    async def _auto_sync_loop(self) -> None:
        while True:
            config = self._config_loader()
            if config.auto_sync_enabled:
                await self.sync()
            await asyncio.sleep(max(1, int(config.sync_interval_seconds)))

    def on_event_deleted(self, event: CalendarEvent) -> None:
        """Listener for local deletes: remove the remote copy in the background."""

        if not event.remote_event_id:
            return
        task = asyncio.get_running_loop().create_task(self.delete_remote_event(event.remote_event_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Pass steps
    async def _run_pass(self) -> SyncReport:
        if self.monitor is not None:
            self.monitor.check_reachability()
        report = SyncReport()
        calendar_id = await self.ensure_calendar()
        await self.pull(calendar_id, report)
        await self.push(calendar_id, report)
        await self.push_updates(calendar_id, report)
        self._save_cursor(last_sync_date=self._clock())
        return report

    async def ensure_calendar(self) -> str:
        cached = self.cursor_store.load().remote_calendar_id
        if cached:
            return cached
        name = self.settings.calendar_name
        calendars = await self._call(self.calendar.list_calendars)
        calendar_id = next((item["id"] for item in calendars if item.get("name") == name), None)
        if calendar_id is None:
            calendar_id = await self._call(self.calendar.create_calendar, name)
            self.logger.info("Created calendar %r (%s)", name, calendar_id)
        self._save_cursor(remote_calendar_id=calendar_id)
        return calendar_id

    async def pull(self, calendar_id: str, report: Optional[SyncReport] = None) -> List[Dict[str, Any]]:
        report = report or SyncReport()
        token = self.cursor_store.load().sync_token
        try:
            if token:
                try:
                    items, next_token = await self._list_all(calendar_id, sync_token=token)
                except TokenExpired:
                    self.logger.warning("Sync token expired, falling back to a full pull")
                    self._save_cursor(sync_token=None)
                    items, next_token = await self._full_pull(calendar_id)
                    report.full_pull = True
            else:
                items, next_token = await self._full_pull(calendar_id)
                report.full_pull = True
        except ApiError as exc:
            if exc.status == 404:
                self.logger.warning("Calendar %s is gone, it will be resolved again next pass", calendar_id)
                self._save_cursor(remote_calendar_id=None, sync_token=None)
            raise
        if next_token:
            self._save_cursor(sync_token=next_token)
        self.last_pulled = items
        report.pulled = len(items)
        return items

    async def push(self, calendar_id: str, report: Optional[SyncReport] = None) -> int:
        report = report or SyncReport()
        window_start, window_end = self.sync_window()
        created = 0
        for event in self.repo.list_unlinked(window_start, window_end):
            synced_at = self._clock()
            try:
                remote_id = await self._call(self.calendar.create_event, calendar_id, build_event_body(event))
            except Exception as exc:
                report.failed += 1
                self.logger.warning("Failed to create remote event for %s: %s", event.id, exc)
                continue
            self.repo.mark_synced(event.id, remote_id, synced_at)
            created += 1
        report.created += created
        return created

    async def push_updates(self, calendar_id: str, report: Optional[SyncReport] = None) -> int:
        report = report or SyncReport()
        updated = 0
        for event in self.repo.list_needing_update():
            synced_at = self._clock()
            try:
                await self._call(
                    self.calendar.update_event, calendar_id, event.remote_event_id, build_event_body(event)
                )
            except Exception as exc:
                report.failed += 1
                self.logger.warning("Failed to update remote event %s: %s", event.remote_event_id, exc)
                continue
            self.repo.mark_synced(event.id, event.remote_event_id, synced_at)
            updated += 1
        report.updated += updated
        return updated

    async def remove_duplicates(
        self, time_min: Optional[datetime] = None, time_max: Optional[datetime] = None
    ) -> int:
        """Delete remote events sharing (summary, start date), keeping the first seen.

        Lists with a time window, so the stored sync token is left untouched.
        """

        async with self._lock:
            calendar_id = await self.ensure_calendar()
            now = self._clock()
            span = timedelta(days=self.settings.dedup_window_days)
            items, _ = await self._list_all(
                calendar_id, time_min=time_min or now - span, time_max=time_max or now + span
            )
            seen: Set[Tuple[str, Optional[str]]] = set()
            removed = 0
            for item in items:
                key = (item.get("summary") or "", event_start_date(item))
                if key not in seen:
                    seen.add(key)
                    continue
                try:
                    await self._call(self.calendar.delete_event, calendar_id, item["id"])
                except Exception as exc:
                    self.logger.warning("Failed to delete duplicate %s: %s", item.get("id"), exc)
                    continue
                removed += 1
            self.logger.info("Removed %d duplicate event(s)", removed)
            return removed

    async def delete_remote_event(self, remote_event_id: str) -> bool:
        if not remote_event_id:
            return False
        try:
            calendar_id = await self.ensure_calendar()
            await self._call(self.calendar.delete_event, calendar_id, remote_event_id)
        except Exception as exc:
            self.logger.warning("Could not delete remote event %s: %s", remote_event_id, exc)
            return False
        self.logger.info("Deleted remote event %s", remote_event_id)
        return True

    # ------------------------------------------------------------------
    def sync_window(self, config: Optional[AppConfig] = None) -> Tuple[datetime, datetime]:
        config = config or self._config_loader()
        now = self._clock()
        start = add_months(now, -config.past_months) if config.include_past_events else now
        end = add_months(now, config.upcoming_months) if config.include_upcoming_events else now
        return start, end

    def status(self) -> Dict[str, Any]:
        cursor = self.cursor_store.load()
        return {
            "state": self.state.value,
            "syncing": self.is_syncing,
            "lastError": self.last_error,
            "calendarId": cursor.remote_calendar_id,
            "syncToken": bool(cursor.sync_token),
            "lastSyncDate": to_rfc3339_utc(cursor.last_sync_date),
        }

    async def _full_pull(self, calendar_id: str) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        time_min, time_max = self.sync_window()
        if time_min >= time_max:
            self.logger.info("Both event ranges are disabled, skipping the remote listing")
            return [], None
        return await self._list_all(calendar_id, time_min=time_min, time_max=time_max)

    async def _list_all(self, calendar_id: str, **query: Any) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        items: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            page = await self._call(self.calendar.list_events, calendar_id, page_token=page_token, **query)
            items.extend(page.get("items") or [])
            page_token = page.get("nextPageToken")
            if not page_token:
                return items, page.get("nextSyncToken")

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return await call_remote(fn, *args, timeout=self.settings.request_timeout_sec, **kwargs)

    def _save_cursor(self, **changes: Any) -> None:
        state: SyncCursorState = self.cursor_store.load()
        self.cursor_store.save(state.with_changes(**changes))

    def _fail(self, exc: Exception) -> None:
        self.state = SyncState.ERROR
        self.last_error = str(exc)
        if isinstance(exc, NotAuthenticated):
            self.logger.info("Calendar sync skipped: %s", exc)
        else:
            self.logger.error("Calendar sync failed: %s", exc)
        asyncio.get_running_loop().call_later(ERROR_RESET_SEC, self._clear_error_state)

    def _clear_error_state(self) -> None:
        if self.state is SyncState.ERROR:
            self.state = SyncState.IDLE


__all__ = ["CalendarSyncEngine", "SyncReport", "SyncState"]
