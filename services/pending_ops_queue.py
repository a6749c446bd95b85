from __future__ import annotations

import asyncio
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from sqlmodel import Session, select
from sqlalchemy import func

from core.errors import InvalidLocalData
from core.log import get_logger
from core.settings import CACHE_DIR, QUEUE, QueueSettings
from datetime_utils import ensure_utc, to_rfc3339_utc, utc_now
from models.payloads import (
    EventAdd,
    EventDelete,
    EventUpdate,
    FavoriteToggle,
    MoveToFolder,
    OperationPayload,
    OperationType,
    PhotoDelete,
    PhotoUpload,
    decode_payload,
    encode_payload,
)
from models.pending_op import PendingOp
from services.remote_store import RemoteStore, call_remote


STAGED_UPLOAD_PREFIX = "pending_upload_"


@dataclass
class PendingOperation:
    id: str
    op_type: str
    payload: Optional[OperationPayload]
    raw_payload: str
    created_at: datetime
    retry_count: int = 0
    last_retry_at: Optional[datetime] = None
    last_error: Optional[str] = None
    decode_error: Optional[str] = None
    max_retries: int = QUEUE.max_retries
    max_age: timedelta = timedelta(days=QUEUE.max_age_days)

    def backoff_delay(self) -> float:
        """Seconds to wait after the last failure: 1, 2, 4, 8, 16."""
        return float(2 ** self.retry_count)

    def can_retry_now(self, now: Optional[datetime] = None) -> bool:
        if self.last_retry_at is None:
            return True
        now = now or utc_now()
        return (now - self.last_retry_at).total_seconds() >= self.backoff_delay()

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return now - self.created_at > self.max_age

    def is_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries


@dataclass
class DrainResult:
    processed: int = 0
    failed: int = 0
    discarded: int = 0
    skipped: int = 0
    pruned: int = 0


class PendingOpsQueue:
    """Durable queue of remote-store writes that could not be applied yet.

    Records live in the ``pending_ops`` table; every mutation commits on its
    own under one writer lock.  :meth:`drain` replays records in FIFO order,
    each independently: a failure only bumps that record's retry bookkeeping.
    """

    def __init__(
        self,
        remote: RemoteStore,
        session_factory: Callable[[], Session],
        *,
        cache_dir: Path | str = CACHE_DIR,
        monitor=None,
        clock: Callable[[], datetime] = utc_now,
        settings: QueueSettings = QUEUE,
        auto_drain: bool = True,
    ) -> None:
        self.remote = remote
        self._session_factory = session_factory
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.monitor = monitor
        self._clock = clock
        self.settings = settings
        self.auto_drain = auto_drain
        self.last_error: Optional[str] = None
        self._write_lock = threading.Lock()
        self._drain_lock = asyncio.Lock()
        self._background: Set[asyncio.Task] = set()
        self.logger = get_logger("queue")

    # ------------------------------------------------------------------
    # Enqueue
    def enqueue(self, payload: OperationPayload) -> str:
        op_type, raw = encode_payload(payload)
        op_id = str(uuid.uuid4())
        with self._write_lock, self._session_factory() as session:
            session.add(PendingOp(id=op_id, op_type=op_type, payload=raw, created_at=self._clock()))
            session.commit()
        self.logger.info("Queued %s operation %s", op_type, op_id)
        self._schedule_drain()
        return op_id

    def stage_blob(self, data: bytes, suffix: str = ".jpg") -> str:
        """Write bytes next to the queue and return the file name to reference."""

        name = f"{STAGED_UPLOAD_PREFIX}{uuid.uuid4()}{suffix}"
        (self.cache_dir / name).write_bytes(data)
        return name

    def enqueue_photo_upload(
        self,
        image_data: bytes,
        *,
        uploaded_by: str,
        captured_at: Optional[datetime] = None,
        event_id: Optional[str] = None,
        folder_id: Optional[str] = None,
    ) -> str:
        name = self.stage_blob(image_data)
        return self.enqueue(
            PhotoUpload(
                image_file_path=name,
                uploaded_by=uploaded_by,
                captured_at=captured_at,
                event_id=event_id,
                folder_id=folder_id,
            )
        )

    def enqueue_photo_delete(self, photo_id: str, image_url: str) -> str:
        return self.enqueue(PhotoDelete(photo_id=photo_id, image_url=image_url))

    def enqueue_favorite_toggle(self, photo_id: str, is_favorite: bool) -> str:
        return self.enqueue(FavoriteToggle(photo_id=photo_id, is_favorite=is_favorite))

    def enqueue_move_to_folder(self, photo_id: str, folder_id: Optional[str]) -> str:
        return self.enqueue(MoveToFolder(photo_id=photo_id, folder_id=folder_id))

    async def perform(self, payload: OperationPayload) -> bool:
        """Apply ``payload`` now when online; queue it when offline or failing.

        Returns ``True`` when the write reached the remote store.
        """

        if self.monitor is not None and not self.monitor.is_online:
            self.enqueue(payload)
            return False
        if payload.entity_key is not None and payload.entity_key in self.pending_entity_keys():
            self.enqueue(payload)
            return False
        op_type, raw = encode_payload(payload)
        op = PendingOperation(
            id=str(uuid.uuid4()), op_type=op_type, payload=payload, raw_payload=raw, created_at=self._clock()
        )
        try:
            await self._dispatch(op)
        except InvalidLocalData:
            raise
        except Exception as exc:
            self.last_error = str(exc)
            self.logger.warning("Immediate %s failed, queueing: %s", op_type, exc)
            self.enqueue(payload)
            return False
        return True

    # ------------------------------------------------------------------
    # Inspection
    def operations(self) -> List[PendingOperation]:
        with self._session_factory() as session:
            rows = list(session.exec(select(PendingOp).order_by(PendingOp.seq.asc())))
        return [self._to_operation(row) for row in rows]

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._session_factory() as session:
            rows = list(session.exec(select(PendingOp).order_by(PendingOp.seq.asc())))
            return [row.model_dump() for row in rows]

    def pending_entity_keys(self) -> Set[str]:
        return {
            op.payload.entity_key
            for op in self.operations()
            if op.payload is not None and op.payload.entity_key is not None
        }

    def count(self) -> int:
        with self._session_factory() as session:
            return int(session.exec(select(func.count()).select_from(PendingOp)).one())

    # ------------------------------------------------------------------
    # Mutation
    def remove(self, op_id: str) -> None:
        with self._write_lock, self._session_factory() as session:
            row = session.exec(select(PendingOp).where(PendingOp.id == op_id)).first()
            if row:
                session.delete(row)
                session.commit()

    def prune(self, now: Optional[datetime] = None) -> int:
        """Drop operations older than the maximum age, retries left or not."""

        now = now or self._clock()
        max_age = timedelta(days=self.settings.max_age_days)
        removed: List[tuple] = []
        with self._write_lock, self._session_factory() as session:
            for row in list(session.exec(select(PendingOp))):
                created_at = ensure_utc(row.created_at)
                if now - created_at > max_age:
                    removed.append((row.id, row.op_type, row.payload, created_at))
                    session.delete(row)
            if removed:
                session.commit()
        for op_id, op_type, raw, created_at in removed:
            age_days = (now - created_at).total_seconds() / 86400
            self.logger.warning("Discarding stale operation %s (age: %.1f days)", op_id, age_days)
            self._discard_staged_blob(op_type, raw)
        return len(removed)

    def clear(self) -> None:
        with self._write_lock, self._session_factory() as session:
            for row in list(session.exec(select(PendingOp))):
                session.delete(row)
            session.commit()
        for path in self.cache_dir.glob(f"{STAGED_UPLOAD_PREFIX}*"):
            try:
                path.unlink()
            except OSError:
                pass
        self.logger.info("Pending operations and staged uploads cleared")

    def _record_failure(self, op: PendingOperation, error: Exception) -> bool:
        """Bump retry bookkeeping; returns ``True`` if the op was discarded."""

        with self._write_lock, self._session_factory() as session:
            row = session.exec(select(PendingOp).where(PendingOp.id == op.id)).first()
            if row is None:
                return True
            row.retry_count += 1
            row.last_retry_at = self._clock()
            row.last_error = str(error)[:1000]
            exhausted = row.retry_count >= self.settings.max_retries
            if exhausted:
                session.delete(row)
            else:
                session.add(row)
            session.commit()
        if exhausted:
            self.logger.warning(
                "Operation %s exceeded %d retries, discarding", op.id, self.settings.max_retries
            )
            self._discard_staged_blob(op.op_type, op.raw_payload)
        return exhausted

    # ------------------------------------------------------------------
    # Drain
    async def drain(self) -> DrainResult:
        async with self._drain_lock:
            result = DrainResult()
            if self.monitor is not None and not self.monitor.is_online:
                self.logger.info("Offline, leaving %d operation(s) queued", self.count())
                return result

            result.pruned = self.prune()
            now = self._clock()
            # Entities with an earlier op still waiting; later ops on them must not overtake it.
            blocked: Set[str] = set()
            for op in self.operations():
                key = op.payload.entity_key if op.payload is not None else None
                if key is not None and key in blocked:
                    self.logger.debug("Skipping operation %s - earlier operation on %s pending", op.id, key)
                    result.skipped += 1
                    continue
                if not op.can_retry_now(now):
                    self.logger.debug("Skipping operation %s - backoff not elapsed", op.id)
                    result.skipped += 1
                    if key is not None:
                        blocked.add(key)
                    continue
                try:
                    await self._dispatch(op)
                except InvalidLocalData as exc:
                    self.last_error = str(exc)
                    self.logger.warning("Discarding operation %s: %s", op.id, exc)
                    self.remove(op.id)
                    self._discard_staged_blob(op.op_type, op.raw_payload)
                    result.discarded += 1
                except Exception as exc:
                    self.last_error = str(exc)
                    self.logger.warning(
                        "Operation %s (%s) failed on attempt %d: %s",
                        op.id,
                        op.op_type,
                        op.retry_count + 1,
                        exc,
                    )
                    if self._record_failure(op, exc):
                        result.discarded += 1
                    else:
                        result.failed += 1
                        if key is not None:
                            blocked.add(key)
                else:
                    self.remove(op.id)
                    result.processed += 1
                    self.logger.info("Processed operation %s (%s)", op.id, op.op_type)
            return result

    def _schedule_drain(self) -> None:
        if not self.auto_drain:
            return
        if self.monitor is not None and not self.monitor.is_online:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.drain())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _dispatch(self, op: PendingOperation) -> None:
        payload = op.payload
        if payload is None:
            raise InvalidLocalData(op.decode_error or f"{op.op_type} payload could not be decoded")

        timeout = self.settings.request_timeout_sec
        photos = self.settings.photos_collection
        events = self.settings.events_collection

        if isinstance(payload, PhotoUpload):
            path = self.cache_dir / payload.image_file_path
            try:
                data = path.read_bytes()
            except OSError as exc:
                raise InvalidLocalData(f"staged upload {payload.image_file_path} is missing") from exc
            url = await call_remote(self.remote.upload_blob, data, timeout=timeout)
            doc = {
                "imageURL": url,
                "caption": "",
                "uploadedBy": payload.uploaded_by,
                "createdAt": to_rfc3339_utc(self._clock()),
                "capturedAt": to_rfc3339_utc(payload.captured_at),
                "eventId": payload.event_id,
                "folderId": payload.folder_id,
                "isFavorite": False,
            }
            await call_remote(self.remote.create_record, photos, doc, timeout=timeout)
            path.unlink(missing_ok=True)
        elif isinstance(payload, PhotoDelete):
            await call_remote(self.remote.delete_blob, payload.image_url, timeout=timeout)
            await call_remote(self.remote.delete_record, photos, payload.photo_id, timeout=timeout)
        elif isinstance(payload, EventAdd):
            await call_remote(self.remote.create_record, events, payload.to_dict(), timeout=timeout)
        elif isinstance(payload, EventUpdate):
            await call_remote(
                self.remote.update_record, events, payload.event_id, payload.to_dict(), timeout=timeout
            )
        elif isinstance(payload, EventDelete):
            for ref in payload.media_refs:
                try:
                    await call_remote(self.remote.delete_blob, ref, timeout=timeout)
                except Exception as exc:
                    self.logger.warning("Could not delete event media %s: %s", ref, exc)
            await call_remote(self.remote.delete_record, events, payload.event_id, timeout=timeout)
        elif isinstance(payload, FavoriteToggle):
            await call_remote(
                self.remote.update_record,
                photos,
                payload.photo_id,
                {"isFavorite": payload.is_favorite},
                timeout=timeout,
            )
        elif isinstance(payload, MoveToFolder):
            await call_remote(
                self.remote.update_record,
                photos,
                payload.photo_id,
                {"folderId": payload.folder_id},
                timeout=timeout,
            )
        else:
            raise InvalidLocalData(f"no handler for {op.op_type}")

    # ------------------------------------------------------------------
    def _to_operation(self, row: PendingOp) -> PendingOperation:
        payload: Optional[OperationPayload] = None
        decode_error: Optional[str] = None
        try:
            payload = decode_payload(row.op_type, row.payload)
        except InvalidLocalData as exc:
            decode_error = str(exc)
        return PendingOperation(
            id=row.id,
            op_type=row.op_type,
            payload=payload,
            raw_payload=row.payload,
            created_at=ensure_utc(row.created_at),
            retry_count=row.retry_count,
            last_retry_at=ensure_utc(row.last_retry_at),
            last_error=row.last_error,
            decode_error=decode_error,
            max_retries=self.settings.max_retries,
            max_age=timedelta(days=self.settings.max_age_days),
        )

    def _discard_staged_blob(self, op_type: str, raw: str) -> None:
        if op_type != OperationType.UPLOAD_PHOTO.value:
            return
        try:
            payload = decode_payload(op_type, raw)
        except InvalidLocalData:
            return
        (self.cache_dir / payload.image_file_path).unlink(missing_ok=True)


__all__ = ["DrainResult", "PendingOperation", "PendingOpsQueue", "STAGED_UPLOAD_PREFIX"]
