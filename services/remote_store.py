"""Boundary to the shared document/object store.

The store itself (documents plus blobs) lives outside this repository; the
queue and the event service only see :class:`RemoteStore`.  Implementations
are plain blocking clients, callers reach them through :func:`call_remote`
so every request runs off the event loop under a deadline.
"""
from __future__ import annotations

import abc
import asyncio
from typing import Any, AsyncIterator, Callable, Dict, Iterable, Optional

from core.errors import RequestTimeout
from core.log import get_logger


Document = Dict[str, Any]


class RemoteStore(abc.ABC):
    @abc.abstractmethod
    def create_record(self, collection: str, doc: Document) -> str:
        """Create a document and return its id (``doc["id"]`` when given)."""

    @abc.abstractmethod
    def update_record(self, collection: str, record_id: str, doc: Document) -> None:
        ...

    @abc.abstractmethod
    def delete_record(self, collection: str, record_id: str) -> None:
        ...

    @abc.abstractmethod
    def stream_records(self, collection: str, query: Optional[Dict[str, Any]] = None) -> Iterable[list]:
        """Lazy, unbounded sequence of collection snapshots.

        Raises when the underlying listener drops; callers restart it.
        """

    @abc.abstractmethod
    def upload_blob(self, data: bytes) -> str:
        """Store bytes and return their download URL."""

    @abc.abstractmethod
    def delete_blob(self, url: str) -> None:
        ...


async def call_remote(fn: Callable[..., Any], *args: Any, timeout: float, **kwargs: Any) -> Any:
    """Run a blocking remote call in a worker thread with a deadline."""

    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=timeout)
    except asyncio.TimeoutError as exc:
        name = getattr(fn, "__name__", "remote call")
        raise RequestTimeout(f"{name} timed out after {timeout:g}s") from exc


_END = object()


class RecordSubscription:
    """Restartable, cancelable async view over :meth:`RemoteStore.stream_records`.

    Iterating yields snapshots until :meth:`cancel` is called.  When the stream
    fails or ends, the subscription waits for connectivity (the next online
    edge from the monitor, or ``retry_delay`` seconds) and opens a new stream.
    """

    def __init__(
        self,
        remote: RemoteStore,
        collection: str,
        query: Optional[Dict[str, Any]] = None,
        *,
        monitor=None,
        retry_delay: float = 5.0,
    ) -> None:
        self.remote = remote
        self.collection = collection
        self.query = query
        self.monitor = monitor
        self.retry_delay = retry_delay
        self.restarts = 0
        self._cancelled = False
        self._wakeup: Optional[asyncio.Event] = None
        self.logger = get_logger("subscription")

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._wakeup is not None:
            self._wakeup.set()

    def __aiter__(self) -> AsyncIterator[list]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[list]:
        while not self._cancelled:
            stream = iter(self.remote.stream_records(self.collection, self.query))
            try:
                while not self._cancelled:
                    snapshot = await asyncio.to_thread(next, stream, _END)
                    if snapshot is _END:
                        self.logger.info("Stream on %s ended, reopening", self.collection)
                        break
                    yield snapshot
            except Exception as exc:
                self.logger.warning("Stream on %s failed: %s", self.collection, exc)
            finally:
                close = getattr(stream, "close", None)
                if callable(close):
                    try:
                        close()
                    except ValueError:
                        pass
            if self._cancelled:
                break
            self.restarts += 1
            await self._wait_for_reconnect()

    async def _wait_for_reconnect(self) -> None:
        loop = asyncio.get_running_loop()
        wakeup = self._wakeup = asyncio.Event()
        unsubscribe = None
        if self.monitor is not None and not self.monitor.is_online:
            unsubscribe = self.monitor.on_transition(lambda: loop.call_soon_threadsafe(wakeup.set))
            timeout = None
        else:
            timeout = self.retry_delay
        try:
            await asyncio.wait_for(wakeup.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        finally:
            if unsubscribe is not None:
                unsubscribe()
            self._wakeup = None


__all__ = ["Document", "RecordSubscription", "RemoteStore", "call_remote"]
