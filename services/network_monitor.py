"""Connectivity detection driving queue drains and calendar syncs."""
from __future__ import annotations

import asyncio
import socket
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from core.errors import NetworkUnavailable
from core.log import get_logger
from core.settings import NETWORK


class ConnectionType(str, Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    ETHERNET = "ethernet"
    UNKNOWN = "unknown"
    NONE = "none"


@dataclass(frozen=True)
class NetworkStatus:
    connected: bool
    kind: ConnectionType
    is_expensive: bool = False
    is_constrained: bool = False


DISCONNECTED = NetworkStatus(connected=False, kind=ConnectionType.NONE)
# No definite signal yet: treated as online.
ASSUMED_ONLINE = NetworkStatus(connected=True, kind=ConnectionType.UNKNOWN)

_RTF_UP = 0x1
_RTF_GATEWAY = 0x2


def default_route_interface(route_table: Path | str = "/proc/net/route") -> Optional[str]:
    """Name of the interface carrying the IPv4 default route, if any."""

    try:
        lines = Path(route_table).read_text(encoding="utf-8").splitlines()
    except OSError:
        return None
    for line in lines[1:]:
        parts = line.split()
        if len(parts) < 4:
            continue
        iface, destination, flags = parts[0], parts[1], parts[3]
        try:
            flag_bits = int(flags, 16)
        except ValueError:
            continue
        if destination == "00000000" and flag_bits & _RTF_UP and flag_bits & _RTF_GATEWAY:
            return iface
    return None


def classify_interface(name: str, sys_class_net: Path | str = "/sys/class/net") -> ConnectionType:
    lowered = name.lower()
    if (Path(sys_class_net) / name / "wireless").exists() or lowered.startswith("wl"):
        return ConnectionType.WIFI
    if lowered.startswith(("ww", "rmnet", "ppp")):
        return ConnectionType.CELLULAR
    if lowered.startswith(("en", "eth")):
        return ConnectionType.ETHERNET
    return ConnectionType.UNKNOWN


def tcp_probe(
    host: str = NETWORK.probe_host,
    port: int = NETWORK.probe_port,
    timeout: float = NETWORK.probe_timeout_sec,
) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class NetworkMonitor:
    """Observes connectivity and reports offline→online edges.

    Observations arrive through :meth:`update` (or :meth:`poll_once`, which
    probes first).  Callbacks registered with :meth:`on_transition` run on the
    thread that delivered the observation, usually the monitor's own probe
    thread; use :meth:`dispatch_to` to hop onto an asyncio loop.
    """

    def __init__(
        self,
        *,
        probe: Callable[[], bool] = tcp_probe,
        interface_resolver: Callable[[], Optional[str]] = default_route_interface,
        interval_sec: float = NETWORK.probe_interval_sec,
    ) -> None:
        self._probe = probe
        self._resolve_interface = interface_resolver
        self.interval_sec = interval_sec
        self._status = ASSUMED_ONLINE
        self._callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.logger = get_logger("network")

    # ----- state -----
    def current_status(self) -> NetworkStatus:
        with self._lock:
            return self._status

    @property
    def is_online(self) -> bool:
        return self.current_status().connected

    def check_reachability(self) -> None:
        if not self.is_online:
            raise NetworkUnavailable("No internet connection. Please check your network settings.")

    def on_transition(self, callback: Callable[[], None]) -> Callable[[], None]:
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def update(self, status: NetworkStatus) -> None:
        with self._lock:
            was_online = self._status.connected
            self._status = status
            callbacks = list(self._callbacks)
        if was_online != status.connected:
            self.logger.info("Network is now %s (%s)", "online" if status.connected else "offline", status.kind.value)
        if was_online or not status.connected:
            return
        for callback in callbacks:
            try:
                callback()
            except Exception:
                self.logger.exception("Online transition callback failed")

    # ----- probing -----
    def probe_status(self) -> NetworkStatus:
        try:
            reachable = self._probe()
            iface = self._resolve_interface() if reachable else None
        except Exception:
            self.logger.debug("Connectivity probe crashed, assuming online", exc_info=True)
            return ASSUMED_ONLINE
        if not reachable:
            return DISCONNECTED
        kind = classify_interface(iface) if iface else ConnectionType.UNKNOWN
        return NetworkStatus(connected=True, kind=kind, is_expensive=kind is ConnectionType.CELLULAR)

    def poll_once(self) -> NetworkStatus:
        status = self.probe_status()
        self.update(status)
        return status

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="ourapp-network-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval_sec + 1)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            self.poll_once()
            self._stop.wait(self.interval_sec)

    @staticmethod
    def dispatch_to(
        loop: asyncio.AbstractEventLoop, factory: Callable[[], Awaitable[object]]
    ) -> Callable[[], None]:
        """Wrap a coroutine factory as a transition callback running on ``loop``."""

        def callback() -> None:
            asyncio.run_coroutine_threadsafe(factory(), loop)

        return callback


__all__ = [
    "ASSUMED_ONLINE",
    "ConnectionType",
    "DISCONNECTED",
    "NetworkMonitor",
    "NetworkStatus",
    "classify_interface",
    "default_route_interface",
    "tcp_probe",
]
