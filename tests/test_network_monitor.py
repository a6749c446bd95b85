import asyncio
import threading

import pytest

from core.errors import NetworkUnavailable
from services.network_monitor import (
    ASSUMED_ONLINE,
    DISCONNECTED,
    ConnectionType,
    NetworkMonitor,
    NetworkStatus,
    classify_interface,
    default_route_interface,
)


ROUTE_TABLE = (
    "Iface\tDestination\tGateway \tFlags\tRefCnt\tUse\tMetric\tMask\t\tMTU\tWindow\tIRTT\n"
    "eth0\t0000A8C0\t00000000\t0001\t0\t0\t100\t00FFFFFF\t0\t0\t0\n"
    "wlan0\t00000000\t0100A8C0\t0003\t0\t0\t600\t00000000\t0\t0\t0\n"
)

WIFI = NetworkStatus(connected=True, kind=ConnectionType.WIFI)


def test_transition_fires_only_on_offline_to_online_edge():
    monitor = NetworkMonitor()
    fired = []
    monitor.on_transition(lambda: fired.append(monitor.current_status()))

    monitor.update(ASSUMED_ONLINE)
    monitor.update(WIFI)
    assert fired == []

    monitor.update(DISCONNECTED)
    monitor.update(DISCONNECTED)
    assert fired == []

    monitor.update(WIFI)
    monitor.update(WIFI)
    assert fired == [WIFI]


def test_failing_callback_does_not_stop_others():
    monitor = NetworkMonitor()
    fired = []

    def broken():
        raise RuntimeError("boom")

    monitor.on_transition(broken)
    monitor.on_transition(lambda: fired.append(True))
    monitor.update(DISCONNECTED)
    monitor.update(WIFI)

    assert fired == [True]


def test_unsubscribe_stops_notifications():
    monitor = NetworkMonitor()
    fired = []
    unsubscribe = monitor.on_transition(lambda: fired.append(True))
    unsubscribe()

    monitor.update(DISCONNECTED)
    monitor.update(WIFI)

    assert fired == []


def test_probe_crash_is_treated_as_online():
    def crash():
        raise OSError("no sockets")

    monitor = NetworkMonitor(probe=crash)
    monitor.update(DISCONNECTED)

    assert monitor.poll_once() == ASSUMED_ONLINE
    assert monitor.is_online


def test_unreachable_probe_means_offline():
    monitor = NetworkMonitor(probe=lambda: False)

    assert monitor.poll_once() == DISCONNECTED
    with pytest.raises(NetworkUnavailable):
        monitor.check_reachability()


def test_probe_classifies_default_route_interface():
    monitor = NetworkMonitor(probe=lambda: True, interface_resolver=lambda: "wwan0")

    status = monitor.probe_status()

    assert status.connected
    assert status.kind is ConnectionType.CELLULAR
    assert status.is_expensive


def test_default_route_interface(tmp_path):
    table = tmp_path / "route"
    table.write_text(ROUTE_TABLE, encoding="utf-8")

    assert default_route_interface(table) == "wlan0"
    assert default_route_interface(tmp_path / "missing") is None


def test_classify_interface(tmp_path):
    (tmp_path / "radio0" / "wireless").mkdir(parents=True)

    assert classify_interface("radio0", tmp_path) is ConnectionType.WIFI
    assert classify_interface("wlp2s0", tmp_path) is ConnectionType.WIFI
    assert classify_interface("rmnet_data0", tmp_path) is ConnectionType.CELLULAR
    assert classify_interface("enp3s0", tmp_path) is ConnectionType.ETHERNET
    assert classify_interface("tun0", tmp_path) is ConnectionType.UNKNOWN


def test_probe_thread_reports_status():
    seen = threading.Event()

    def probe():
        seen.set()
        return False

    monitor = NetworkMonitor(probe=probe, interval_sec=0.01)
    monitor.start()
    try:
        assert seen.wait(2)
    finally:
        monitor.stop()

    assert monitor.current_status() == DISCONNECTED


@pytest.mark.asyncio
async def test_dispatch_to_runs_coroutine_on_loop():
    monitor = NetworkMonitor()
    done = asyncio.Event()

    async def on_online():
        done.set()

    monitor.on_transition(NetworkMonitor.dispatch_to(asyncio.get_running_loop(), on_online))
    await asyncio.to_thread(monitor.update, DISCONNECTED)
    await asyncio.to_thread(monitor.update, WIFI)

    await asyncio.wait_for(done.wait(), timeout=2)
