import pytest

import main
from services.network_monitor import DISCONNECTED, NetworkMonitor
from services.remote_store import RemoteStore


class NullStore(RemoteStore):
    def create_record(self, collection, doc):
        return doc.get("id", "r1")

    def update_record(self, collection, record_id, doc):
        pass

    def delete_record(self, collection, record_id):
        pass

    def stream_records(self, collection, query=None):
        return iter(())

    def upload_blob(self, data):
        return "https://blobs.example/1.jpg"

    def delete_blob(self, url):
        pass


@pytest.fixture
def services(tmp_path):
    monitor = NetworkMonitor(probe=lambda: False)
    monitor.update(DISCONNECTED)
    return main.build_services(
        NullStore(),
        db_path=tmp_path / "app.db",
        cache_dir=tmp_path / "offline_cache",
        cursor_path=tmp_path / "storage" / "calendar_sync.json",
        token_path=tmp_path / "token.json",
        secrets_path=tmp_path / "secrets" / "client_secret.json",
        monitor=monitor,
    )


def test_services_share_one_queue_and_monitor(services):
    assert services.events.queue is services.queue
    assert services.queue.monitor is services.monitor
    assert services.engine.monitor is services.monitor
    assert services.calendar.auth is services.auth


def test_status_report_shows_pending_work(services):
    services.queue.enqueue_favorite_toggle("p1", True)

    report = main.status_report(services)

    assert report["network"] == {"connected": False, "kind": "none", "isExpensive": False}
    assert report["queue"]["pending"] == 1
    assert report["queue"]["operations"][0]["type"] == "toggleFavorite"
    assert report["calendar"]["signedIn"] is False
    assert report["calendar"]["state"] == "idle"


def test_load_remote_store_from_factory_path():
    assert main.load_remote_store("") is None
    assert isinstance(main.load_remote_store("test_main:NullStore"), NullStore)


def test_drain_without_store_reports_error(capsys, monkeypatch):
    monkeypatch.delenv(main.REMOTE_STORE_ENV, raising=False)

    assert main.main(["drain"]) == 1
    assert "No document store configured" in capsys.readouterr().err


def test_parser_lists_commands():
    parser = main.build_parser()
    for command in ("sync", "drain", "dedup", "status", "sign-in", "sign-out", "clear-cache", "run"):
        assert parser.parse_args([command]).command == command
