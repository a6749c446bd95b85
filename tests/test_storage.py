import json
from datetime import datetime, timezone

from models.sync_state import SyncCursorState
from services.sync_token_storage import SyncCursorStore
from storage.config import AppConfig, load_config, save_config, update_config


def test_config_defaults_when_missing(tmp_path):
    cfg = load_config(tmp_path / "config.json")

    assert cfg == AppConfig()
    assert cfg.include_upcoming_events is True
    assert cfg.include_past_events is False
    assert cfg.sync_interval_seconds == 1800


def test_config_round_trip_ignores_unknown_keys(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"auto_sync_enabled": True, "theme": "dark"}), encoding="utf-8")

    cfg = load_config(path)
    assert cfg.auto_sync_enabled is True

    cfg.past_months = 1
    save_config(cfg, path)
    assert load_config(path).past_months == 1
    assert not path.with_suffix(".tmp").exists()


def test_update_config_persists_changes(tmp_path):
    path = tmp_path / "config.json"

    update_config(path, include_past_events=True, unknown=1)

    stored = json.loads(path.read_text(encoding="utf-8"))
    assert stored["include_past_events"] is True
    assert "unknown" not in stored


def test_cursor_store_replaces_state_as_a_whole(tmp_path):
    store = SyncCursorStore(tmp_path / "storage" / "calendar_sync.json")
    assert store.load() == SyncCursorState()

    synced = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    store.save(SyncCursorState(sync_token="tok", remote_calendar_id="cal-1", last_sync_date=synced))
    store.save(store.load().with_changes(sync_token=None))

    state = store.load()
    assert state == SyncCursorState(sync_token=None, remote_calendar_id="cal-1", last_sync_date=synced)
    assert not store.path.with_suffix(".tmp").exists()


def test_cursor_store_tolerates_corrupt_and_bare_token_files(tmp_path):
    path = tmp_path / "calendar_sync.json"
    store = SyncCursorStore(path)

    path.write_text("{broken", encoding="utf-8")
    assert store.load() == SyncCursorState()

    path.write_text(json.dumps("legacy-token"), encoding="utf-8")
    assert store.load().sync_token == "legacy-token"

    store.clear_all()
    assert not path.exists()
