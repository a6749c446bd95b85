from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any, Dict

from core.settings import SYNC_CURSOR_PATH
from models.sync_state import SyncCursorState


class SyncCursorStore:
    """Persists the calendar :class:`SyncCursorState` as a single JSON value.

    The state is only ever replaced as a whole, via a temp file and
    ``os.replace``, so a crash mid-write leaves the previous cursor intact.
    """

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path or SYNC_CURSOR_PATH)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # generic helpers
    def _load(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            return {}
        if isinstance(data, str):
            return {"syncToken": data}
        if isinstance(data, dict):
            return data
        return {}

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps(data, sort_keys=True), encoding="utf-8")
            os.replace(tmp_path, self.path)
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass

    # ------------------------------------------------------------------
    def load(self) -> SyncCursorState:
        with self._lock:
            return SyncCursorState.from_dict(self._load())

    def save(self, state: SyncCursorState) -> None:
        with self._lock:
            self._save(state.to_dict())

    def clear_all(self) -> None:
        with self._lock:
            if self.path.exists():
                self.path.unlink()


__all__ = ["SyncCursorStore"]
