import os
import sys
import tempfile
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Keep settings from creating directories in the real user data dir.
os.environ.setdefault("OURAPP_DATA_DIR", tempfile.mkdtemp(prefix="ourapp-tests-"))

import pytest

from storage.db import init_db, make_engine, make_session_factory


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "app.db"


@pytest.fixture
def session_factory(db_path):
    engine = make_engine(db_path)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()
