# ourapp/storage/db.py
from __future__ import annotations

from pathlib import Path
from typing import Callable

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from core.settings import DB_PATH

# Ensure SQLModel metadata is populated
import models.event  # noqa: F401
import models.pending_op  # noqa: F401


def make_engine(db_path: Path | str = DB_PATH) -> Engine:
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(f"sqlite:///{path.as_posix()}", echo=False)


def init_db(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


def make_session_factory(engine: Engine) -> Callable[[], Session]:
    def factory() -> Session:
        return Session(engine)

    return factory


__all__ = ["init_db", "make_engine", "make_session_factory"]
