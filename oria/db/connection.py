"""Engine and session helpers."""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from oria.config import config

_default_engine: Optional[Engine] = None


def get_engine(db_path: Optional[str] = None) -> Engine:
    """Create an engine for ``db_path`` (defaults to ``config.DB_PATH``).

    ``":memory:"`` yields a single shared connection so every session sees
    the same database.
    """
    db_path = db_path or config.DB_PATH
    if db_path == ":memory:":
        return create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def default_engine() -> Engine:
    global _default_engine
    if _default_engine is None:
        _default_engine = get_engine()
    return _default_engine


@contextmanager
def session_scope(engine: Optional[Engine] = None) -> Iterator[Session]:
    """Transactional scope: commit on success, rollback on any exception."""
    session = Session(engine or default_engine(), expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
