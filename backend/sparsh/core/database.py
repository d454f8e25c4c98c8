"""SQLite engine and session plumbing.

The module-level `engine` is what the app and `StoreAdapter` use by
default; tests patch it with an in-memory engine built by `make_engine`.
"""

from pathlib import Path

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

from sparsh.core.config import settings


def make_engine(url: str | None = None, **kwargs) -> Engine:
    """Build a SQLite engine usable from worker threads (defaults to `settings.db_path`)."""
    kwargs.setdefault("echo", settings.debug)
    connect_args = {"check_same_thread": False, **kwargs.pop("connect_args", {})}
    return create_engine(url or f"sqlite:///{settings.db_path}", connect_args=connect_args, **kwargs)


engine = make_engine()


def init_db() -> None:
    import sparsh.models  # noqa: F401 - ensure models are registered

    if engine.url.database:
        Path(engine.url.database).parent.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session
