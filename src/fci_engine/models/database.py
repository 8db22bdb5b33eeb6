from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from fci_engine.config.settings import get_settings
from fci_engine.models.orm import Base


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record) -> None:
    # strategies and cash flows must not outlive their scenario row
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(url: str | None = None) -> Engine:
    """Engine for the output store.

    SQLite connections enforce foreign keys, and a file-backed SQLite
    database gets its parent directory created on first use.
    """
    settings = get_settings()
    db_url = make_url(url or settings.database_url)
    if db_url.get_backend_name() != "sqlite":
        return create_engine(db_url, echo=settings.debug)

    if db_url.database and db_url.database != ":memory:":
        Path(db_url.database).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        db_url, connect_args={"check_same_thread": False}, echo=settings.debug
    )
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    return sessionmaker(bind=engine or get_engine(), expire_on_commit=False)


@contextmanager
def get_session(engine: Engine | None = None) -> Generator[Session, None, None]:
    """Unit of work around one engine call's writes: commit, or roll back and re-raise."""
    session = get_session_factory(engine)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> list[str]:
    """Create any missing output tables; return the names of all of them."""
    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    return sorted(Base.metadata.tables)
