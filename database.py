import logging
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings

logger = logging.getLogger(__name__)


def _is_memory_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:")


def make_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    connect_args: dict[str, object] = {}
    kwargs: dict[str, object] = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if _is_memory_sqlite(url):
            # one connection, otherwise every pooled connection gets its own empty db
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    eng = create_engine(url, connect_args=connect_args, **kwargs)
    if url.get_backend_name() == "sqlite":
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = make_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _ensure_database(eng: Engine) -> None:
    url = eng.url
    backend = url.get_backend_name()
    if backend == "sqlite":
        if not _is_memory_sqlite(url):
            Path(url.database).resolve().parent.mkdir(parents=True, exist_ok=True)
        return
    if backend != "mysql" or not url.database:
        logger.info("Skipping database creation for backend %s", backend)
        return

    bootstrap = create_engine(url.set(database=None), isolation_level="AUTOCOMMIT")
    try:
        name = bootstrap.dialect.identifier_preparer.quote(url.database)
        with bootstrap.connect() as conn:
            conn.execute(text(f"CREATE DATABASE IF NOT EXISTS {name}"))
    finally:
        bootstrap.dispose()


def init_db(eng: Optional[Engine] = None) -> None:
    """Create the database (where the backend allows it) and all tables.

    Safe to call on every startup. Errors are logged and re-raised so the
    caller can refuse to serve requests against a half-initialized store.
    """
    # registers the mapped tables on Base.metadata
    import models  # noqa: F401

    eng = eng or engine
    try:
        _ensure_database(eng)
        Base.metadata.create_all(eng)
    except Exception:
        logger.exception(
            "Database initialization failed for %s",
            eng.url.render_as_string(hide_password=True),
        )
        raise
    logger.info("Database initialized successfully")


def dispose_engine(eng: Optional[Engine] = None) -> None:
    (eng or engine).dispose()
    logger.info("Database connections released")
