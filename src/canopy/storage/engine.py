"""Engine, session factory and schema bootstrap for the mission store.

SQLite is the default backend (a file, or one shared in-memory
connection for tests). Any other SQLAlchemy URL works too; the claim
statement only relies on conditional UPDATEs plus ``SKIP LOCKED`` where
the dialect has it.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from canopy.exceptions import StoreError
from canopy.storage.schema import Base, CanopyMetaRow

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
SCHEMA_VERSION_KEY = "schema_version"

# Concurrent ticks against one SQLite file queue on the write lock.
SQLITE_BUSY_TIMEOUT_MS = 10_000

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA foreign_keys=ON",
)


def _on_sqlite_connect(dbapi_conn, connection_record) -> None:  # type: ignore[no-untyped-def]
    cursor = dbapi_conn.cursor()
    try:
        for pragma in _SQLITE_PRAGMAS:
            cursor.execute(pragma)
    finally:
        cursor.close()


def create_canopy_engine(
    db_path: str = ":memory:",
    *,
    url: str | None = None,
) -> Engine:
    """Create the engine behind a CanopyStore.

    Args:
        db_path: SQLite file, or ``":memory:"`` for a private in-memory
            database shared by every session of this engine. Ignored when
            *url* is given.
        url: Any SQLAlchemy URL, e.g. ``"postgresql+psycopg://host/db"``.

    Returns:
        An engine with WAL, busy-timeout and foreign-key pragmas applied on
        every new connection when the dialect is SQLite.
    """
    if url is not None:
        engine = create_engine(url)
    elif db_path == ":memory:":
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False},
        )

    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _on_sqlite_connect)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Sessions whose objects stay readable after commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create missing tables and stamp (or check) the schema version.

    Raises:
        StoreError: If the database was written by a newer schema.
    """
    Base.metadata.create_all(engine)

    with create_session_factory(engine)() as session:
        row = session.execute(
            select(CanopyMetaRow).where(CanopyMetaRow.key == SCHEMA_VERSION_KEY)
        ).scalar_one_or_none()
        if row is None:
            session.add(CanopyMetaRow(key=SCHEMA_VERSION_KEY, value=str(SCHEMA_VERSION)))
            session.commit()
            logger.debug("Initialized canopy schema v%d", SCHEMA_VERSION)
            return

        stored = int(row.value)
        if stored > SCHEMA_VERSION:
            raise StoreError(
                f"Database schema v{stored} is newer than this canopy (v{SCHEMA_VERSION})"
            )
