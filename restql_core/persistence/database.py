"""
RestQL database bindings and functions using sqlalchemy
"""

import logging
from typing import Optional

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine as _Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session


DEFAULT_DATABASE_URL: str = "sqlite://"
PRINT_SQLITE_WARNING: bool = True

Base = declarative_base()
_engine: Optional[_Engine] = None
_make_session: Optional[sessionmaker] = None
_logger: logging.Logger = logging.getLogger(__name__)


def _enable_sqlite_savepoints(engine: _Engine):
    # pysqlite emits its own BEGIN lazily, which breaks SAVEPOINT handling
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(connection):
        connection.exec_driver_sql("BEGIN")


def make_engine(database_url: str, echo: bool = False) -> _Engine:
    """
    Create a new engine for the given database URL

    SQLite engines are configured to allow access from multiple
    threads and to support SAVEPOINTs, which the write pipeline
    uses to recover from failed statements within a request.

    :param database_url: the full URL to connect to the database
    :param echo: whether all SQLAlchemy magic should print to screen
    """

    if not database_url.startswith("sqlite:"):
        return create_engine(database_url, echo=echo)

    if ":memory:" in database_url or database_url == "sqlite://":
        _logger.warning(
            "Using the in-memory sqlite3 may lead to later problems. "
            "It's therefore recommended to create a persistent file."
        )
    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False}
    )
    _enable_sqlite_savepoints(engine)
    if PRINT_SQLITE_WARNING:
        _logger.warning(
            "Using a sqlite database is supported for development and testing environments "
            "only. You should use a production-grade database server for deployment."
        )
    return engine


def init(database_url: str, echo: bool = True, create_all: bool = True, metadata: Optional[MetaData] = None):
    """
    Initialize the database bindings

    This function should be called at a very early program stage, before
    any part of it tries to access the database. If this isn't done,
    a temporary database will be used instead, which may be useful for
    debugging, too. See the ``DEFAULT_DATABASE_URL`` constant for details
    about the default connection. Without initialization prior to database
    usage, a warning will be emitted once to prevent future errors.

    :param database_url: the full URL to connect to the database
    :param echo: whether all SQLAlchemy magic should print to screen
    :param create_all: whether the metadata should be used to create
        all non-existing tables in the database
    :param metadata: metadata of the served models, defaults to
        the metadata of the declarative base of this module
    """

    global _engine, _make_session
    if _engine is not None:
        _engine.dispose()
    _engine = make_engine(database_url, echo=echo)

    if create_all:
        (metadata if metadata is not None else Base.metadata).create_all(bind=_engine)

    _make_session = sessionmaker(autoflush=False, bind=_engine)


def _warn(obj: str):
    _logger.warning(
        f"Database {obj} not initialized! Using default database URL with database "
        f"{DEFAULT_DATABASE_URL!r}. Call 'init' once at program startup to fix "
        f"future problems due to non-persistent database and suppress this warning."
    )


def get_engine() -> _Engine:
    if _engine is None:
        _warn("engine")
        init(DEFAULT_DATABASE_URL)
    return _engine


def get_new_session() -> Session:
    if _make_session is None or _engine is None:
        _warn("engine or its session maker")
        init(DEFAULT_DATABASE_URL)
    return _make_session()
