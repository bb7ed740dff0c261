# backend/core/database.py

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import get_settings

settings = get_settings()

DATABASE_URL = settings.database_url


def create_db_engine(database_url: str, **overrides) -> Engine:
    """Build an engine for the given URL with the project's pool settings."""
    engine_kwargs = {
        "echo": settings.log_sql_queries,
        "pool_pre_ping": True,
    }

    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_size"] = settings.db_pool_size
        engine_kwargs["max_overflow"] = settings.db_max_overflow

    engine_kwargs.update(overrides)
    engine = create_engine(database_url, **engine_kwargs)

    if database_url.startswith("sqlite"):
        _enable_sqlite_transactions(engine)

    return engine


def _enable_sqlite_transactions(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first DML statement and breaks SAVEPOINT;
    # take over transaction control so savepoints and write locks behave.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = create_db_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()
