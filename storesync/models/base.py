"""
Database engine, session factory and schema bootstrap

The API, the scheduler and manual runs may all write the queue and status
tables at once; on SQLite the engine runs in WAL mode with a busy timeout
so those writers wait instead of failing.
"""
import os
from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.pool import NullPool
from sqlalchemy.orm import declarative_base, sessionmaker
from storesync.config import get_settings
from storesync.utils.logger import log

settings = get_settings()


def _resolve_sqlite_url(url: str) -> str:
    """Relative SQLite paths become absolute so a cwd change can't split the database"""
    if url.startswith("sqlite:///") and not url.startswith("sqlite:////"):
        return "sqlite:///" + os.path.abspath(url[len("sqlite:///"):])
    return url


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=60000")
    cursor.close()


def build_engine(database_url: str):
    if database_url.startswith("sqlite"):
        sqlite_engine = create_engine(
            _resolve_sqlite_url(database_url),
            connect_args={"check_same_thread": False, "timeout": 60},
            poolclass=NullPool,
        )
        event.listen(sqlite_engine, "connect", _set_sqlite_pragmas)
        return sqlite_engine
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=3,
        max_overflow=5,
        pool_recycle=300,
    )


engine = build_engine(settings.database_url)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all models
Base = declarative_base()


def _migrate_missing_columns(bind=None):
    """Add model columns missing from existing tables (create_all only adds tables)"""
    bind = bind or engine
    inspector = inspect(bind)
    with bind.connect() as conn:
        for table_name, table in Base.metadata.tables.items():
            if not inspector.has_table(table_name):
                continue
            existing = {c["name"] for c in inspector.get_columns(table_name)}
            for col in table.columns:
                if col.name in existing:
                    continue
                col_type = col.type.compile(dialect=bind.dialect)
                sql = f"ALTER TABLE {table_name} ADD COLUMN {col.name} {col_type}"
                log.info(f"Auto-migrating: {sql}")
                conn.execute(text(sql))
        conn.commit()


def init_db(bind=None):
    """Create the snapshot, queue and status tables and add any new columns"""
    # Register models on Base.metadata before create_all
    import storesync.models  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    _migrate_missing_columns(bind)
