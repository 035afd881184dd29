import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

SQLITE_BUSY_TIMEOUT_SECONDS = 30


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation every timestamp column uses"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def business_date() -> date:
    """Calendar day that order numbers are sequenced within"""
    return datetime.now().date()


def _ensure_sqlite_directory(database_url: str) -> None:
    if not database_url.startswith("sqlite:///") or ":memory:" in database_url:
        return
    db_path = database_url.split("sqlite:///", 1)[-1]
    Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def _install_sqlite_hooks(engine: Engine) -> None:
    # pysqlite opens transactions lazily and only on writes; take control of BEGIN
    # so every unit of work holds the write lock from its first statement.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    if database_url.startswith("sqlite"):
        _ensure_sqlite_directory(database_url)
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS},
        )
        _install_sqlite_hooks(engine)
    else:
        engine = create_engine(database_url, echo=echo, pool_pre_ping=True)
    return engine


class Database:
    """Store handle owned by the process entry point.

    Opened once at startup and disposed on shutdown. Repositories receive it
    explicitly instead of reaching for a module-level engine.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.url = database_url
        self.engine = create_db_engine(database_url, echo=echo)
        self.SessionLocal = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"Database tables initialized ({self.engine.dialect.name})")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """One transaction: commit on success, rollback on any error"""
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database engine disposed")
