import os
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

# Booking store. Defaults to a SQLite file in the working directory; point DATABASE_URL at
# Postgres/MySQL for anything shared between workers.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data.db")

# Upper bound (seconds) any store operation may wait for a connection or a database lock.
DB_TIMEOUT_SECONDS = int(os.getenv("DB_TIMEOUT_SECONDS", "10"))


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Request threads and sweeper threads share the file; wait on its lock instead of failing fast
        return {"connect_args": {"check_same_thread": False, "timeout": DB_TIMEOUT_SECONDS}}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 280,  # below typical server idle timeouts
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": DB_TIMEOUT_SECONDS,
    }


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

# One session per request or sweep pass; transactions are committed explicitly
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def is_sqlite() -> bool:
    """SQLite has no row locks; booking writes rely on the process-level lock there."""
    return engine.dialect.name == "sqlite"


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency.

    Yields a session for the lifetime of the request and always closes it afterwards.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
