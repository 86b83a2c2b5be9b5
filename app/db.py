from contextlib import contextmanager
from typing import Generator, Iterator
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

# DATABASE_URL defaults to a local SQLite file; override for staging/production.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data.db")

# SQLite needs cross-thread access because sync routes, the payment settlement
# task and the WebSocket feed may all touch the same file.
# Server databases get a pre-pinged, recycled pool.
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,
        pool_recycle=280,
        pool_size=10,
        max_overflow=20,
    )

# Session factory: autocommit and autoflush disabled for explicit transaction control
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models declared via SQLAlchemy's declarative API
Base = declarative_base()


def get_db() -> Generator:
    """
    FastAPI dependency.

    Yields a database session for the lifetime of the request and guarantees it
    is closed afterwards, even if an exception is raised.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(db: Session | None = None) -> Iterator[Session]:
    """
    Reuse the given session, or open a private one and close it on exit.

    Work that must outlive a request (the payment settlement) runs on its own
    session so that closing the request session cannot cut it short.
    """
    if db is not None:
        yield db
        return
    own = SessionLocal()
    try:
        yield own
    finally:
        own.close()
