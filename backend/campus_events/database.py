"""SQLAlchemy engine, session factory and the `get_db` dependency."""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from campus_events.config import settings

Base = declarative_base()


def build_engine(url: str):
    """Create an engine whose connections never wait unbounded on locks or statements."""
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": settings.DB_LOCK_TIMEOUT_SECONDS},
            pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS,
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    lock_ms = int(settings.DB_LOCK_TIMEOUT_SECONDS * 1000)
    statement_ms = int(settings.DB_STATEMENT_TIMEOUT_SECONDS * 1000)
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS,
        connect_args={
            "connect_timeout": int(settings.DB_POOL_TIMEOUT_SECONDS) or 1,
            "options": f"-c lock_timeout={lock_ms} -c statement_timeout={statement_ms}",
        },
    )


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Yield a session per request; uncommitted work is discarded on close."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
