# Database wiring: engine, session factory and the declarative Base.
# Tests swap `engine` and `SessionLocal` on this module, so get_db()
# looks them up at call time instead of binding them at import.

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from engage_flags.core.config import settings


def _connect_args(url: str) -> dict:
    # SQLite connections are shared across FastAPI's worker threads.
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args(settings.DATABASE_URL),
    echo=settings.DB_ECHO,
    pool_pre_ping=True,
    future=True,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
