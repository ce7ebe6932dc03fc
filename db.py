from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from config import DATABASE_URL

_engine = None
_SessionLocal = None

def get_engine():
    global _engine
    if _engine is None:
        if not DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not set")
        connect_args = {}
        if DATABASE_URL.startswith("sqlite"):
            # FastAPI runs sync routes on a threadpool
            connect_args["check_same_thread"] = False
        _engine = create_engine(DATABASE_URL, pool_pre_ping=True, future=True, connect_args=connect_args)
    return _engine

def get_session_factory():
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, future=True)
    return _SessionLocal

def get_db() -> Generator[Session, None, None]:
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()

def supports_row_locks(db: Session) -> bool:
    return db.bind.dialect.name != "sqlite"
