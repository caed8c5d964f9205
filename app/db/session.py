from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker, Session
from app.config.settings import settings


def _connect_args(database_url: str) -> Dict[str, Any]:
    """Driver-level timeouts so no store call blocks indefinitely."""
    backend = make_url(database_url).get_backend_name()
    timeout = settings.STORE_TIMEOUT_SECONDS

    if backend == "sqlite":
        return {"timeout": timeout, "check_same_thread": False}
    if backend == "postgresql":
        return {
            "connect_timeout": timeout,
            "options": f"-c statement_timeout={timeout * 1000}",
        }
    if backend == "mssql":
        return {"timeout": timeout}
    return {}


def build_engine(database_url: str):
    engine_options: Dict[str, Any] = {
        "pool_pre_ping": True,
        "connect_args": _connect_args(database_url),
        "echo": False,
    }
    if make_url(database_url).get_backend_name() != "sqlite":
        engine_options.update(
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,
            pool_timeout=settings.STORE_TIMEOUT_SECONDS,
        )
    return create_engine(str(database_url), **engine_options)


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)


def get_sync_session():
    """Dependency to get sync database session"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
