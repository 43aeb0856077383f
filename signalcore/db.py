# signalcore/db.py
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from signalcore.config import settings
from signalcore.models import Base

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_engine(settings.database_url, pool_pre_ping=True, future=True)
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, future=True)
    return _session_factory


def create_tables(engine: Optional[Engine] = None) -> None:
    Base.metadata.create_all(engine or get_engine())


def healthcheck():
    with get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))
