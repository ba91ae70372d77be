# creditgate/db.py
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import settings
from .models import Base


def make_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # sessions are handed across request threads
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def init_db(bind: Engine) -> None:
    Base.metadata.create_all(bind=bind)


# SQLAlchemy setup
engine = make_engine(settings.database_url)

SessionLocal = make_session_factory(engine)
