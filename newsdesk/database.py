from typing import Generator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import Settings


def build_engine(settings: Settings):
    uri = settings.database_uri
    if uri.startswith("sqlite"):
        # in-memory SQLite must share one connection across threads
        return create_engine(
            uri,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
    return create_engine(
        uri,
        pool_pre_ping=True,
        connect_args={
            "connect_timeout": settings.DB_CONNECT_TIMEOUT,
            "read_timeout": settings.DB_READ_TIMEOUT,
            "write_timeout": settings.DB_READ_TIMEOUT,
        },
        future=True,
    )


def build_session_factory(engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


Base = declarative_base()


def get_db(request: Request) -> Generator:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
