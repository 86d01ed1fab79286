# storefront/data/database.py
import asyncio
from typing import Callable, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from storefront.domain.errors import StorageTransientError
from storefront.utils.settings import DATABASE_URL

T = TypeVar("T")

Base = declarative_base()


def make_engine(url: str):
    #sqlite uzywany w testach, sesje chodza po watkach z to_thread
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


def make_session_factory(engine) -> sessionmaker:
    #expire_on_commit=False - snapshoty czytamy po commicie
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


engine = make_engine(DATABASE_URL)
SessionLocal = make_session_factory(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


async def run_in_session(session_factory: sessionmaker, fn: Callable[[Session], T]) -> T:
    """
    Synchroniczny pool polaczen za asynchronicznym API.

    Kazde wywolanie dostaje wlasna sesje w watku roboczym, wiec rownolegle
    taski nie dziela stanu sesji. Bledy polaczenia z bazy wychodza jako
    StorageTransientError.
    """

    def _call() -> T:
        with session_factory() as db:
            try:
                return fn(db)
            except OperationalError as e:
                db.rollback()
                raise StorageTransientError(str(e)) from e

    return await asyncio.to_thread(_call)
