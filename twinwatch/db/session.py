# twinwatch/db/session.py
import os
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT_SQLITE = f"sqlite+aiosqlite:///{os.path.join(BASE_DIR, 'twinwatch.sqlite')}"
DB_URL = os.getenv("DB_URL", DEFAULT_SQLITE)


def make_session_factory(url: str):
    """Builds an engine and a matching session factory for ``url``."""
    db_engine = create_async_engine(url, echo=False, future=True)
    factory = sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)
    return db_engine, factory


engine, AsyncSessionLocal = make_session_factory(DB_URL)
