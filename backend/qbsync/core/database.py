from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from . import config

_engine_kwargs = {"echo": False, "future": True}
if config.DATABASE_URL.startswith("postgresql"):
    _engine_kwargs.update(
        pool_size=3,
        max_overflow=2,
        pool_recycle=300,
        pool_timeout=30,
        pool_pre_ping=True,
    )

engine = create_async_engine(config.DATABASE_URL, **_engine_kwargs)
SessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
Base = declarative_base()


async def get_db():
    async with SessionLocal() as session:
        yield session


def dialect_insert(db: AsyncSession, model):
    """
    Returns an INSERT construct for `model` that supports
    `.on_conflict_do_update()` on the session's backend.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Upsert is not supported for dialect '{dialect}'")
