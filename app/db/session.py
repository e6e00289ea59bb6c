from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker
from app.core.config import settings


def make_engine(db_url: str, **kwargs) -> AsyncEngine:
    return create_async_engine(db_url, echo=False, **kwargs)


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    # expire_on_commit=False: los tokens se leen después del commit
    return async_sessionmaker(bind, expire_on_commit=False)


engine = make_engine(settings.db_url)
SessionLocal = make_sessionmaker(engine)
