"""
Database engine and session factory.

Both the API process and the ARQ worker build their sessions from here.
"""
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from webhook_relay.config import settings


def create_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    """Create an async engine for the given URL (defaults to settings)."""
    return create_async_engine(
        url or settings.DATABASE_URL,
        echo=settings.DEBUG,
        **kwargs
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory that keeps loaded rows usable after commit."""
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine(pool_pre_ping=True)
AsyncSessionLocal = create_session_factory(engine)
