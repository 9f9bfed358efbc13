import sys
import logging
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from .config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.DATABASE_URL, echo=False, future=True)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session


async def create_db_and_tables():
    """Create all tables registered on Base; exit the process if the database is unreachable."""
    # Models must be imported so their tables are registered on Base.metadata
    from . import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        error_msg = str(e)
        if "does not exist" in error_msg:
            logger.error("Database does not exist. Create it or check DATABASE_URL.")
        elif "Name or service not known" in error_msg or "gaierror" in error_msg:
            logger.error("Cannot resolve database hostname. Check DATABASE_URL.")
        elif "password authentication failed" in error_msg:
            logger.error("Database authentication failed. Check the database credentials.")
        elif "Connection refused" in error_msg:
            logger.error("Database server refused the connection. Is it running?")
        else:
            logger.error(f"Unexpected error while creating tables: {error_msg}")
        logger.error(f"Error type: {type(e).__name__}")
        sys.exit(1)
