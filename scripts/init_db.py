import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from core.config import settings
from core.logging import setup_logging
from models import Base, DataSource
from ingestion.extractors.registry import PROVIDERS

logger = logging.getLogger(__name__)


async def seed_data_sources(session_factory) -> int:
    """Insert a data_sources row for every registered provider that lacks one"""
    created = 0
    async with session_factory() as session:
        result = await session.execute(select(DataSource.name))
        existing = set(result.scalars().all())

        for name, client_cls in PROVIDERS.items():
            if name in existing:
                continue
            session.add(DataSource(name=name, display_name=client_cls.display_name, is_active=True))
            created += 1

        await session.commit()
    return created


async def init_database():
    logger.info("Connecting to database...")
    engine = create_async_engine(settings.DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        logger.info("Creating tables...")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    created = await seed_data_sources(session_factory)
    logger.info(f"Seeded {created} data sources ({len(PROVIDERS)} registered providers)")

    await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
