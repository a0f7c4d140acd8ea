"""
FastAPI dependencies
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import async_session_maker, get_session
from ingestion.coordinator import RunCoordinator

# Shared by the scheduler and the manual trigger: one rate limiter and one
# set of per-provider locks per process
coordinator = RunCoordinator(async_session_maker)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped database session"""
    async for session in get_session():
        yield session


def get_coordinator() -> RunCoordinator:
    """Coordinator for manually triggered provider syncs"""
    return coordinator
