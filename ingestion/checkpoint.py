"""
Per-provider checkpoint persistence
"""

from typing import Any, Dict, Optional
from datetime import datetime
from sqlalchemy import select, delete, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from models.sync_state import SyncState
from core.exceptions import CheckpointError
import logging

logger = logging.getLogger(__name__)

LAST_OFFSET = "last_offset"
LAST_PAGE = "last_page"


class CheckpointStore:
    """
    Key/value resume state per provider, backed by api_sync_state.

    Each call uses its own short-lived session so a checkpoint write is
    durable as soon as it returns, independent of the batch being loaded.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def get_state(self, data_source_id: int, key: str, default: Any = None) -> Any:
        """Retrieve one state value, or default when never written"""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(SyncState.state_value).where(
                        and_(
                            SyncState.data_source_id == data_source_id,
                            SyncState.state_key == key
                        )
                    )
                )
                row = result.first()
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Failed to read checkpoint",
                context={"data_source_id": data_source_id, "state_key": key, "operation": "read"},
                original_exception=e
            )

        if row is None or row[0] is None:
            return default
        return row[0]

    async def get_all(self, data_source_id: int) -> Dict[str, Any]:
        """All state keys of a provider"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncState).where(SyncState.data_source_id == data_source_id)
            )
            return {state.state_key: state.state_value for state in result.scalars().all()}

    async def save_state(self, data_source_id: int, key: str, value: Any) -> None:
        """Create or update one state value"""
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(SyncState).where(
                        and_(
                            SyncState.data_source_id == data_source_id,
                            SyncState.state_key == key
                        )
                    )
                )
                state: Optional[SyncState] = result.scalar_one_or_none()

                if state is None:
                    session.add(SyncState(
                        data_source_id=data_source_id,
                        state_key=key,
                        state_value=value,
                        last_updated=datetime.utcnow()
                    ))
                else:
                    state.state_value = value
                    state.last_updated = datetime.utcnow()

                await session.commit()
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Failed to write checkpoint",
                context={"data_source_id": data_source_id, "state_key": key, "operation": "write"},
                original_exception=e
            )

        logger.debug(f"Checkpoint saved: source={data_source_id} {key}={value}")

    async def reset(self, data_source_id: int) -> None:
        """Forget every state key of a provider (full sync)"""
        try:
            async with self.session_factory() as session:
                await session.execute(
                    delete(SyncState).where(SyncState.data_source_id == data_source_id)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Failed to reset checkpoint",
                context={"data_source_id": data_source_id, "operation": "reset"},
                original_exception=e
            )

        logger.info(f"Checkpoint reset for data source {data_source_id}")
