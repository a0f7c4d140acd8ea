"""
Load normalized grants with upsert logic (idempotency) and dependent-record fan-out
"""

import asyncio
from typing import List, Dict, Tuple
from datetime import datetime
from sqlalchemy import select, delete, insert, and_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from models.base import GrantStatus
from models.grant import Grant, GrantDetails, REPLACED_CHILD_TABLES
from schemas.normalized import NormalizedGrantData
from schemas.sync import BatchResult
from core.exceptions import BatchUpsertError, FanOutError
import logging

logger = logging.getLogger(__name__)

# Canonical columns overwritten on conflict
UPDATE_COLUMNS = [
    "source_url",
    "title",
    "status",
    "funding_organization_name",
    "funding_organization_code",
    "currency",
    "funding_amount_min",
    "funding_amount_max",
    "total_funding_available",
    "expected_awards_count",
    "posted_date",
    "application_deadline",
    "start_date",
    "end_date",
    "last_updated_date",
    "grant_type",
    "funding_instrument",
    "activity_code",
    "raw_data",
    "updated_at",
]

DETAIL_COLUMNS = [
    "language_code",
    "description",
    "abstract",
    "purpose",
    "expected_results",
    "special_requirements",
    "application_process",
    "evaluation_criteria",
    "additional_information",
]


def dialect_insert(session: AsyncSession, table):
    """INSERT construct supporting ON CONFLICT for the session's backend"""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upsert not supported on {dialect}")


class GrantUpserter:
    """
    Bulk upsert canonical grants, then replace their dependent records.

    Ensures:
    - No duplicate grants on repeated runs (conflict on data_source_id + source_identifier)
    - Every canonical field is overwritten on conflict
    - Created vs updated is decided by an existence query before the write
    - A dependent-record failure for one grant never undoes the canonical upsert
    """

    def __init__(self, session_factory: async_sessionmaker, fanout_concurrency: int = 4):
        self.session_factory = session_factory
        self.fanout_concurrency = max(1, fanout_concurrency)

    async def upsert_batch(self, data_source_id: int, records: List[NormalizedGrantData]) -> BatchResult:
        """
        Upsert one batch of a single provider's records.

        Returns:
            BatchResult with created/updated counts and fan-out failures

        Raises:
            BatchUpsertError: The bulk canonical upsert failed; nothing was written
        """
        if not records:
            return BatchResult()

        # Last occurrence wins inside a batch
        by_identifier: Dict[str, NormalizedGrantData] = {}
        for record in records:
            by_identifier[record.source_identifier] = record
        collapsed = len(records) - len(by_identifier)

        try:
            async with self.session_factory() as session:
                existing = await self._existing_identifiers(session, data_source_id, list(by_identifier))
                returned = await self._bulk_upsert(session, data_source_id, list(by_identifier.values()))
                await session.commit()
        except Exception as e:
            error = BatchUpsertError(
                "Bulk grant upsert failed",
                context={"data_source_id": data_source_id, "batch_size": len(records)},
                original_exception=e
            )
            logger.error(f"Batch upsert failed for data source {data_source_id}: {e}", extra={"error_context": error.to_dict()})
            raise error

        created = sum(1 for _, identifier in returned if identifier not in existing)
        updated = len(returned) - created + collapsed

        fanout_errors = await self._fan_out(returned, by_identifier)

        logger.info(
            f"Upserted {len(records)} grants for data source {data_source_id}: "
            f"created={created} updated={updated} fanout_errors={fanout_errors}"
        )
        return BatchResult(created=created, updated=updated, fanout_errors=fanout_errors)

    async def _existing_identifiers(self, session: AsyncSession, data_source_id: int, identifiers: List[str]) -> set:
        result = await session.execute(
            select(Grant.source_identifier).where(
                and_(
                    Grant.data_source_id == data_source_id,
                    Grant.source_identifier.in_(identifiers)
                )
            )
        )
        return set(result.scalars().all())

    async def _bulk_upsert(
        self,
        session: AsyncSession,
        data_source_id: int,
        records: List[NormalizedGrantData]
    ) -> List[Tuple[int, str]]:
        now = datetime.utcnow()
        rows = []
        for record in records:
            row = record.grant.model_dump()
            row["data_source_id"] = data_source_id
            row["status"] = GrantStatus(row["status"])
            row["created_at"] = now
            row["updated_at"] = now
            rows.append(row)

        stmt = dialect_insert(session, Grant).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["data_source_id", "source_identifier"],
            set_={column: stmt.excluded[column] for column in UPDATE_COLUMNS}
        ).returning(Grant.id, Grant.source_identifier)

        result = await session.execute(stmt)
        # RETURNING order is not guaranteed to match input order
        return [(row.id, row.source_identifier) for row in result.all()]

    async def _fan_out(self, returned: List[Tuple[int, str]], by_identifier: Dict[str, NormalizedGrantData]) -> int:
        semaphore = asyncio.Semaphore(self.fanout_concurrency)

        async def worker(grant_id: int, record: NormalizedGrantData) -> bool:
            async with semaphore:
                return await self.write_dependents(grant_id, record)

        outcomes = await asyncio.gather(*(
            worker(grant_id, by_identifier[identifier]) for grant_id, identifier in returned
        ))
        return sum(1 for ok in outcomes if not ok)

    async def write_dependents(self, grant_id: int, record: NormalizedGrantData) -> bool:
        """
        Upsert details and replace every 1:N set of one grant in its own session.

        Returns:
            False when the write failed (logged, already rolled back)
        """
        table_name = "grant_details"
        try:
            async with self.session_factory() as session:
                if record.details is not None:
                    await self._upsert_details(session, grant_id, record)

                for field, model in REPLACED_CHILD_TABLES.items():
                    table_name = model.__tablename__
                    await session.execute(delete(model).where(model.grant_id == grant_id))
                    items = getattr(record, field)
                    if items:
                        await session.execute(
                            insert(model),
                            [dict(item.model_dump(), grant_id=grant_id) for item in items]
                        )

                await session.commit()
            return True

        except Exception as e:
            error = FanOutError(
                f"Failed to write dependent records for grant {grant_id}",
                context={
                    "grant_id": grant_id,
                    "source_identifier": record.source_identifier,
                    "table_name": table_name
                },
                original_exception=e
            )
            logger.error(str(error), extra={"error_context": error.to_dict()})
            return False

    async def _upsert_details(self, session: AsyncSession, grant_id: int, record: NormalizedGrantData) -> None:
        values = record.details.model_dump()
        values["grant_id"] = grant_id
        stmt = dialect_insert(session, GrantDetails).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["grant_id"],
            set_={column: stmt.excluded[column] for column in DETAIL_COLUMNS}
        )
        await session.execute(stmt)
