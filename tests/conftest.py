"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from typing import AsyncGenerator, List, Dict, Any, Optional
from models import Base, DataSource
from models.base import CategoryType
from ingestion.base import ProviderClient
from ingestion.checkpoint import CheckpointStore
from ingestion.rate_limiter import RateLimiter
from schemas.normalized import (
    NormalizedGrant, NormalizedGrantData, GrantDetailsData, GrantCategoryData
)
from schemas.sync import PageRequest


class FakeProviderClient(ProviderClient):
    """
    In-memory provider serving slices of a record list.

    failures maps an offset to the exception raised when that page is
    requested; total generates {"id", "title"} records on the fly instead
    of storing them.
    """

    name = "world_bank"
    display_name = "Fake Provider"
    base_url = "https://provider.test"
    page_size = 3

    def __init__(
        self,
        *args,
        records: Optional[List[Dict[str, Any]]] = None,
        total: Optional[int] = None,
        failures: Optional[Dict[int, Exception]] = None,
        **kwargs
    ):
        super().__init__(*args, **kwargs)
        self.records = records or []
        self.total = total
        self.failures = failures or {}
        self.requests: List[PageRequest] = []
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        self.requests.append(request)
        if request.offset in self.failures:
            raise self.failures[request.offset]
        if self.total is not None:
            end = min(request.offset + request.limit, self.total)
            return [{"id": f"G-{i}", "title": f"Grant {i}"} for i in range(request.offset, end)]
        return self.records[request.offset:request.offset + request.limit]

    def record_id(self, raw):
        return raw.get("id")

    def record_title(self, raw):
        return raw.get("title")

    def map_record(self, raw, source_identifier, title):
        categories = []
        if raw.get("sector"):
            categories.append(GrantCategoryData(category_type=CategoryType.SECTOR, category_name=raw["sector"]))
        return NormalizedGrantData(
            grant=NormalizedGrant(
                data_source_id=self.data_source_id,
                source_identifier=source_identifier,
                title=title,
                total_funding_available=raw.get("amount"),
                raw_data=raw,
            ),
            details=GrantDetailsData(description=raw.get("description")),
            categories=categories,
            keywords=self.normalizer.extract_keywords(raw.get("description"), title),
        )


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """SQLite file database with every table created"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'grants_test.db'}",
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": 30}
    )

    @event.listens_for(engine.sync_engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def data_source(session_factory) -> DataSource:
    """Active provider row named like the fake client"""
    async with session_factory() as session:
        source = DataSource(name="world_bank", display_name="World Bank Projects", is_active=True)
        session.add(source)
        await session.commit()
        return source


@pytest.fixture
def checkpoints(session_factory) -> CheckpointStore:
    return CheckpointStore(session_factory)


@pytest.fixture
def rate_limiter() -> RateLimiter:
    """Unlimited limiter"""
    return RateLimiter()


@pytest.fixture
def fake_client(data_source, checkpoints):
    """Factory for FakeProviderClient bound to the data_source row"""
    def make(**kwargs) -> FakeProviderClient:
        return FakeProviderClient(data_source_id=data_source.id, checkpoints=checkpoints, **kwargs)
    return make


@pytest.fixture
def make_grant(data_source):
    """Factory for a minimal NormalizedGrantData"""
    def make(identifier: str, title: str = "Clean Water Initiative", **fields) -> NormalizedGrantData:
        children = {
            key: fields.pop(key)
            for key in ("details", "categories", "keywords", "contacts", "eligibility", "locations")
            if key in fields
        }
        return NormalizedGrantData(
            grant=NormalizedGrant(
                data_source_id=data_source.id,
                source_identifier=identifier,
                title=title,
                **fields
            ),
            **children
        )
    return make


@pytest.fixture
def sample_records():
    """Raw provider records for the fake client"""
    return [
        {
            "id": "P100",
            "title": "Rural Water Supply Expansion",
            "amount": 2500000,
            "sector": "Water",
            "description": "Expands rural water supply and sanitation infrastructure across northern districts."
        },
        {
            "id": "P101",
            "title": "Primary Education Quality",
            "amount": 1200000,
            "sector": "Education",
            "description": "Improves primary education outcomes through teacher training programs."
        },
        {
            "id": "P102",
            "title": "Urban Transport Modernization",
            "amount": 8000000,
            "description": "Modernizes urban transport corridors and bus rapid transit systems."
        },
        {
            "id": "P103",
            "title": "Health Systems Strengthening",
            "amount": 4300000,
            "sector": "Health",
            "description": "Strengthens district health systems and primary care networks."
        },
        {
            "id": "P104",
            "title": "Renewable Energy Access",
            "amount": 6100000,
            "sector": "Energy",
            "description": "Expands off-grid solar energy access for rural households."
        },
    ]
