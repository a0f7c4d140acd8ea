from sqlalchemy import Column, Integer, String, Boolean, DateTime, BigInteger
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import Base


class DataSource(Base):
    """
    One external funding-opportunity provider.

    Rows are seeded by configuration (scripts/init_db.py) and only mutated by
    the sync orchestrator after a run: the last sync timestamp and the
    cumulative fetched/loaded counters.
    """
    __tablename__ = "data_sources"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True, index=True)  # Registry key, e.g. "world_bank"
    display_name = Column(String(200), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Sync bookkeeping
    last_successful_sync = Column(DateTime, nullable=True)
    total_grants_fetched = Column(BigInteger, nullable=False, default=0)
    total_grants_loaded = Column(BigInteger, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    grants = relationship("Grant", back_populates="data_source", passive_deletes=True)
    sync_states = relationship("SyncState", back_populates="data_source", cascade="all, delete-orphan")
    sync_logs = relationship("SyncLog", back_populates="data_source", cascade="all, delete-orphan")
