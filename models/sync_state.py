from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class SyncState(Base):
    """
    Per-provider checkpoint state.

    Purpose:
    - Resume a provider sync from the last successfully processed page
    - Keep pagination idioms opaque: offset, page number, cursor, etc.

    Design:
    - One row per (provider, key), e.g. "last_offset", "last_page"
    - state_value is JSON so a key can hold a number, string or object
    - Written after every processed page, read once at run start
    """
    __tablename__ = "api_sync_state"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    data_source_id = Column(Integer, ForeignKey("data_sources.id", ondelete="CASCADE"), nullable=False)
    state_key = Column(String(100), nullable=False)
    state_value = Column(JSONType, nullable=True)

    last_updated = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    data_source = relationship("DataSource", back_populates="sync_states")

    # Constraints
    __table_args__ = (
        Index("idx_sync_state_source_key", "data_source_id", "state_key", unique=True),
    )
