from sqlalchemy import Column, Integer, String, Enum, DateTime, Float, Text, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from models.base import Base, BigIntPK, enum_values, SyncStatus, SyncMode


class SyncLog(Base):
    """
    Audit row for one provider sync run.

    Purpose:
    - Audit trail of every provider run
    - Distinguish partial successes from full failures
    - Record the checkpoint before and after the run
    """
    __tablename__ = "api_sync_logs"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    run_id = Column(Uuid, default=uuid.uuid4, unique=True, nullable=False, index=True)

    data_source_id = Column(Integer, ForeignKey("data_sources.id", ondelete="CASCADE"), nullable=False, index=True)

    # Run metadata
    sync_type = Column(Enum(SyncMode, name="sync_mode", values_callable=enum_values), nullable=False)
    status = Column(
        Enum(SyncStatus, name="sync_status", values_callable=enum_values),
        default=SyncStatus.RUNNING,
        nullable=False,
        index=True
    )

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    records_fetched = Column(Integer, default=0)
    records_created = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)

    # Checkpoint info
    checkpoint_before = Column(String(255), nullable=True)
    checkpoint_after = Column(String(255), nullable=True)

    # Error tracking
    error_message = Column(Text, nullable=True)

    data_source = relationship("DataSource", back_populates="sync_logs")

    __table_args__ = (
        Index("idx_sync_log_source_started", "data_source_id", "started_at"),
    )
