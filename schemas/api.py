"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID

# ============================================================================
# Health Check Schemas
# ============================================================================

class SourceSyncInfo(BaseModel):
    """Latest sync status of one provider, for the health check"""
    model_config = ConfigDict(from_attributes=True)

    source_name: str
    is_active: bool
    last_successful_sync: Optional[datetime] = None
    last_run_status: Optional[str] = None
    last_run_started_at: Optional[datetime] = None
    last_run_errors: int = 0


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    sources: List[SourceSyncInfo] = Field(default_factory=list)
    total_sources: int = 0
    successful_sources: int = 0
    failed_sources: int = 0

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.failed_sources == 0:
            self.status = "healthy"
        elif self.failed_sources < self.total_sources:
            self.status = "degraded"
        else:
            self.status = "unhealthy"
        return self

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "status": "degraded",
            "timestamp": "2024-01-15T10:30:00Z",
            "database_connected": True,
            "total_sources": 2,
            "successful_sources": 1,
            "failed_sources": 1,
            "sources": [
                {
                    "source_name": "world_bank",
                    "is_active": True,
                    "last_successful_sync": "2024-01-15T02:00:41Z",
                    "last_run_status": "success",
                    "last_run_started_at": "2024-01-15T02:00:00Z",
                    "last_run_errors": 0
                },
                {
                    "source_name": "nsf_awards",
                    "is_active": True,
                    "last_successful_sync": "2024-01-15T02:01:12Z",
                    "last_run_status": "failed",
                    "last_run_started_at": "2024-01-15T02:00:42Z",
                    "last_run_errors": 1
                }
            ]
        }
    })


# ============================================================================
# Sync Schemas
# ============================================================================

class DataSourceResponse(BaseModel):
    """Configured provider with its counters and checkpoint"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    display_name: Optional[str] = None
    is_active: bool
    last_successful_sync: Optional[datetime] = None
    total_grants_fetched: int = 0
    total_grants_loaded: int = 0
    checkpoint: Dict[str, Any] = Field(default_factory=dict)


class SyncLogResponse(BaseModel):
    """One provider sync run"""
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    run_id: UUID
    source_name: str
    sync_type: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    records_fetched: int = 0
    records_created: int = 0
    records_updated: int = 0
    records_failed: int = 0
    checkpoint_before: Optional[str] = None
    checkpoint_after: Optional[str] = None
    error_message: Optional[str] = None


class SyncRunsResponse(BaseModel):
    runs: List[SyncLogResponse]
    total: int
