"""
Pydantic schemas passed between the sync components
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime


class PageRequest(BaseModel):
    """
    Provider-neutral page parameters.

    Each client translates these into its own idiom (query string or JSON
    body, offset or page number, provider field names). Decorators produce
    modified copies with model_copy(update=...).
    """
    limit: int = Field(..., ge=1)
    offset: int = Field(0, ge=0)
    page: int = Field(1, ge=1)  # 1-based
    updated_since: Optional[datetime] = None
    posted_since: Optional[datetime] = None
    status: Optional[str] = None
    filters: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def at_offset(cls, offset: int, limit: int, **kwargs) -> "PageRequest":
        """Request for the page that starts at offset."""
        return cls(limit=limit, offset=offset, page=offset // limit + 1, **kwargs)


class BatchResult(BaseModel):
    """Outcome of one bulk upsert."""
    created: int = 0
    updated: int = 0
    fanout_errors: int = 0


class SyncResult(BaseModel):
    """
    Per-provider run summary returned to the caller.

    errors is reported separately from total/loaded/updated so a partial
    run is distinguishable from a full failure.
    """
    source: str
    total: int = 0
    loaded: int = 0
    updated: int = 0
    errors: int = 0
    duration: float = 0.0  # seconds
    status: str = "success"  # success, partial_success, failed
    error_message: Optional[str] = None
