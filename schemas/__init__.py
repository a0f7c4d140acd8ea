"""
Pydantic schemas for data validation and serialization.

This package defines the Pydantic models passed between the sync
components and returned by the ops API:

Schemas:
    normalized: Canonical grant record plus dependent sub-records
    sync: Page requests, batch results and per-provider sync results
    api: API endpoint response schemas

Usage:
    from schemas.normalized import NormalizedGrantData, NormalizedGrant
    from schemas.sync import PageRequest, SyncResult

Example:
    record = NormalizedGrantData(
        grant=NormalizedGrant(
            data_source_id=1,
            source_identifier="P123456",
            title="Rural Water Supply Project"
        )
    )
    assert record.grant.status == "active"
"""

__all__ = [
    "NormalizedGrant",
    "NormalizedGrantData",
    "GrantDetailsData",
    "GrantCategoryData",
    "GrantKeywordData",
    "GrantContactData",
    "GrantEligibilityData",
    "GrantLocationData",
    "PageRequest",
    "BatchResult",
    "SyncResult",
    "HealthCheckResponse",
    "DataSourceResponse",
    "SyncLogResponse",
]
