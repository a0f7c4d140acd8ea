"""
SQLAlchemy ORM models for database tables.

This package defines the target schema of the grant sync pipeline:

Models:
    base: Base declarative class, portable column types and shared enums
    data_source: Configured providers and their cumulative sync counters
    grant: Canonical grant record plus its dependent sub-records
    sync_state: Per-provider checkpoint key/value state
    sync_log: One audit row per provider sync run

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and plain JSON elsewhere, so the same models back
    the aiosqlite store used in tests.

Usage:
    from models import Grant, DataSource, SyncState, SyncLog
    from models.base import GrantStatus, SyncMode

Relationships:
    - DataSource → Grant (one-to-many)
    - Grant → GrantDetails (one-to-one, cascade delete)
    - Grant → GrantCategory / GrantKeyword / GrantContact /
      GrantEligibility / GrantLocation (one-to-many, cascade delete)
    - DataSource → SyncState, SyncLog (one-to-many)
"""

from models.base import Base, GrantStatus, SyncStatus, SyncMode
from models.data_source import DataSource
from models.grant import (
    Grant,
    GrantDetails,
    GrantCategory,
    GrantKeyword,
    GrantContact,
    GrantEligibility,
    GrantLocation,
)
from models.sync_state import SyncState
from models.sync_log import SyncLog

__all__ = [
    "Base",
    "GrantStatus",
    "SyncStatus",
    "SyncMode",
    "DataSource",
    "Grant",
    "GrantDetails",
    "GrantCategory",
    "GrantKeyword",
    "GrantContact",
    "GrantEligibility",
    "GrantLocation",
    "SyncState",
    "SyncLog",
]
