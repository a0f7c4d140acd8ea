from sqlalchemy import BigInteger, Integer, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


def enum_values(enum_cls):
    """Persist enum values ("active") rather than member names ("ACTIVE")."""
    return [member.value for member in enum_cls]


# ============================================================================
# ENUMS
# ============================================================================

class GrantStatus(str, enum.Enum):
    """Canonical grant lifecycle status"""
    ACTIVE = "active"
    CLOSED = "closed"
    FORECASTED = "forecasted"
    ARCHIVED = "archived"


class SyncStatus(str, enum.Enum):
    """Provider sync run status"""
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SyncMode(str, enum.Enum):
    """How a provider run chooses its starting point"""
    FULL = "full"
    RESUME = "resume"
    INCREMENTAL = "incremental"


class CategoryType(str, enum.Enum):
    SUBJECT = "subject"
    TOPIC = "topic"
    THEME = "theme"
    CFDA = "cfda"
    SECTOR = "sector"
    RESEARCH_AREA = "research_area"
    SDG = "sdg"
    CUSTOM = "custom"


class KeywordSource(str, enum.Enum):
    API_PROVIDED = "api_provided"
    EXTRACTED = "extracted"
    MANUAL = "manual"
    AI_GENERATED = "ai_generated"


class ContactType(str, enum.Enum):
    PROGRAM = "program"
    TECHNICAL = "technical"
    ADMINISTRATIVE = "administrative"
    GENERAL = "general"
    SUBMISSION = "submission"


class EligibilityType(str, enum.Enum):
    ORGANIZATION_TYPE = "organization_type"
    INDIVIDUAL = "individual"
    GEOGRAPHIC = "geographic"
    SECTOR = "sector"
    SIZE = "size"
    EXPERIENCE = "experience"
    OTHER = "other"


class LocationType(str, enum.Enum):
    ELIGIBLE = "eligible"
    TARGET = "target"
    EXCLUDED = "excluded"
