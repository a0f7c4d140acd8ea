"""
Pydantic schemas for canonical grant records and their dependent sub-records
"""

from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import (
    GrantStatus, CategoryType, KeywordSource, ContactType, EligibilityType, LocationType
)

MAX_KEYWORDS = 50


class NormalizedGrant(BaseModel):
    """
    Canonical grant fields written to the grants table.

    Ensures:
    - Provider identity is present
    - Title is non-empty after stripping
    - Amounts are non-negative
    """
    model_config = ConfigDict(use_enum_values=True)

    # Provider identity (required)
    data_source_id: int
    source_identifier: str = Field(..., min_length=1, max_length=255)
    source_url: Optional[str] = Field(None, max_length=2048)

    # Core fields
    title: str = Field(..., min_length=1, max_length=1000)
    status: GrantStatus = GrantStatus.ACTIVE

    # Organization
    funding_organization_name: Optional[str] = Field(None, max_length=500)
    funding_organization_code: Optional[str] = Field(None, max_length=100)

    # Funding
    currency: Optional[str] = Field("USD", max_length=10)
    funding_amount_min: Optional[float] = Field(None, ge=0)
    funding_amount_max: Optional[float] = Field(None, ge=0)
    total_funding_available: Optional[float] = Field(None, ge=0)
    expected_awards_count: Optional[int] = Field(None, ge=0)

    # Dates
    posted_date: Optional[datetime] = None
    application_deadline: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    last_updated_date: Optional[datetime] = None

    # Classification
    grant_type: Optional[str] = Field(None, max_length=200)
    funding_instrument: Optional[str] = Field(None, max_length=500)
    activity_code: Optional[str] = Field(None, max_length=50)

    raw_data: Optional[Dict[str, Any]] = None

    @field_validator("source_identifier", mode="before")
    @classmethod
    def coerce_identifier(cls, v):
        """Provider ids arrive as ints or strings"""
        if v is None:
            return v
        return str(v).strip()

    @field_validator("title", mode="before")
    @classmethod
    def clean_title(cls, v):
        """Collapse whitespace and truncate to the column width before length checks"""
        if not isinstance(v, str):
            return v
        v = " ".join(v.split())
        if not v:
            raise ValueError("Title cannot be empty after stripping")
        return v[:1000]


class GrantDetailsData(BaseModel):
    language_code: Optional[str] = "en"
    description: Optional[str] = None
    abstract: Optional[str] = None
    purpose: Optional[str] = None
    expected_results: Optional[str] = None
    special_requirements: Optional[str] = None
    application_process: Optional[str] = None
    evaluation_criteria: Optional[str] = None
    additional_information: Optional[Dict[str, Any]] = None


class GrantCategoryData(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    category_type: CategoryType
    category_code: Optional[str] = Field(None, max_length=100)
    category_name: str = Field(..., min_length=1, max_length=500)
    category_hierarchy: Optional[str] = None


class GrantKeywordData(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    keyword: str = Field(..., min_length=1, max_length=200)
    keyword_source: KeywordSource = KeywordSource.EXTRACTED
    relevance_score: Optional[float] = None


class GrantContactData(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    contact_type: ContactType = ContactType.GENERAL
    contact_name: Optional[str] = None
    contact_title: Optional[str] = None
    organization: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    fax: Optional[str] = None
    address: Optional[str] = None
    url: Optional[str] = None
    notes: Optional[str] = None
    display_order: int = 0


class GrantEligibilityData(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    eligibility_type: EligibilityType
    eligibility_code: Optional[str] = None
    eligibility_value: Optional[str] = None
    eligibility_description: Optional[str] = None
    is_required: bool = True


class GrantLocationData(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    location_type: LocationType = LocationType.ELIGIBLE
    country_code: Optional[str] = Field(None, max_length=10)
    state_province: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    region: Optional[str] = None
    geographic_description: Optional[str] = None


class NormalizedGrantData(BaseModel):
    """
    One provider record mapped to the canonical shape.

    The 1:N lists are the complete replacement sets for the grant; an empty
    list clears the corresponding table on upsert.
    """
    grant: NormalizedGrant
    details: Optional[GrantDetailsData] = None
    categories: List[GrantCategoryData] = Field(default_factory=list)
    keywords: List[GrantKeywordData] = Field(default_factory=list)
    contacts: List[GrantContactData] = Field(default_factory=list)
    eligibility: List[GrantEligibilityData] = Field(default_factory=list)
    locations: List[GrantLocationData] = Field(default_factory=list)

    @field_validator("keywords")
    @classmethod
    def cap_keywords(cls, v):
        """Keep the most relevant keywords, at most MAX_KEYWORDS"""
        ranked = sorted(
            v,
            key=lambda k: k.relevance_score if k.relevance_score is not None else 0.0,
            reverse=True
        )
        return ranked[:MAX_KEYWORDS]

    @property
    def source_identifier(self) -> str:
        return self.grant.source_identifier
