from sqlalchemy import (
    Column, String, BigInteger, Integer, Enum, Text, Float, Boolean,
    DateTime, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import (
    Base, BigIntPK, JSONType, enum_values,
    GrantStatus, CategoryType, KeywordSource, ContactType, EligibilityType, LocationType
)


class Grant(Base):
    """
    Canonical funding-opportunity record shared by every provider.

    Identity is the pair (data_source_id, source_identifier); a second
    observation of the same pair overwrites the row instead of inserting.

    Field Mapping Strategy (examples):

    grants_gov:
    - id -> source_identifier
    - title -> title
    - oppStatus -> status
    - openDate / closeDate -> posted_date / application_deadline

    world_bank:
    - id -> source_identifier
    - project_name -> title
    - totalamt -> funding_amount_max, total_funding_available
    - boardapprovaldate / closingdate -> start_date / end_date

    ukri_gateway:
    - projectComposition.project.id -> source_identifier
    - fund.valuePounds -> funding amounts (GBP)
    """
    __tablename__ = "grants"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    # Provider identity
    data_source_id = Column(Integer, ForeignKey("data_sources.id"), nullable=False, index=True)
    source_identifier = Column(String(255), nullable=False)
    source_url = Column(String(2048), nullable=True)

    # Core fields
    title = Column(String(1000), nullable=False)
    status = Column(
        Enum(GrantStatus, name="grant_status", values_callable=enum_values),
        nullable=False,
        default=GrantStatus.ACTIVE,
        index=True
    )

    # Organization
    funding_organization_name = Column(String(500), nullable=True)
    funding_organization_code = Column(String(100), nullable=True)

    # Funding
    currency = Column(String(10), nullable=True, default="USD")
    funding_amount_min = Column(Float, nullable=True)
    funding_amount_max = Column(Float, nullable=True)
    total_funding_available = Column(Float, nullable=True)
    expected_awards_count = Column(Integer, nullable=True)

    # Dates
    posted_date = Column(DateTime, nullable=True, index=True)
    application_deadline = Column(DateTime, nullable=True, index=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    last_updated_date = Column(DateTime, nullable=True)

    # Classification
    grant_type = Column(String(200), nullable=True)
    funding_instrument = Column(String(500), nullable=True)
    activity_code = Column(String(50), nullable=True)

    # Raw payload snapshot
    raw_data = Column(JSONType, nullable=True)

    # Precomputed by the recommendation service; never written by the sync
    embedding = Column(JSONType, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    data_source = relationship("DataSource", back_populates="grants")
    details = relationship("GrantDetails", back_populates="grant", uselist=False,
                           cascade="all, delete-orphan", passive_deletes=True)
    categories = relationship("GrantCategory", cascade="all, delete-orphan", passive_deletes=True)
    keywords = relationship("GrantKeyword", cascade="all, delete-orphan", passive_deletes=True)
    contacts = relationship("GrantContact", cascade="all, delete-orphan", passive_deletes=True)
    eligibility = relationship("GrantEligibility", cascade="all, delete-orphan", passive_deletes=True)
    locations = relationship("GrantLocation", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("data_source_id", "source_identifier", name="uq_grants_source_identifier"),
        Index("idx_grants_source_status", "data_source_id", "status"),
    )


class GrantDetails(Base):
    """Long-form text for a grant (1:1, upserted in place on grant_id)."""
    __tablename__ = "grant_details"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    grant_id = Column(BigInteger, ForeignKey("grants.id", ondelete="CASCADE"), nullable=False, unique=True)

    language_code = Column(String(10), nullable=True, default="en")
    description = Column(Text, nullable=True)
    abstract = Column(Text, nullable=True)
    purpose = Column(Text, nullable=True)
    expected_results = Column(Text, nullable=True)
    special_requirements = Column(Text, nullable=True)
    application_process = Column(Text, nullable=True)
    evaluation_criteria = Column(Text, nullable=True)
    additional_information = Column(JSONType, nullable=True)

    grant = relationship("Grant", back_populates="details")


class GrantCategory(Base):
    __tablename__ = "grant_categories"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    grant_id = Column(BigInteger, ForeignKey("grants.id", ondelete="CASCADE"), nullable=False, index=True)

    category_type = Column(Enum(CategoryType, name="category_type", values_callable=enum_values), nullable=False)
    category_code = Column(String(100), nullable=True)
    category_name = Column(String(500), nullable=False)
    category_hierarchy = Column(String(1000), nullable=True)


class GrantKeyword(Base):
    """Search keywords, at most 50 per grant, most relevant first."""
    __tablename__ = "grant_keywords"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    grant_id = Column(BigInteger, ForeignKey("grants.id", ondelete="CASCADE"), nullable=False, index=True)

    keyword = Column(String(200), nullable=False, index=True)
    keyword_source = Column(Enum(KeywordSource, name="keyword_source", values_callable=enum_values), nullable=False)
    relevance_score = Column(Float, nullable=True)


class GrantContact(Base):
    __tablename__ = "grant_contacts"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    grant_id = Column(BigInteger, ForeignKey("grants.id", ondelete="CASCADE"), nullable=False, index=True)

    contact_type = Column(Enum(ContactType, name="contact_type", values_callable=enum_values), nullable=False)
    contact_name = Column(String(300), nullable=True)
    contact_title = Column(String(300), nullable=True)
    organization = Column(String(500), nullable=True)
    email = Column(String(320), nullable=True)
    phone = Column(String(50), nullable=True)
    fax = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    url = Column(String(2048), nullable=True)
    notes = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=True, default=0)


class GrantEligibility(Base):
    __tablename__ = "grant_eligibility"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    grant_id = Column(BigInteger, ForeignKey("grants.id", ondelete="CASCADE"), nullable=False, index=True)

    eligibility_type = Column(Enum(EligibilityType, name="eligibility_type", values_callable=enum_values), nullable=False)
    eligibility_code = Column(String(100), nullable=True)
    eligibility_value = Column(String(500), nullable=True)
    eligibility_description = Column(Text, nullable=True)
    is_required = Column(Boolean, nullable=False, default=True)


class GrantLocation(Base):
    __tablename__ = "grant_locations"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    grant_id = Column(BigInteger, ForeignKey("grants.id", ondelete="CASCADE"), nullable=False, index=True)

    location_type = Column(Enum(LocationType, name="location_type", values_callable=enum_values), nullable=False)
    country_code = Column(String(10), nullable=True)
    state_province = Column(String(100), nullable=True)
    city = Column(String(200), nullable=True)
    postal_code = Column(String(20), nullable=True)
    region = Column(String(200), nullable=True)
    geographic_description = Column(Text, nullable=True)


# Dependent 1:N tables replaced wholesale on every upsert, keyed by payload field
REPLACED_CHILD_TABLES = {
    "categories": GrantCategory,
    "keywords": GrantKeyword,
    "contacts": GrantContact,
    "eligibility": GrantEligibility,
    "locations": GrantLocation,
}
