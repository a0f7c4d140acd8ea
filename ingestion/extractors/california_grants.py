"""
California Grants Portal (data.ca.gov CKAN datastore)
"""

from typing import List, Dict, Any, Optional, Tuple
from datetime import datetime
import json
import re
from ingestion.base import ProviderClient
from schemas.normalized import (
    NormalizedGrant, NormalizedGrantData, GrantDetailsData, GrantContactData,
    GrantEligibilityData, GrantLocationData
)
from schemas.sync import PageRequest
from models.base import GrantStatus, CategoryType, ContactType, EligibilityType, LocationType
import logging

logger = logging.getLogger(__name__)

RESOURCE_ID = "111c8c88-21f6-453c-ae2c-b4785a0624f5"

STATUS_TABLE = {
    "active": GrantStatus.ACTIVE,
    "closed": GrantStatus.CLOSED,
    "forecasted": GrantStatus.FORECASTED,
    "archived": GrantStatus.CLOSED,
}

_RANGE_RE = re.compile(r"Between\s+\$([0-9,]+)\s+and\s+\$([0-9,]+)", re.IGNORECASE)
_SINGLE_RE = re.compile(r"^\$([0-9,]+)$")
_EMAIL_RE = re.compile(r"email:\s*([^\s;,]+)", re.IGNORECASE)
_PHONE_RE = re.compile(r"tel:\s*([^\s;,]+)", re.IGNORECASE)
_NAME_RE = re.compile(r"name:\s*([^;,]+)", re.IGNORECASE)


class CaliforniaGrantsClient(ProviderClient):
    """
    CKAN datastore_search GET with limit/offset, sorted by deadline.

    Response shape: {"result": {"records": [...], "total": N}}

    The datastore has no modified-since operator, so incremental runs
    re-read from the start and rely on idempotent upserts.
    """

    name = "california_grants"
    display_name = "California Grants Portal"
    base_url = "https://data.ca.gov/api/3/action"
    page_size = 100
    supports_since = False

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "resource_id": RESOURCE_ID,
            "limit": request.limit,
            "offset": request.offset,
            "sort": request.filters.get("sort", "ApplicationDeadline asc"),
        }
        filters = dict(request.filters.get("fields") or {})
        if request.status:
            filters["Status"] = request.status
        if filters:
            params["filters"] = json.dumps(filters)
        if request.filters.get("q"):
            params["q"] = request.filters["q"]

        data = await self.get_json("/datastore_search", params=params)
        return ((data or {}).get("result") or {}).get("records") or []

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        return self.normalizer.first(raw, "PortalID", "GrantID", "_id")

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        return raw.get("Title")

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        deadline = n.normalize_date(raw.get("ApplicationDeadline"))
        open_date = n.normalize_date(raw.get("OpenDate"))
        amount_min, amount_max = parse_amount_range(raw.get("EstAmounts"))
        description = n.clean_text(raw.get("Description"))
        purpose = n.clean_text(raw.get("Purpose"))
        notes = n.clean_text(raw.get("ApplicantTypeNotes"))
        geography = n.clean_text(raw.get("Geography"))

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            source_url=raw.get("GrantURL"),
            title=title,
            status=self._status(raw.get("Status"), deadline, open_date),
            funding_organization_name=raw.get("AgencyDept"),
            funding_organization_code=raw.get("AgencyCode"),
            currency="USD",
            funding_amount_min=amount_min,
            funding_amount_max=amount_max,
            total_funding_available=n.normalize_amount(raw.get("EstAvailFunds")),
            expected_awards_count=n.to_int(re.sub(r"[^0-9]", "", str(raw.get("EstAwards") or ""))),
            posted_date=open_date,
            application_deadline=deadline,
            last_updated_date=n.normalize_date(raw.get("LastUpdated")),
            grant_type=raw.get("Type") or "Grant",
            funding_instrument=raw.get("FundingSource"),
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=description,
            purpose=purpose,
            application_process=notes,
            evaluation_criteria=n.clean_text(raw.get("AwardStats")),
            special_requirements=n.clean_text(raw.get("MatchingFundsNotes")),
            additional_information={
                "grant_id": raw.get("GrantID"),
                "portal_id": raw.get("PortalID"),
                "matching_funds_required": raw.get("MatchingFunds") == "Required",
                "funding_method": raw.get("FundingMethod"),
                "award_period": raw.get("AwardPeriod"),
                "expected_award_date": raw.get("ExpAwardDate"),
                "loi_required": raw.get("LOI") == "Yes",
                "agency_url": raw.get("AgencyURL"),
            },
        )

        categories = n.categories_from(
            [c.strip() for c in str(raw.get("Categories") or "").split(",")], CategoryType.THEME
        )

        eligibility = [
            GrantEligibilityData(
                eligibility_type=EligibilityType.ORGANIZATION_TYPE,
                eligibility_value=applicant.strip(),
                is_required=True,
            )
            for applicant in str(raw.get("ApplicantType") or "").split(";")
            if applicant.strip()
        ]
        if notes:
            eligibility.append(GrantEligibilityData(
                eligibility_type=EligibilityType.OTHER,
                eligibility_description=notes,
                is_required=False,
            ))
        if geography:
            eligibility.append(GrantEligibilityData(
                eligibility_type=EligibilityType.GEOGRAPHIC,
                eligibility_value=geography,
                eligibility_description="Geographic areas eligible for this grant",
                is_required=True,
            ))

        locations = [GrantLocationData(
            location_type=LocationType.ELIGIBLE,
            country_code="US",
            state_province="CA",
            geographic_description=(
                geography if geography and geography != "Statewide" else "California Statewide"
            ),
        )]

        contacts = []
        contact_info = n.clean_text(raw.get("ContactInfo"))
        if contact_info:
            contacts.append(GrantContactData(
                contact_type=ContactType.GENERAL,
                contact_name=_match(_NAME_RE, contact_info),
                email=_match(_EMAIL_RE, contact_info),
                phone=_match(_PHONE_RE, contact_info),
                notes=contact_info,
                organization=raw.get("AgencyDept"),
            ))

        return NormalizedGrantData(
            grant=grant,
            details=details,
            categories=categories,
            keywords=n.extract_keywords(" ".join(filter(None, [description, purpose])), title),
            contacts=contacts,
            eligibility=eligibility,
            locations=locations,
        )

    def _status(
        self,
        value: Optional[str],
        deadline: Optional[datetime],
        open_date: Optional[datetime]
    ) -> GrantStatus:
        """Portal status when present, otherwise derived from the open and close dates"""
        if value:
            return self.normalizer.normalize_status(value, STATUS_TABLE)
        now = datetime.utcnow()
        if deadline and deadline < now:
            return GrantStatus.CLOSED
        if open_date and open_date > now:
            return GrantStatus.FORECASTED
        return GrantStatus.ACTIVE


def parse_amount_range(value: Any) -> Tuple[Optional[float], Optional[float]]:
    """
    Award range from the EstAmounts text.

    Examples:
        >>> parse_amount_range("Between $10,000 and $100,000")
        (10000.0, 100000.0)
        >>> parse_amount_range("$50,000")
        (50000.0, 50000.0)
    """
    if not value:
        return None, None
    text = str(value).strip()

    match = _RANGE_RE.search(text)
    if match:
        return (
            ProviderClient.normalizer.normalize_amount(match.group(1)),
            ProviderClient.normalizer.normalize_amount(match.group(2)),
        )

    match = _SINGLE_RE.match(text)
    if match:
        amount = ProviderClient.normalizer.normalize_amount(match.group(1))
        return amount, amount

    return None, None


def _match(pattern: re.Pattern, text: str) -> Optional[str]:
    match = pattern.search(text)
    return match.group(1).strip() if match else None
