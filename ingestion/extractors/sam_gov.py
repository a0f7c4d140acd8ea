"""
SAM.gov Get Opportunities API (v2): assistance-related federal notices
"""

from typing import List, Dict, Any, Optional
from datetime import datetime, timedelta
from ingestion.base import ProviderClient
from schemas.normalized import (
    NormalizedGrant, NormalizedGrantData, GrantDetailsData, GrantContactData,
    GrantEligibilityData, GrantLocationData
)
from schemas.sync import PageRequest
from models.base import GrantStatus, CategoryType, ContactType, EligibilityType, LocationType
from core.config import settings
import logging

logger = logging.getLogger(__name__)

SEARCH_TITLE = "grant OR cooperative agreement OR assistance OR funding opportunity"
DEFAULT_WINDOW_DAYS = 30

NOTICE_TYPES = {
    "p": "Pre-solicitation",
    "o": "Solicitation",
    "r": "Sources Sought",
    "s": "Special Notice",
    "k": "Combined Synopsis/Solicitation",
    "g": "Sale of Surplus Property",
    "i": "Intent to Bundle",
}

SET_ASIDES = {
    "SBA": "Small Business Set-Aside",
    "SBP": "Small Business Set-Aside (Partial)",
    "8A": "8(a) Business Development Program",
    "8AN": "8(a) Sole Source",
    "HZC": "HUBZone Set-Aside",
    "HZS": "HUBZone Sole Source",
    "SDVOSBC": "Service-Disabled Veteran-Owned Small Business",
    "SDVOSBS": "SDVO Small Business Sole Source",
    "WOSB": "Women-Owned Small Business",
    "WOSBSS": "WOSB Sole Source",
    "EDWOSB": "Economically Disadvantaged WOSB",
    "EDWOSBSS": "EDWOSB Sole Source",
    "LAS": "Local Area Set-Aside",
}

CONTACT_TYPES = {
    "primary": ContactType.PROGRAM,
    "secondary": ContactType.ADMINISTRATIVE,
}


class SamGovClient(ProviderClient):
    """
    GET with api_key, limit/offset and a mandatory postedFrom/postedTo
    window (MM/DD/YYYY).

    Response shape: {"totalRecords": N, "opportunitiesData": [...]}

    Without a since cutoff the window covers the last 30 days.
    """

    name = "sam_gov"
    display_name = "SAM.gov Opportunities"
    base_url = "https://api.sam.gov"
    page_size = 100
    rate_limit = 1000

    def __init__(self, *args, api_key: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.api_key = api_key if api_key is not None else settings.SAM_GOV_API_KEY

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        now = datetime.utcnow()
        since = request.posted_since or request.updated_since or now - timedelta(days=DEFAULT_WINDOW_DAYS)
        params: Dict[str, Any] = {
            "api_key": self.api_key,
            "postedFrom": since.strftime("%m/%d/%Y"),
            "postedTo": now.strftime("%m/%d/%Y"),
            "limit": request.limit,
            "offset": request.offset,
            "ptype": "s,p,r",
        }
        if not request.filters.get("title") and not request.filters.get("description"):
            params["title"] = SEARCH_TITLE
        params.update(request.filters)

        data = await self.get_json("/opportunities/v2/search", params=params)
        return (data or {}).get("opportunitiesData") or []

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        return raw.get("noticeId")

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        return raw.get("title")

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        departments = [d for d in n.as_list(raw.get("department")) if isinstance(d, dict)]
        hierarchy = [h for h in n.as_list(raw.get("organizationHierarchy")) if isinstance(h, dict)]
        lead = departments[0] if departments else (hierarchy[0] if hierarchy else {})
        deadline = n.normalize_date(raw.get("responseDeadLine"))
        description = n.clean_text(raw.get("description"))

        amount_min = n.normalize_amount(raw.get("awardFloor"))
        amount_max = n.normalize_amount(raw.get("awardCeiling"))
        award = raw.get("award")
        if isinstance(award, dict) and award.get("amount") is not None:
            amount_min = amount_max = n.normalize_amount(award.get("amount"))

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            source_url=raw.get("uiLink") or f"https://sam.gov/opp/{source_identifier}",
            title=title,
            status=self._status(raw.get("active"), deadline),
            funding_organization_name=lead.get("name"),
            funding_organization_code=lead.get("code"),
            currency="USD",
            funding_amount_min=amount_min,
            funding_amount_max=amount_max,
            posted_date=n.normalize_date(raw.get("postedDate")),
            application_deadline=deadline,
            end_date=n.normalize_date(raw.get("archiveDate")),
            grant_type=NOTICE_TYPES.get(raw.get("type"), "Notice"),
            funding_instrument="Potential Grant Opportunity",
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=description,
            additional_information={
                "notice_id": source_identifier,
                "notice_type": raw.get("type"),
                "classification_code": raw.get("classificationCode"),
                "naics_codes": raw.get("naicsCode"),
                "set_aside": raw.get("typeOfSetAside"),
            },
        )

        categories = n.categories_from(departments, CategoryType.TOPIC, name_key="name", code_key="code")
        categories += n.categories_from(
            [{"name": f"NAICS {code}", "code": code} for code in n.as_list(raw.get("naicsCode"))],
            CategoryType.SECTOR,
            code_key="code"
        )

        locations = []
        place = raw.get("placeOfPerformance")
        if isinstance(place, dict):
            country = place.get("country") or {}
            state = place.get("state") or {}
            city = place.get("city") or {}
            locations.append(GrantLocationData(
                location_type=LocationType.TARGET,
                country_code=country.get("code") or "US",
                state_province=state.get("code"),
                city=city.get("name"),
                geographic_description=city.get("name") or state.get("name"),
            ))

        contacts = [
            GrantContactData(
                contact_type=CONTACT_TYPES.get(str(poc.get("type") or "").lower(), ContactType.GENERAL),
                contact_name=poc.get("fullName"),
                contact_title=poc.get("title"),
                email=poc.get("email"),
                phone=poc.get("phone"),
                fax=poc.get("fax"),
                organization=grant.funding_organization_name,
                display_order=index,
            )
            for index, poc in enumerate(n.as_list(raw.get("pointOfContact")))
            if isinstance(poc, dict)
        ]

        eligibility = []
        set_aside = raw.get("typeOfSetAside")
        if set_aside and set_aside != "N/A":
            eligibility.append(GrantEligibilityData(
                eligibility_type=EligibilityType.OTHER,
                eligibility_code=set_aside,
                eligibility_value=set_aside,
                eligibility_description=SET_ASIDES.get(set_aside, set_aside),
                is_required=True,
            ))

        return NormalizedGrantData(
            grant=grant,
            details=details,
            categories=categories,
            keywords=n.extract_keywords(description, title),
            contacts=contacts,
            eligibility=eligibility,
            locations=locations,
        )

    @staticmethod
    def _status(active: Any, deadline: Optional[datetime]) -> GrantStatus:
        if str(active or "").lower() == "yes":
            return GrantStatus.ACTIVE
        if deadline and deadline < datetime.utcnow():
            return GrantStatus.CLOSED
        return GrantStatus.ACTIVE
