"""
NIH RePORTER project search (v2)
"""

from typing import List, Dict, Any, Optional
from datetime import datetime
from ingestion.base import ProviderClient
from schemas.normalized import (
    NormalizedGrant, NormalizedGrantData, GrantDetailsData, GrantContactData,
    GrantCategoryData, GrantLocationData
)
from schemas.sync import PageRequest
from models.base import CategoryType, ContactType, LocationType
import logging

logger = logging.getLogger(__name__)

ACTIVITY_CODES = {
    "R01": "Research Project Grant",
    "R21": "Exploratory/Developmental Research Grant",
    "R03": "Small Research Grant",
    "P01": "Research Program Project",
    "P30": "Center Core Grant",
    "P50": "Specialized Center",
    "U01": "Research Project Cooperative Agreement",
    "K01": "Mentored Research Scientist Career Development Award",
    "K08": "Mentored Clinical Scientist Research Career Development Award",
    "K99": "Pathway to Independence Award",
    "F31": "Predoctoral Individual National Research Service Award",
    "F32": "Postdoctoral Individual National Research Service Award",
    "T32": "Institutional National Research Service Award",
}


class NihReporterClient(ProviderClient):
    """
    POST search with offset/limit in the body and a criteria object.

    NIH lists awarded projects only, so status is derived from the
    project end date.
    """

    name = "nih_reporter"
    display_name = "NIH RePORTER"
    base_url = "https://api.reporter.nih.gov/v2"
    page_size = 500
    # NIH asks for no more than one request per second
    rate_limit = 3600

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        criteria: Dict[str, Any] = {
            "fiscal_years": [datetime.utcnow().year],
            "exclude_subprojects": True,
        }
        if request.updated_since:
            criteria["date_added"] = {"from_date": request.updated_since.strftime("%Y-%m-%d")}
        if request.posted_since:
            criteria["award_notice_date"] = {"from_date": request.posted_since.strftime("%Y-%m-%d")}
        criteria.update(request.filters.get("criteria", {}))

        body = {
            "criteria": criteria,
            "offset": request.offset,
            "limit": request.limit,
            "sort_field": "project_start_date",
            "sort_order": "desc",
        }
        data = await self.post_json("/projects/search", body)
        return (data or {}).get("results") or []

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        return self.normalizer.first(raw, "project_num", "appl_id", "application_id")

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        return raw.get("project_title")

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        agency = raw.get("agency_ic_admin") or {}
        organization = raw.get("organization") or {}
        activity_code = raw.get("activity_code")
        award = n.normalize_amount(n.first(raw, "award_amount", "total_cost"))
        end_date = n.normalize_date(raw.get("project_end_date"))
        description = n.clean_text(n.first(raw, "abstract_text", "project_abstract"))

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            source_url=f"https://reporter.nih.gov/project-details/{source_identifier}",
            title=title,
            status=n.status_from_dates(end_date),
            funding_organization_name=agency.get("name") or raw.get("ic_name") or "National Institutes of Health",
            funding_organization_code=agency.get("abbreviation") or agency.get("code") or "NIH",
            currency="USD",
            funding_amount_min=award,
            funding_amount_max=award,
            total_funding_available=n.normalize_amount(raw.get("total_cost_ic")),
            posted_date=n.normalize_date(raw.get("award_notice_date")),
            start_date=n.normalize_date(raw.get("project_start_date")),
            end_date=end_date,
            last_updated_date=n.normalize_date(raw.get("date_added")),
            grant_type=activity_code,
            funding_instrument=self._activity_name(activity_code),
            activity_code=activity_code,
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=description,
            abstract=n.clean_text(n.first(raw, "phr_text", "public_health_relevance")),
            purpose=title,
            additional_information={
                "opportunity_number": raw.get("opportunity_number") or raw.get("foa_number"),
                "serial_number": raw.get("serial_num") or raw.get("serial_number"),
                "support_year": raw.get("support_year"),
                "is_covid_response": bool(raw.get("covid_response")),
                "recipient": organization.get("org_name"),
            },
        )

        categories = []
        if activity_code:
            categories.append(GrantCategoryData(
                category_type=CategoryType.RESEARCH_AREA,
                category_code=activity_code,
                category_name=self._activity_name(activity_code),
            ))
        study_section = raw.get("full_study_section") or raw.get("study_section") or {}
        section_name = study_section.get("name") or study_section.get("sra_name") or study_section.get("group_name")
        if section_name:
            categories.append(GrantCategoryData(
                category_type=CategoryType.TOPIC,
                category_code=study_section.get("srg_code") or study_section.get("sra_code"),
                category_name=section_name,
            ))

        terms = raw.get("terms")
        if isinstance(terms, str):
            terms = [t for t in terms.replace("<", ">").split(">") if t.strip()]
        keywords = n.rank_keywords(terms, n.extract_keywords(description, title))

        contacts = []
        for index, officer in enumerate(n.as_list(raw.get("program_officers"))):
            name = officer.get("full_name") or f"{officer.get('first_name', '')} {officer.get('last_name', '')}".strip()
            if not name and not officer.get("email"):
                continue
            contacts.append(GrantContactData(
                contact_type=ContactType.PROGRAM,
                contact_name=name or None,
                contact_title="Program Officer",
                email=officer.get("email"),
                display_order=index,
            ))
        for pi in n.as_list(raw.get("principal_investigators"))[:1]:
            contacts.append(GrantContactData(
                contact_type=ContactType.TECHNICAL,
                contact_name=pi.get("full_name") or f"{pi.get('first_name', '')} {pi.get('last_name', '')}".strip() or None,
                contact_title="Principal Investigator",
                organization=organization.get("org_name"),
                email=pi.get("email"),
                display_order=len(contacts),
            ))

        locations = []
        if organization.get("org_state") or organization.get("org_city"):
            locations.append(GrantLocationData(
                location_type=LocationType.TARGET,
                country_code=_country_code(organization.get("org_country")),
                state_province=organization.get("org_state"),
                city=organization.get("org_city"),
                postal_code=organization.get("org_zipcode"),
            ))

        eligibility = [n.implied_eligibility(
            "Research Institutions",
            "Universities, hospitals, and other research organizations",
        )]

        return NormalizedGrantData(
            grant=grant,
            details=details,
            categories=categories,
            keywords=keywords,
            contacts=contacts,
            eligibility=eligibility,
            locations=locations,
        )

    @staticmethod
    def _activity_name(code: Optional[str]) -> str:
        if not code:
            return "Research Grant"
        return ACTIVITY_CODES.get(code, f"{code} Grant")


def _country_code(country: Optional[str]) -> str:
    if not country or country.upper() in ("UNITED STATES", "USA", "US"):
        return "US"
    return country[:10]
