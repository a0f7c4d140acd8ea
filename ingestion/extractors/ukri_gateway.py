"""
UKRI Gateway to Research projects API
"""

from typing import List, Dict, Any, Optional
from ingestion.base import ProviderClient
from schemas.normalized import (
    NormalizedGrant, NormalizedGrantData, GrantDetailsData, GrantContactData, GrantLocationData
)
from schemas.sync import PageRequest
from models.base import GrantStatus, CategoryType, ContactType, LocationType
import logging

logger = logging.getLogger(__name__)

STATUS_TABLE = {
    "active": GrantStatus.ACTIVE,
    "closed": GrantStatus.CLOSED,
    "completed": GrantStatus.CLOSED,
}


class UkriGatewayClient(ProviderClient):
    """
    GET with page number p (1-based) and page size s.

    Records come either flat or wrapped in projectComposition.
    The projects search takes no date-range parameter, so since cutoffs
    are not sent.
    """

    name = "ukri_gateway"
    display_name = "UKRI Gateway to Research"
    base_url = "https://gtr.ukri.org/api"
    page_size = 100
    supports_since = False

    def default_headers(self) -> Dict[str, str]:
        headers = super().default_headers()
        headers["Accept"] = "application/vnd.rcuk.gtr.json-v7"
        return headers

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "q": request.filters.get("q", "*"),
            "p": request.page,
            "s": request.limit,
        }
        data = await self.get_json("/projects", params=params)
        return (data or {}).get("project") or []

    @staticmethod
    def _project(raw: Dict[str, Any]) -> Dict[str, Any]:
        composition = raw.get("projectComposition")
        if isinstance(composition, dict):
            return composition.get("project") or composition
        return raw

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        return self._project(raw).get("id") or raw.get("id")

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        return self._project(raw).get("title")

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        project = self._project(raw)
        fund = project.get("fund") or {}
        funder = fund.get("funder") or {}
        lead_org = project.get("leadResearchOrganisation") or {}
        address = lead_org.get("address") or {}
        value = n.normalize_amount(fund.get("valuePounds"))
        description = n.clean_text(project.get("abstractText"))

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            source_url=raw.get("href") or f"https://gtr.ukri.org/projects?ref={project.get('grantReference') or source_identifier}",
            title=title,
            status=n.normalize_status(project.get("status"), STATUS_TABLE),
            funding_organization_name=funder.get("name") or "UK Research and Innovation",
            funding_organization_code=funder.get("id") or "UKRI",
            currency="GBP",
            funding_amount_min=value,
            funding_amount_max=value,
            total_funding_available=value,
            start_date=n.normalize_date(fund.get("start")),
            end_date=n.normalize_date(fund.get("end")),
            grant_type="Research Grant",
            funding_instrument=project.get("grantCategory") or "Research Grant",
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=description,
            purpose=n.clean_text(project.get("potentialImpactText")),
            expected_results=n.clean_text(project.get("techAbstractText")),
            additional_information={
                "project_reference": project.get("grantReference"),
                "lead_organisation": lead_org.get("name"),
            },
        )

        categories = (
            n.categories_from(project.get("researchTopics"), CategoryType.RESEARCH_AREA, name_key="text", code_key="id")
            + n.categories_from(project.get("researchSubjects"), CategoryType.SUBJECT, name_key="text", code_key="id")
            + n.categories_from(project.get("healthCategories"), CategoryType.THEME, name_key="text", code_key="id")
        )

        provided = project.get("keywords")
        if isinstance(provided, str):
            provided = provided.split(",")
        keywords = n.rank_keywords(provided, n.extract_keywords(description, title))

        contacts = []
        pi_name = self._person_name(project.get("principalInvestigator"))
        if pi_name:
            contacts.append(GrantContactData(
                contact_type=ContactType.TECHNICAL,
                contact_name=pi_name,
                contact_title="Principal Investigator",
                organization=lead_org.get("name"),
            ))

        locations = []
        if address:
            locations.append(GrantLocationData(
                location_type=LocationType.TARGET,
                country_code="GB",
                city=address.get("city") or address.get("line4"),
                postal_code=address.get("postCode"),
                region=address.get("region"),
            ))

        eligibility = [n.implied_eligibility(
            "Research Organisations",
            "UK universities, research institutes and eligible research organisations",
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
    def _person_name(person: Any) -> Optional[str]:
        if not person:
            return None
        if isinstance(person, str):
            return person
        if person.get("firstName") and person.get("surname"):
            return f"{person['firstName']} {person['surname']}"
        return person.get("name")
