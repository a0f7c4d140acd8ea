"""
NSF Award Search API
"""

from typing import List, Dict, Any, Optional
from ingestion.base import ProviderClient
from schemas.normalized import (
    NormalizedGrant, NormalizedGrantData, GrantDetailsData, GrantContactData, GrantLocationData
)
from schemas.sync import PageRequest
from models.base import CategoryType, ContactType, LocationType
import logging

logger = logging.getLogger(__name__)

PRINT_FIELDS = (
    "id,title,startDate,expDate,date,awardeeName,piFirstName,piLastName,piEmail,"
    "coPDPI,fundProgramName,awardeeCity,awardeeStateCode,awardeeZipCode,"
    "estimatedTotalAmt,fundsObligatedAmt,projectOutComesReport,abstractText,"
    "agency,poName,poEmail,poPhone"
)


class NsfAwardsClient(ProviderClient):
    """
    GET with 1-based offset and rpp (results per page, at most 25).

    Response shape: {"response": {"award": [...]}}
    """

    name = "nsf_awards"
    display_name = "NSF Award Search"
    base_url = "https://api.nsf.gov/services/v1"
    page_size = 25

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "printFields": PRINT_FIELDS,
            "offset": request.offset + 1,
            "rpp": request.limit,
        }
        since = request.updated_since or request.posted_since
        if since:
            params["dateStart"] = since.strftime("%m/%d/%Y")
        params.update(request.filters)

        data = await self.get_json("/awards.json", params=params)
        return ((data or {}).get("response") or {}).get("award") or []

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        return raw.get("id")

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        return raw.get("title")

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        end_date = n.normalize_date(raw.get("expDate"))
        total = n.normalize_amount(raw.get("estimatedTotalAmt"))
        description = n.clean_text(raw.get("abstractText"))
        pi_name = f"{raw.get('piFirstName') or ''} {raw.get('piLastName') or ''}".strip()

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            source_url=f"https://www.nsf.gov/awardsearch/showAward?AWD_ID={source_identifier}",
            title=title,
            status=n.status_from_dates(end_date),
            funding_organization_name="National Science Foundation",
            funding_organization_code="NSF",
            currency="USD",
            funding_amount_min=n.normalize_amount(raw.get("fundsObligatedAmt")),
            funding_amount_max=total,
            total_funding_available=total,
            posted_date=n.normalize_date(raw.get("date")),
            start_date=n.normalize_date(raw.get("startDate")),
            end_date=end_date,
            grant_type="Research Grant",
            funding_instrument=raw.get("fundProgramName"),
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=description,
            expected_results=n.clean_text(raw.get("projectOutComesReport")),
            additional_information={
                "program_name": raw.get("fundProgramName"),
                "award_id": source_identifier,
                "awardee": raw.get("awardeeName"),
            },
        )

        contacts = []
        if raw.get("poName") or raw.get("poEmail"):
            contacts.append(GrantContactData(
                contact_type=ContactType.PROGRAM,
                contact_name=raw.get("poName"),
                contact_title="Program Officer",
                email=raw.get("poEmail"),
                phone=raw.get("poPhone"),
                organization="National Science Foundation",
            ))
        if pi_name or raw.get("piEmail"):
            contacts.append(GrantContactData(
                contact_type=ContactType.TECHNICAL,
                contact_name=pi_name or None,
                contact_title="Principal Investigator",
                email=raw.get("piEmail"),
                organization=raw.get("awardeeName"),
                display_order=len(contacts),
            ))
        for copi in n.as_list(raw.get("coPDPI")):
            # Either {"firstName", "lastName", "email"} or "First Last ~000123"
            if isinstance(copi, dict):
                name = f"{copi.get('firstName') or ''} {copi.get('lastName') or ''}".strip()
                email = copi.get("email")
            else:
                name, email = str(copi).split("~")[0].strip(), None
            if name or email:
                contacts.append(GrantContactData(
                    contact_type=ContactType.TECHNICAL,
                    contact_name=name or None,
                    contact_title="Co-Principal Investigator",
                    email=email,
                    display_order=len(contacts),
                ))

        locations = []
        if raw.get("awardeeStateCode"):
            locations.append(GrantLocationData(
                location_type=LocationType.TARGET,
                country_code="US",
                state_province=raw.get("awardeeStateCode"),
                city=raw.get("awardeeCity"),
                postal_code=raw.get("awardeeZipCode"),
            ))

        return NormalizedGrantData(
            grant=grant,
            details=details,
            categories=n.categories_from(raw.get("fundProgramName"), CategoryType.RESEARCH_AREA),
            keywords=n.extract_keywords(description, title),
            contacts=contacts,
            locations=locations,
        )
