"""
Government of Canada proactive disclosure of grants and contributions
(open.canada.ca CKAN datastore, SQL endpoint)
"""

from typing import List, Dict, Any, Optional
from ingestion.base import ProviderClient
from schemas.normalized import (
    NormalizedGrant, NormalizedGrantData, GrantDetailsData, GrantEligibilityData, GrantLocationData
)
from schemas.sync import PageRequest
from models.base import CategoryType, EligibilityType, LocationType
import logging

logger = logging.getLogger(__name__)

RESOURCE_ID = "432516d7-b1db-42f7-b7e1-cbb0e6b71d2e"

AGREEMENT_TYPES = {
    "G": "Grant",
    "C": "Contribution",
    "L": "Loan",
    "S": "Subsidy",
    "O": "Other",
}


class CanadianOpenGovClient(ProviderClient):
    """
    GET datastore_search_sql; LIMIT/OFFSET are part of the SQL statement.

    Response shape: {"result": {"records": [...]}}

    Only integers and formatted dates are placed into the statement. The
    since cutoff filters on agreement_start_date.
    """

    name = "canadian_open_gov"
    display_name = "Canada Grants and Contributions"
    base_url = "https://open.canada.ca/data/api/3/action"
    page_size = 1000

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        data = await self.get_json("/datastore_search_sql", params={"sql": self.build_sql(request)})
        return ((data or {}).get("result") or {}).get("records") or []

    @staticmethod
    def build_sql(request: PageRequest) -> str:
        sql = f'SELECT * FROM "{RESOURCE_ID}" WHERE 1=1'
        if request.filters.get("year") is not None:
            sql += f" AND year >= {int(request.filters['year'])}"
        since = request.posted_since or request.updated_since
        if since:
            sql += f" AND agreement_start_date >= '{since.strftime('%Y-%m-%d')}'"
        sql += f" ORDER BY agreement_start_date DESC LIMIT {int(request.limit)} OFFSET {int(request.offset)}"
        return sql

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        if raw.get("ref_number"):
            return raw["ref_number"]
        if raw.get("fowner_org_name") and raw.get("agreement_number"):
            return f"{raw['fowner_org_name']}_{raw['agreement_number']}"
        return None

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        return self.normalizer.first(raw, "program_name_en", "program_name_fr") or "Canadian Government Grant"

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        start_date = n.normalize_date(raw.get("agreement_start_date"))
        end_date = n.normalize_date(raw.get("agreement_end_date"))
        value = n.normalize_amount(raw.get("agreement_value"))
        agreement_type = raw.get("agreement_type")
        description = n.clean_text(n.first(raw, "description_en", "description_fr", "expected_results_en"))
        purpose = n.clean_text(n.first(raw, "purpose_en", "purpose_fr"))

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            title=title,
            status=n.status_from_dates(end_date),
            funding_organization_name=n.first(raw, "fowner_org_name", "owner_org"),
            funding_organization_code=raw.get("owner_org"),
            currency="CAD",
            funding_amount_min=value,
            funding_amount_max=value,
            total_funding_available=n.normalize_amount(raw.get("total_value")),
            posted_date=start_date,
            start_date=start_date,
            end_date=end_date,
            grant_type=AGREEMENT_TYPES.get(agreement_type, agreement_type) if agreement_type else "Grant",
            funding_instrument=agreement_type,
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=description,
            purpose=purpose,
            expected_results=n.clean_text(n.first(raw, "expected_results_en", "expected_results_fr")),
            additional_information={
                "agreement_number": raw.get("agreement_number"),
                "amendment_number": raw.get("amendment_number"),
                "recipient_legal_name": raw.get("recipient_legal_name"),
                "federal_riding_name": raw.get("fed_riding_name_en"),
                "naics_identifier": raw.get("naics_identifier"),
            },
        )

        categories = n.categories_from(raw.get("program_name_en"), CategoryType.TOPIC)
        if raw.get("naics_identifier"):
            categories += n.categories_from(
                [{"name": f"NAICS {raw['naics_identifier']}", "code": raw["naics_identifier"]}],
                CategoryType.SECTOR,
                code_key="code"
            )

        locations = []
        if raw.get("recipient_province"):
            locations.append(GrantLocationData(
                location_type=LocationType.TARGET,
                country_code=raw.get("recipient_country") or "CA",
                state_province=raw.get("recipient_province"),
                city=raw.get("recipient_city"),
                postal_code=raw.get("recipient_postal_code"),
            ))

        eligibility = []
        if raw.get("recipient_type"):
            eligibility.append(GrantEligibilityData(
                eligibility_type=EligibilityType.ORGANIZATION_TYPE,
                eligibility_value=raw["recipient_type"],
                is_required=True,
            ))

        return NormalizedGrantData(
            grant=grant,
            details=details,
            categories=categories,
            keywords=n.extract_keywords(" ".join(filter(None, [description, purpose])), title),
            eligibility=eligibility,
            locations=locations,
        )
