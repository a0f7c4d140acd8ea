"""
Grants.gov opportunity search (search2 JSON API)
"""

from typing import List, Dict, Any, Optional
from ingestion.base import ProviderClient
from schemas.normalized import (
    NormalizedGrant, NormalizedGrantData, GrantDetailsData, GrantContactData, GrantEligibilityData
)
from schemas.sync import PageRequest
from models.base import GrantStatus, CategoryType, ContactType, EligibilityType
import logging

logger = logging.getLogger(__name__)

STATUS_TABLE = {
    "posted": GrantStatus.ACTIVE,
    "forecasted": GrantStatus.FORECASTED,
    "closed": GrantStatus.CLOSED,
    "archived": GrantStatus.ARCHIVED,
}

FUNDING_INSTRUMENTS = {
    "G": "Grant",
    "CA": "Cooperative Agreement",
    "PC": "Procurement Contract",
    "O": "Other",
}


class GrantsGovClient(ProviderClient):
    """
    POST search with startRecordNum/rows paging.

    Response shape: {"data": {"hitCount": N, "oppHits": [...]}}

    search2 has no posted-since or modified-since field, so since cutoffs
    are not sent; newest-first ordering keeps incremental runs on the
    recently opened opportunities.
    """

    name = "grants_gov"
    display_name = "Grants.gov"
    base_url = "https://api.grants.gov/v1/api"
    page_size = 250
    supports_since = False

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        body: Dict[str, Any] = {
            "startRecordNum": request.offset,
            "rows": request.limit,
            "oppStatuses": request.status or "forecasted|posted",
            "sortBy": "openDate|desc",
        }
        body.update(request.filters)

        data = await self.post_json("/search2", body)
        hits = (data or {}).get("data", {}).get("oppHits") or []
        logger.debug(f"grants_gov offset={request.offset} returned {len(hits)} hits")
        return hits

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        return self.normalizer.first(raw, "id", "number")

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        return raw.get("title")

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        cfda_list = raw.get("cfdaList") or raw.get("alnist") or []
        description = n.clean_text(n.first(raw, "description", "synopsis"))

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            source_url=f"https://www.grants.gov/search-results-detail/{source_identifier}",
            title=title,
            status=n.normalize_status(raw.get("oppStatus") or "posted", STATUS_TABLE),
            funding_organization_name=n.first(raw, "agency", "agencyName"),
            funding_organization_code=raw.get("agencyCode"),
            currency="USD",
            funding_amount_min=n.normalize_amount(raw.get("awardFloor")),
            funding_amount_max=n.normalize_amount(raw.get("awardCeiling")),
            total_funding_available=n.normalize_amount(raw.get("estimatedFunding")),
            expected_awards_count=n.to_int(raw.get("expectedNumberOfAwards")),
            posted_date=n.normalize_date(raw.get("openDate")),
            application_deadline=n.normalize_date(raw.get("closeDate")),
            last_updated_date=n.normalize_date(n.first(raw, "modifiedDate", "lastUpdatedDate")),
            grant_type=raw.get("docType") or "Grant",
            funding_instrument=self._funding_instrument(raw.get("fundingInstruments")),
            activity_code=cfda_list[0] if cfda_list else None,
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=description,
            additional_information={
                "opportunity_number": raw.get("number"),
                "document_type": raw.get("docType"),
                "cfda_list": cfda_list,
                "funding_categories": raw.get("fundingCategories") or [],
            },
        )

        categories = n.categories_from(
            raw.get("fundingCategories"), CategoryType.THEME, name_key="description", code_key="code"
        )
        categories += [
            c.model_copy(update={"category_name": f"CFDA {c.category_name}", "category_code": c.category_name})
            for c in n.categories_from(cfda_list, CategoryType.CFDA)
        ]

        eligibility = []
        for item in n.as_list(raw.get("eligibilities")):
            if isinstance(item, dict):
                eligibility.append(GrantEligibilityData(
                    eligibility_type=EligibilityType.ORGANIZATION_TYPE,
                    eligibility_code=item.get("code"),
                    eligibility_value=item.get("description") or item.get("code"),
                ))
            elif item:
                eligibility.append(GrantEligibilityData(
                    eligibility_type=EligibilityType.ORGANIZATION_TYPE,
                    eligibility_value=str(item),
                ))
        if not eligibility:
            eligibility = n.parse_eligibility(raw.get("applicantEligibilityDesc"))

        contacts = []
        if raw.get("officeContactEmail") or raw.get("agencyContactEmail"):
            contacts.append(GrantContactData(
                contact_type=ContactType.GENERAL,
                email=n.first(raw, "officeContactEmail", "agencyContactEmail"),
                phone=n.first(raw, "officeContactPhone", "agencyContactPhone"),
                organization=n.first(raw, "agencyName", "agency"),
            ))

        return NormalizedGrantData(
            grant=grant,
            details=details,
            categories=categories,
            keywords=n.extract_keywords(description, title),
            contacts=contacts,
            eligibility=eligibility,
        )

    @staticmethod
    def _funding_instrument(types: Any) -> str:
        if not types:
            return "Grant"
        names = []
        for item in GrantsGovClient.normalizer.as_list(types):
            code = item.get("code") if isinstance(item, dict) else item
            names.append(FUNDING_INSTRUMENTS.get(code, str(code)))
        return ", ".join(names)

