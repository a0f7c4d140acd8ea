"""
EU Funding & Tenders Portal (SEDIA search API)
"""

from typing import List, Dict, Any, Optional
from ingestion.base import ProviderClient
from schemas.normalized import NormalizedGrant, NormalizedGrantData, GrantDetailsData, GrantLocationData
from schemas.sync import PageRequest
from models.base import GrantStatus, CategoryType, LocationType
from core.config import settings
import json
import re
import logging

logger = logging.getLogger(__name__)

# Portal status codes and their labels
STATUS_TABLE = {
    "open": GrantStatus.ACTIVE,
    "31094502": GrantStatus.ACTIVE,
    "forthcoming": GrantStatus.FORECASTED,
    "31094501": GrantStatus.FORECASTED,
    "closed": GrantStatus.CLOSED,
    "31094503": GrantStatus.CLOSED,
}

STATUS_FILTERS = {
    "open": "31094502",
    "forthcoming": "31094501",
    "closed": "31094503",
}

_EUR_RE = re.compile(r"EUR\s*([\d.,]+\s*(?:million|thousand)?)", re.IGNORECASE)


class EuFundingPortalClient(ProviderClient):
    """
    GET with pageNumber (1-based) and pageSize, keyed with apiKey.

    Search hits carry most fields in a metadata dict of single-item lists.
    The search endpoint has no modified-since or publication-date
    parameter, so since cutoffs are not sent and incremental runs re-read
    the first pages.
    """

    name = "eu_funding_portal"
    display_name = "EU Funding & Tenders Portal"
    base_url = "https://api.tech.ec.europa.eu/search-api/prod/rest"
    page_size = 50
    supports_since = False

    def __init__(self, *args, api_key: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.api_key = api_key or settings.EU_FUNDING_API_KEY

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "apiKey": self.api_key,
            "text": request.filters.get("text", "*"),
            "pageNumber": request.page,
            "pageSize": request.limit,
            "type": "FUNDING",
        }
        if request.status:
            params["status"] = STATUS_FILTERS.get(request.status.lower(), request.status)

        data = await self.get_json("/search", params=params)
        return (data or {}).get("results") or []

    @staticmethod
    def meta(raw: Dict[str, Any], key: str) -> Any:
        """Top-level field, or the first value of metadata[key]"""
        value = raw.get(key)
        if value not in (None, "", []):
            return value
        values = (raw.get("metadata") or {}).get(key)
        if isinstance(values, list):
            return values[0] if values else None
        return values

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        return self.meta(raw, "identifier") or raw.get("reference") or raw.get("id")

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        return self.meta(raw, "title") or raw.get("summary") or self.meta(raw, "topicTitle")

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        amount = self._funding_amount(raw)
        description = n.clean_text(self.meta(raw, "descriptionByte") or self.meta(raw, "description"))
        programme = self.meta(raw, "programmeName") or self.meta(raw, "frameworkProgramme")

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            source_url=raw.get("url") or (
                "https://ec.europa.eu/info/funding-tenders/opportunities/portal/screen/"
                f"opportunities/topic-details/{source_identifier}"
            ),
            title=title,
            status=n.normalize_status(self.meta(raw, "status"), STATUS_TABLE),
            funding_organization_name="European Commission",
            funding_organization_code=str(programme)[:100] if programme else None,
            currency="EUR",
            funding_amount_max=amount,
            total_funding_available=amount,
            posted_date=n.normalize_date(self.meta(raw, "startDate") or self.meta(raw, "openingDate")),
            application_deadline=n.normalize_date(self.meta(raw, "deadlineDate")),
            grant_type=self.meta(raw, "typesOfAction") or "Research and Innovation",
            funding_instrument=self.meta(raw, "fundingScheme"),
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=description,
            abstract=n.clean_text(self.meta(raw, "callAbstract")),
            expected_results=n.clean_text(self.meta(raw, "expectedImpact")),
            additional_information={
                "call_identifier": self.meta(raw, "callIdentifier"),
                "programme": programme,
            },
        )

        categories = (
            n.categories_from(self.meta(raw, "destinationGroup"), CategoryType.THEME)
            + n.categories_from(programme, CategoryType.TOPIC)
        )

        provided = (raw.get("metadata") or {}).get("keywords") or raw.get("keywords")
        if isinstance(provided, str):
            provided = provided.split(",")
        keywords = n.rank_keywords(provided, n.extract_keywords(description, title))

        countries = n.as_list(raw.get("countriesEligible") or (raw.get("metadata") or {}).get("countriesEligible"))
        if countries:
            locations = [
                GrantLocationData(location_type=LocationType.ELIGIBLE, country_code=str(c)[:10])
                for c in countries
            ]
        else:
            locations = [GrantLocationData(
                location_type=LocationType.ELIGIBLE,
                region="European Union",
                geographic_description="Open to EU member states and associated countries",
            )]

        return NormalizedGrantData(
            grant=grant,
            details=details,
            categories=categories,
            keywords=keywords,
            locations=locations,
        )

    def _funding_amount(self, raw: Dict[str, Any]) -> Optional[float]:
        """Procedure value, then summed budget overview, then a EUR mention in the additional info"""
        n = self.normalizer

        value = n.normalize_amount(self.meta(raw, "cftEstimatedTotalProcedureValue"))
        if value:
            return value

        overview = self.meta(raw, "budgetOverview")
        if overview:
            try:
                budget = json.loads(overview) if isinstance(overview, str) else overview
                total = 0.0
                for actions in (budget.get("budgetTopicActionMap") or {}).values():
                    for action in actions or []:
                        for amount in (action.get("budgetYearMap") or {}).values():
                            total += n.normalize_amount(amount) or 0.0
                if total > 0:
                    return total
            except (ValueError, AttributeError, TypeError):
                logger.debug(f"Unparseable budget overview for {self.record_id(raw)}")

        info = self.meta(raw, "additionalInfos")
        if info:
            match = _EUR_RE.search(str(info))
            if match:
                return n.normalize_amount(match.group(1))
        return None
