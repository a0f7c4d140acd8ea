"""
USAspending.gov spending_by_award search: federal assistance awards
"""

from typing import List, Dict, Any, Optional
from datetime import datetime, timedelta
import re
from ingestion.base import ProviderClient
from schemas.normalized import NormalizedGrant, NormalizedGrantData, GrantDetailsData
from schemas.sync import PageRequest
from models.base import CategoryType
import logging

logger = logging.getLogger(__name__)

GRANT_AWARD_TYPES = ["02", "03", "04", "05"]

FIELDS = [
    "Award ID", "Recipient Name", "Award Amount", "Total Outlays",
    "Start Date", "End Date", "Award Type", "Awarding Agency",
    "Awarding Sub Agency", "recipient_id", "Description", "cfda_number", "cfda_title",
]

AWARD_TYPES = {
    "02": "Block Grant",
    "03": "Formula Grant",
    "04": "Project Grant",
    "05": "Cooperative Agreement",
    "06": "Direct Payment",
    "07": "Direct Loan",
    "08": "Guaranteed/Insured Loan",
    "09": "Insurance",
    "10": "Direct Payment with Unrestricted Use",
    "11": "Other Financial Assistance",
}

_CFDA_RE = re.compile(r"\b(\d{2}\.\d{3})\b")


class UsaSpendingClient(ProviderClient):
    """
    POST JSON body with 1-based page and limit, sorted by award amount.

    Response shape: {"results": [...], "page_metadata": {"hasNext": bool}}

    The since cutoff becomes the start of the time_period filter; without
    one the window covers the last year.
    """

    name = "usaspending"
    display_name = "USAspending.gov"
    base_url = "https://api.usaspending.gov/api/v2"
    page_size = 100

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        now = datetime.utcnow()
        since = request.updated_since or request.posted_since or now - timedelta(days=365)
        filters: Dict[str, Any] = {
            "award_type_codes": GRANT_AWARD_TYPES,
            "time_period": [{
                "start_date": since.strftime("%Y-%m-%d"),
                "end_date": now.strftime("%Y-%m-%d"),
            }],
        }
        filters.update(request.filters)
        body = {
            "filters": filters,
            "fields": FIELDS,
            "page": request.page,
            "limit": request.limit,
            "sort": "Award Amount",
            "order": "desc",
        }

        data = await self.post_json("/search/spending_by_award/", body)
        return (data or {}).get("results") or []

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        return self.normalizer.first(raw, "Award ID", "award_id")

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        return self.normalizer.first(raw, "Description", "cfda_title") or "Federal Grant Award"

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        amount = n.normalize_amount(raw.get("Award Amount"))
        end_date = n.normalize_date(raw.get("End Date"))
        description = n.clean_text(raw.get("Description"))
        award_type = raw.get("Award Type")
        sub_agency = raw.get("Awarding Sub Agency")

        cfda_number = raw.get("cfda_number")
        if not cfda_number and description:
            match = _CFDA_RE.search(description)
            cfda_number = match.group(1) if match else None

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            source_url=f"https://www.usaspending.gov/award/{source_identifier}",
            title=title,
            status=n.status_from_dates(end_date),
            funding_organization_name=raw.get("Awarding Agency"),
            funding_organization_code=str(sub_agency)[:100] if sub_agency else None,
            currency="USD",
            funding_amount_min=amount,
            funding_amount_max=amount,
            total_funding_available=n.normalize_amount(raw.get("Total Outlays")),
            start_date=n.normalize_date(raw.get("Start Date")),
            end_date=end_date,
            grant_type=AWARD_TYPES.get(award_type, "Grant"),
            funding_instrument=award_type,
            activity_code=cfda_number,
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=description,
            additional_information={
                "award_id": source_identifier,
                "recipient_name": raw.get("Recipient Name"),
                "recipient_id": raw.get("recipient_id"),
                "cfda_number": cfda_number,
                "cfda_title": raw.get("cfda_title"),
                "award_type": award_type,
                "total_outlays": raw.get("Total Outlays"),
            },
        )

        categories = []
        if cfda_number:
            categories += n.categories_from(
                [{"name": raw.get("cfda_title") or f"CFDA {cfda_number}", "code": cfda_number}],
                CategoryType.CFDA,
                code_key="code"
            )
        categories += n.categories_from(raw.get("Awarding Agency"), CategoryType.TOPIC)

        return NormalizedGrantData(
            grant=grant,
            details=details,
            categories=categories,
            keywords=n.extract_keywords(description, title),
        )
