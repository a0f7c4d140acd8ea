"""
New York State Open Data (data.ny.gov) grant disclosure datasets
"""

from typing import List, Dict, Any, Optional
from ingestion.base import ProviderClient
from schemas.normalized import NormalizedGrant, NormalizedGrantData, GrantDetailsData, GrantLocationData
from schemas.sync import PageRequest
from models.base import CategoryType, LocationType
from core.exceptions import ConfigurationError
import logging

logger = logging.getLogger(__name__)

LOCAL_DEV_GRANTS = "j5ab-5nj2"
EFFICIENCY_GRANTS = "fc8g-rgwz"
ESTUARY_GRANTS = "a828-8j32"

# dataset id -> (program name, grant type, default purpose)
DATASETS = {
    LOCAL_DEV_GRANTS: (
        "Local Development Corporation Grants", "Economic Development Grant", "Local development grant"
    ),
    EFFICIENCY_GRANTS: (
        "Local Government Efficiency Program", "Government Efficiency Grant", "Government efficiency improvement"
    ),
    ESTUARY_GRANTS: (
        "Hudson River Estuary Grants", "Environmental Grant", "Environmental protection and restoration"
    ),
}


class NyStateClient(ProviderClient):
    """
    Socrata rows.json GET with $limit/$offset/$order over one dataset.

    Response shape: {"meta": {...}, "data": [[...], ...]}. Rows are
    positional arrays; fetch_page turns each into a named dict so the
    page length is preserved. The since cutoff becomes a $where clause on
    fiscal_year_end_date.
    """

    name = "ny_state"
    display_name = "New York State Open Data"
    base_url = "https://data.ny.gov/api/views"
    page_size = 1000

    def __init__(self, *args, dataset_id: str = LOCAL_DEV_GRANTS, **kwargs):
        super().__init__(*args, **kwargs)
        if dataset_id not in DATASETS:
            raise ConfigurationError(
                f"Unknown NY State dataset: {dataset_id}",
                context={"source_name": self.name, "known": sorted(DATASETS)}
            )
        self.dataset_id = dataset_id

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "$limit": request.limit,
            "$offset": request.offset,
            "$order": "fiscal_year_end_date DESC",
        }
        since = request.updated_since or request.posted_since
        if since:
            params["$where"] = f"fiscal_year_end_date > '{since.strftime('%Y-%m-%d')}'"

        data = await self.get_json(f"/{self.dataset_id}/rows.json", params=params)
        rows = (data or {}).get("data") or []
        return [self.parse_row(row) for row in rows]

    def parse_row(self, row: Any) -> Dict[str, Any]:
        """Named fields for a positional row of the client's dataset"""
        if not isinstance(row, list):
            return {}

        def cell(index: int) -> Any:
            return row[index] if len(row) > index else None

        program, _, default_purpose = DATASETS[self.dataset_id]

        if self.dataset_id == LOCAL_DEV_GRANTS:
            return {
                "dataset_id": self.dataset_id,
                "authority": cell(8),
                "fiscal_year": cell(9),
                "has_grants": cell(10) == "Yes",
                "fund_source": cell(11),
                "recipient_name": cell(12),
                "recipient_city": cell(13),
                "recipient_state": cell(14),
                "recipient_zip": cell(15),
                "amount": cell(16),
                "purpose": cell(17) or default_purpose,
            }
        return {
            "dataset_id": self.dataset_id,
            "authority": program,
            "fiscal_year": cell(0),
            "has_grants": True,
            "recipient_name": cell(1),
            "amount": cell(2),
            "purpose": cell(3) or default_purpose,
        }

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        if not raw.get("has_grants") or not raw.get("recipient_name"):
            return None
        return f"{raw['dataset_id']}_{raw['recipient_name']}_{raw.get('fiscal_year')}"

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        if not raw.get("authority") or not raw.get("recipient_name"):
            return None
        return f"{raw['authority']} Grant to {raw['recipient_name']}"

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        program, grant_type, _ = DATASETS.get(raw.get("dataset_id"), DATASETS[LOCAL_DEV_GRANTS])
        amount = n.normalize_amount(raw.get("amount"))
        end_date = n.normalize_date(raw.get("fiscal_year"))
        description = n.clean_text(raw.get("purpose"))

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            source_url=f"https://data.ny.gov/d/{raw.get('dataset_id')}",
            title=title,
            status=n.status_from_dates(end_date),
            funding_organization_name=raw.get("authority"),
            funding_organization_code="NYS",
            currency="USD",
            funding_amount_min=amount,
            funding_amount_max=amount,
            end_date=end_date,
            grant_type=grant_type,
            funding_instrument="State Grant",
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=description,
            additional_information={
                "program": program,
                "fund_source": raw.get("fund_source"),
                "fiscal_year": raw.get("fiscal_year"),
                "dataset_id": raw.get("dataset_id"),
                "recipient_name": raw.get("recipient_name"),
            },
        )

        locations = []
        if raw.get("recipient_city") or raw.get("recipient_state"):
            locations.append(GrantLocationData(
                location_type=LocationType.TARGET,
                country_code="US",
                state_province=raw.get("recipient_state") or "NY",
                city=raw.get("recipient_city"),
                postal_code=raw.get("recipient_zip"),
            ))

        return NormalizedGrantData(
            grant=grant,
            details=details,
            categories=n.categories_from([program, raw.get("authority")], CategoryType.TOPIC),
            keywords=n.rank_keywords(["New York State"], n.extract_keywords(description, title)),
            locations=locations,
        )
