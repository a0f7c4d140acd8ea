"""
Federal Register documents API: funding notices published ahead of or
alongside formal opportunities
"""

from typing import List, Dict, Any, Optional
import re
from ingestion.base import ProviderClient
from schemas.normalized import NormalizedGrant, NormalizedGrantData, GrantDetailsData
from schemas.sync import PageRequest
from models.base import GrantStatus, CategoryType
import logging

logger = logging.getLogger(__name__)

SEARCH_TERM = 'grant OR "funding opportunity" OR "cooperative agreement"'

_AMOUNT_RE = re.compile(r"\$[\d,]+(?:\.\d{2})?(?:\s*(?:million|billion))?", re.IGNORECASE)
_DEADLINE_RES = [
    re.compile(r"deadline[:\s]+([A-Za-z]+ \d{1,2},? \d{4})", re.IGNORECASE),
    re.compile(r"due date[:\s]+([A-Za-z]+ \d{1,2},? \d{4})", re.IGNORECASE),
    re.compile(r"applications? (?:are )?due[:\s]+(?:on or before )?([A-Za-z]+ \d{1,2},? \d{4})", re.IGNORECASE),
]


class FederalRegisterClient(ProviderClient):
    """
    GET with page/per_page and bracketed conditions[...] filters.

    Notices carry no status, deadline or amount fields; those are read
    from the title and abstract when present.
    """

    name = "federal_register"
    display_name = "Federal Register"
    base_url = "https://www.federalregister.gov/api/v1"
    page_size = 100

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "conditions[term]": request.filters.get("term", SEARCH_TERM),
            "conditions[type][]": "NOTICE",
            "per_page": request.limit,
            "page": request.page,
            "order": "newest",
        }
        since = request.posted_since or request.updated_since
        if since:
            params["conditions[publication_date][gte]"] = since.strftime("%Y-%m-%d")
        for index, agency in enumerate(request.filters.get("agencies", [])):
            params[f"conditions[agencies][{index}]"] = agency

        data = await self.get_json("/documents.json", params=params)
        return (data or {}).get("results") or []

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        return raw.get("document_number")

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        return raw.get("title")

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        agencies = [a for a in n.as_list(raw.get("agencies")) if isinstance(a, dict)]
        lead = agencies[0] if agencies else {}
        description = n.clean_text(n.first(raw, "abstract", "excerpts")) or ""

        total = None
        amount_match = _AMOUNT_RE.search(description)
        if amount_match:
            total = n.normalize_amount(amount_match.group(0))

        deadline = None
        for pattern in _DEADLINE_RES:
            match = pattern.search(description)
            if match:
                deadline = n.normalize_date(match.group(1))
                break

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            source_url=raw.get("html_url"),
            title=title,
            status=self._status(title, description),
            funding_organization_name=lead.get("name") or lead.get("raw_name") or "Federal Agency",
            funding_organization_code=str(lead.get("id") or lead.get("slug") or "")[:100] or None,
            currency="USD",
            total_funding_available=total,
            posted_date=n.normalize_date(raw.get("publication_date")),
            application_deadline=deadline,
            grant_type="Funding Announcement",
            funding_instrument=raw.get("subtype") or raw.get("type"),
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=description or None,
            additional_information={
                "document_number": source_identifier,
                "document_type": raw.get("type"),
                "pdf_url": raw.get("pdf_url"),
                "json_url": raw.get("json_url"),
                "docket_ids": raw.get("docket_ids"),
            },
        )

        return NormalizedGrantData(
            grant=grant,
            details=details,
            categories=n.categories_from(agencies, CategoryType.TOPIC, name_key="name", code_key="slug"),
            keywords=n.extract_keywords(description, title),
            eligibility=n.parse_eligibility(description),
        )

    @staticmethod
    def _status(title: str, description: str) -> GrantStatus:
        text = f"{title} {description}".lower()
        if any(p in text for p in ("notice of funding opportunity", "applications are now being accepted", "accepting applications")):
            return GrantStatus.ACTIVE
        if any(p in text for p in ("forecast", "anticipated", "upcoming")):
            return GrantStatus.FORECASTED
        if "deadline has passed" in text or "closed" in text:
            return GrantStatus.CLOSED
        # Notices usually precede the formal opportunity
        return GrantStatus.FORECASTED
