"""
World Bank projects API (v2)
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
    "dropped": GrantStatus.CLOSED,
    "completed": GrantStatus.CLOSED,
    "pipeline": GrantStatus.FORECASTED,
}

GRANT_INSTRUMENTS = (
    "grant",
    "development policy grant",
    "emergency recovery grant",
    "trust fund grant",
)


class WorldBankClient(ProviderClient):
    """
    GET with os (offset) and rows.

    The API returns projects either as {"projects": {"P123": {...}, ...}}
    or as {"projects": {"project": [...]}}; both are accepted.
    """

    name = "world_bank"
    display_name = "World Bank Projects"
    base_url = "https://search.worldbank.org/api/v2"
    page_size = 500

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "format": "json",
            "apilang": "en",
            "os": request.offset,
            "rows": request.limit,
            "srt": "boardapprovaldate",
            "order": "desc",
        }
        if request.status:
            params["status_exact"] = request.status
        if request.updated_since:
            params["strdate"] = request.updated_since.strftime("%Y-%m-%d")
        params.update(request.filters)

        data = await self.get_json("/projects", params=params)
        return self._projects(data)

    @staticmethod
    def _projects(data: Any) -> List[Dict[str, Any]]:
        projects = (data or {}).get("projects") or {}
        if isinstance(projects, list):
            return projects
        if isinstance(projects.get("project"), list):
            return projects["project"]
        return [p for p in projects.values() if isinstance(p, dict)]

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        return self.normalizer.first(raw, "id", "projectid")

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        return raw.get("project_name")

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        instrument = _text(raw.get("lendinginstr"))
        is_grant = bool(instrument) and any(g in instrument.lower() for g in GRANT_INSTRUMENTS)
        total = n.normalize_amount(raw.get("totalamt"))
        description = n.clean_text(_text(raw.get("project_abstract")) or _text(raw.get("pdo")))

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            source_url=raw.get("url") or f"https://projects.worldbank.org/en/projects-operations/project-detail/{source_identifier}",
            title=title,
            status=n.normalize_status(raw.get("status"), STATUS_TABLE),
            funding_organization_name="World Bank",
            funding_organization_code="WB",
            currency="USD",
            funding_amount_min=n.normalize_amount(raw.get("totalcommamt")),
            funding_amount_max=total,
            total_funding_available=total,
            posted_date=n.normalize_date(raw.get("boardapprovaldate")),
            start_date=n.normalize_date(raw.get("boardapprovaldate")),
            end_date=n.normalize_date(raw.get("closingdate")),
            grant_type="Development Grant" if is_grant else "Development Financing",
            funding_instrument=instrument,
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=description,
            purpose=n.clean_text(_text(raw.get("pdo"))),
            additional_information={
                "project_id": source_identifier,
                "lending_instrument": instrument,
                "product_line": raw.get("productlinetype") or raw.get("productline"),
                "borrower": raw.get("borrower"),
                "implementing_agency": raw.get("impagency"),
            },
        )

        categories = (
            n.categories_from(_names(raw.get("sector_exact") or raw.get("sector")), CategoryType.SECTOR)
            + n.categories_from(_names(raw.get("theme_exact") or raw.get("theme")), CategoryType.THEME)
            + n.categories_from(_names(raw.get("goal")), CategoryType.SDG)
        )

        locations = []
        codes = n.as_list(raw.get("countrycode"))
        names = n.as_list(raw.get("countryname") or raw.get("countryshortname"))
        for index, code in enumerate(codes):
            locations.append(GrantLocationData(
                location_type=LocationType.TARGET,
                country_code=str(code)[:10],
                region=_text(raw.get("regionname")),
                geographic_description=names[index] if index < len(names) else None,
            ))

        contacts = []
        if raw.get("teamleadname"):
            contacts.append(GrantContactData(
                contact_type=ContactType.PROGRAM,
                contact_name=_text(raw.get("teamleadname")),
                contact_title="Team Lead",
                organization="World Bank",
            ))

        eligibility = [n.implied_eligibility(
            "Government",
            "National, regional, or local government entities",
        )]

        return NormalizedGrantData(
            grant=grant,
            details=details,
            categories=categories,
            keywords=n.extract_keywords(description, title),
            contacts=contacts,
            eligibility=eligibility,
            locations=locations,
        )


def _text(value: Any) -> Optional[str]:
    """Some fields arrive as {"cdata": "..."} wrappers or single-item lists"""
    if isinstance(value, dict):
        value = value.get("cdata") or value.get("Name") or value.get("name")
    if isinstance(value, list):
        value = value[0] if value else None
    return str(value) if value not in (None, "") else None


def _names(value: Any) -> List[str]:
    names = []
    for item in value if isinstance(value, list) else ([value] if value else []):
        name = _text(item)
        if name:
            names.append(name)
    return names
