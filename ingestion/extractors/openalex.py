"""
OpenAlex works API: publications that acknowledge a funder, recorded as
the grants behind them
"""

from typing import List, Dict, Any, Optional, Tuple
import re
from ingestion.base import ProviderClient
from schemas.normalized import NormalizedGrant, NormalizedGrantData, GrantDetailsData, GrantLocationData
from schemas.sync import PageRequest
from models.base import CategoryType, LocationType
from core.config import settings
import logging

logger = logging.getLogger(__name__)

DEFAULT_FILTER = "has_fulltext:true,publication_year:>2020"
SEARCH_TERM = 'grant OR funding OR "supported by" OR "funded by"'
MIN_CONCEPT_SCORE = 0.3
MAX_CONCEPTS = 5

_FUNDER_RES = [
    re.compile(r"(?:funded|supported) by (?:the )?([A-Z][A-Za-z\s&]+?)(?:\s*\(|,|\.|$)"),
    re.compile(r"([A-Z][A-Za-z\s&]+?) (?:grant|award|contract)"),
    re.compile(r"\b(NSF|NIH|DOE|NASA|DARPA|ONR|AFOSR|ARO) grant", re.IGNORECASE),
]
_GRANT_NUMBER_RES = [
    re.compile(r"(?:grant|award|contract)\s*(?:no\.?|number|#)?\s*([A-Z0-9-]*\d[A-Z0-9-]*)", re.IGNORECASE),
    re.compile(r"\b([A-Z]{2,4}-?\d{2,}-?\d{3,})\b"),
]


class OpenAlexClient(ProviderClient):
    """
    GET with 1-based page and per_page (at most 200) in the polite pool
    (mailto parameter).

    Response shape: {"meta": {"count": N}, "results": [...]}

    The since cutoff is added to the filter as from_publication_date.
    Works without an identifiable funder are skipped.
    """

    name = "openalex"
    display_name = "OpenAlex"
    base_url = "https://api.openalex.org"
    page_size = 100
    rate_limit = 100000

    async def fetch_page(self, request: PageRequest) -> List[Dict[str, Any]]:
        work_filter = request.filters.get("filter", DEFAULT_FILTER)
        since = request.posted_since or request.updated_since
        if since:
            work_filter = f"{work_filter},from_publication_date:{since.strftime('%Y-%m-%d')}"
        params: Dict[str, Any] = {
            "filter": work_filter,
            "search": request.filters.get("search", SEARCH_TERM),
            "page": request.page,
            "per_page": request.limit,
            "mailto": settings.CONTACT_EMAIL,
        }

        data = await self.get_json("/works", params=params)
        return (data or {}).get("results") or []

    def record_id(self, raw: Dict[str, Any]) -> Optional[str]:
        funder, _ = grant_info(raw)
        if not funder or not raw.get("id"):
            return None
        return f"{raw['id']}_{funder}"

    def record_title(self, raw: Dict[str, Any]) -> Optional[str]:
        funder, _ = grant_info(raw)
        work_title = self.normalizer.first(raw, "title", "display_name")
        if not funder or not work_title:
            return None
        return f"{funder} Grant - {work_title}"

    def map_record(self, raw: Dict[str, Any], source_identifier: str, title: str) -> NormalizedGrantData:
        n = self.normalizer
        funder, grant_numbers = grant_info(raw)
        work_title = n.first(raw, "title", "display_name")
        abstract = n.clean_text(abstract_text(raw))

        grant = NormalizedGrant(
            data_source_id=self.data_source_id,
            source_identifier=source_identifier,
            source_url=raw.get("doi") or raw.get("id"),
            title=title,
            funding_organization_name=funder,
            posted_date=n.normalize_date(raw.get("publication_date")),
            grant_type="Research Grant",
            funding_instrument="Research Grant",
            raw_data=raw,
        )

        details = GrantDetailsData(
            description=abstract or f"Research grant mentioned in: {work_title}",
            abstract=abstract,
            additional_information={
                "work_id": raw.get("id"),
                "doi": raw.get("doi"),
                "grant_numbers": grant_numbers,
                "publication_title": work_title,
                "publication_date": raw.get("publication_date"),
                "cited_by_count": raw.get("cited_by_count"),
            },
        )

        categories = []
        for concept in n.as_list(raw.get("concepts"))[:MAX_CONCEPTS]:
            if not isinstance(concept, dict) or (concept.get("score") or 0) <= MIN_CONCEPT_SCORE:
                continue
            ancestors = [a.get("display_name") for a in n.as_list(concept.get("ancestors")) if isinstance(a, dict)]
            categories += n.categories_from(
                concept.get("display_name"),
                CategoryType.RESEARCH_AREA,
                hierarchy=" > ".join(filter(None, ancestors)) or None
            )

        topics = [t.get("display_name") for t in n.as_list(raw.get("topics")) if isinstance(t, dict)]

        locations = []
        seen = set()
        for authorship in n.as_list(raw.get("authorships")):
            if not isinstance(authorship, dict):
                continue
            for institution in n.as_list(authorship.get("institutions")):
                country = institution.get("country_code") if isinstance(institution, dict) else None
                if country and country not in seen:
                    seen.add(country)
                    locations.append(GrantLocationData(
                        location_type=LocationType.TARGET,
                        country_code=country,
                    ))

        return NormalizedGrantData(
            grant=grant,
            details=details,
            categories=categories,
            keywords=n.rank_keywords(topics, n.extract_keywords(abstract, work_title)),
            locations=locations,
        )


def grant_info(work: Dict[str, Any]) -> Tuple[Optional[str], List[str]]:
    """
    Funder name and grant numbers of a work.

    Structured grants win; otherwise both are read from the title and
    abstract.
    """
    funder = None
    numbers: List[str] = []
    for entry in work.get("grants") or []:
        if not isinstance(entry, dict):
            continue
        funder = entry.get("funder_display_name") or funder
        if entry.get("award_id"):
            numbers.append(entry["award_id"])
    if funder:
        return funder, numbers

    text = f"{work.get('title') or ''} {abstract_text(work) or ''}"
    for pattern in _FUNDER_RES:
        match = pattern.search(text)
        if match:
            funder = match.group(1).strip()
            break
    if not funder:
        return None, []

    for pattern in _GRANT_NUMBER_RES:
        numbers.extend(pattern.findall(text))
    return funder, list(dict.fromkeys(numbers))


def abstract_text(work: Dict[str, Any]) -> Optional[str]:
    """Plain abstract, or one rebuilt from abstract_inverted_index"""
    if work.get("abstract"):
        return work["abstract"]
    index = work.get("abstract_inverted_index")
    if not isinstance(index, dict) or not index:
        return None
    positions = [(pos, word) for word, places in index.items() for pos in places]
    return " ".join(word for _, word in sorted(positions))
