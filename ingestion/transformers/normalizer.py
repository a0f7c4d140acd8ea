"""
Pure mapping helpers shared by every provider's transform_record
"""

from typing import Dict, Any, Optional, List, Iterable
from datetime import datetime, date, timezone
from collections import Counter
from dateutil import parser as dateparser
from schemas.normalized import (
    GrantCategoryData, GrantKeywordData, GrantEligibilityData, MAX_KEYWORDS
)
from models.base import GrantStatus, CategoryType, KeywordSource, EligibilityType
import logging
import re

logger = logging.getLogger(__name__)

# Fallback lookup used when a provider has no table of its own
COMMON_STATUS_MAP: Dict[str, GrantStatus] = {
    "open": GrantStatus.ACTIVE,
    "active": GrantStatus.ACTIVE,
    "posted": GrantStatus.ACTIVE,
    "accepting applications": GrantStatus.ACTIVE,
    "accepting proposals": GrantStatus.ACTIVE,
    "closed": GrantStatus.CLOSED,
    "awarded": GrantStatus.CLOSED,
    "completed": GrantStatus.CLOSED,
    "deadline passed": GrantStatus.CLOSED,
    "forecast": GrantStatus.FORECASTED,
    "forecasted": GrantStatus.FORECASTED,
    "upcoming": GrantStatus.FORECASTED,
    "announced": GrantStatus.FORECASTED,
    "archived": GrantStatus.ARCHIVED,
}

CURRENCY_MAP: Dict[str, str] = {
    "$": "USD",
    "US$": "USD",
    "£": "GBP",
    "€": "EUR",
    "C$": "CAD",
    "CA$": "CAD",
    "A$": "AUD",
    "¥": "JPY",
}

MAGNITUDES = {
    "k": 1_000,
    "thousand": 1_000,
    "m": 1_000_000,
    "mn": 1_000_000,
    "million": 1_000_000,
    "b": 1_000_000_000,
    "bn": 1_000_000_000,
    "billion": 1_000_000_000,
}

STOPWORDS = frozenset("""
    about above across after again against also among and any are been before
    being below between both but can could does doing down during each either
    for from further have having here how into its itself more most must not
    only other our ours out over own per same shall should some such than that
    the their them then there these they this those through under until upon
    very was were what when where which while who whom why will with within
    without would you your program programs project projects grant grants
    funding support research award awards new use used using based including
    include well may one two three
""".split())

ORGANIZATION_TYPES = [
    "nonprofit", "non-profit", "university", "college", "government",
    "state", "local", "tribal", "for-profit", "small business",
    "individual", "consortium", "public", "private",
]

TITLE_BOOST = 3
MIN_KEYWORD_LENGTH = 4

_TAG_RE = re.compile(r"<[^>]+>")
_TOKEN_RE = re.compile(r"[a-z][a-z0-9\-]*[a-z0-9]")
_MAGNITUDE_RE = re.compile(r"(\d)\s*(thousand|million|billion|bn|mn|k|m|b)\b", re.IGNORECASE)


class GrantNormalizer:
    """
    Normalize provider values into canonical representations.

    Handles:
    - Amount parsing (numbers, strings, symbols, separators, magnitude words)
    - Date parsing to naive UTC datetimes
    - Status and currency translation
    - Category, keyword and eligibility extraction

    Every helper is pure and returns None (or an empty list) for values it
    cannot interpret instead of raising.
    """

    @staticmethod
    def clean_text(value: Any) -> Optional[str]:
        """Strip markup and collapse whitespace"""
        if value is None:
            return None
        text = _TAG_RE.sub(" ", str(value))
        text = " ".join(text.split())
        return text or None

    @staticmethod
    def normalize_amount(value: Any) -> Optional[float]:
        """
        Parse a funding amount.

        Returns None for missing, zero, negative or unparseable values.

        Examples:
            >>> GrantNormalizer.normalize_amount("$1,250,000.50")
            1250000.5
            >>> GrantNormalizer.normalize_amount("1.234.567,89")
            1234567.89
            >>> GrantNormalizer.normalize_amount("£1.5 million")
            1500000.0
        """
        if value is None or isinstance(value, bool):
            return None

        if isinstance(value, (int, float)):
            amount = float(value)
            return amount if amount > 0 else None

        text = str(value).strip()
        if not text:
            return None

        multiplier = 1
        match = _MAGNITUDE_RE.search(text)
        if match:
            multiplier = MAGNITUDES[match.group(2).lower()]

        cleaned = re.sub(r"[^0-9,.\-]", "", text)
        if not cleaned:
            return None

        if "," in cleaned:
            last_comma = cleaned.rfind(",")
            last_dot = cleaned.rfind(".")
            if last_dot > last_comma:
                # US format: 1,234,567.89
                cleaned = cleaned.replace(",", "")
            elif last_dot != -1:
                # European format: 1.234.567,89
                cleaned = cleaned.replace(".", "").replace(",", ".")
            elif re.fullmatch(r"-?\d{1,3}(,\d{3})+", cleaned):
                cleaned = cleaned.replace(",", "")
            else:
                # Decimal comma: 1234,5
                cleaned = cleaned.replace(",", ".")
        elif cleaned.count(".") > 1:
            # Dots as thousands separators: 1.234.567
            cleaned = cleaned.replace(".", "")

        try:
            amount = float(cleaned) * multiplier
        except ValueError:
            return None

        return amount if amount > 0 else None

    @staticmethod
    def normalize_date(value: Any) -> Optional[datetime]:
        """
        Parse a provider date into a naive UTC datetime.

        Accepts datetimes, dates, epoch milliseconds (int or digit string),
        ISO strings, US MM/DD/YYYY and long-form dates.
        """
        if value is None or value == "" or isinstance(value, bool):
            return None

        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime(value.year, value.month, value.day)
        elif isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit() and len(value.strip()) >= 10):
            stamp = float(value)
            # Millisecond epochs are at least 11 digits for modern dates
            if stamp > 1e11:
                stamp = stamp / 1000
            try:
                parsed = datetime.fromtimestamp(stamp, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return None
        else:
            text = str(value).strip()
            if not text:
                return None
            try:
                parsed = dateparser.parse(text)
            except (ValueError, OverflowError, TypeError):
                logger.debug(f"Unparseable date: {text!r}")
                return None

        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    @staticmethod
    def normalize_status(value: Any, table: Optional[Dict[str, GrantStatus]] = None) -> GrantStatus:
        """Translate a provider status through its lookup table; unknown → active"""
        if value is None:
            return GrantStatus.ACTIVE
        key = str(value).strip().lower()
        lookup = table if table is not None else COMMON_STATUS_MAP
        return lookup.get(key, GrantStatus.ACTIVE)

    @staticmethod
    def status_from_dates(end_date: Optional[datetime], now: Optional[datetime] = None) -> GrantStatus:
        """Status for award registries that report no lifecycle state"""
        if end_date is None:
            return GrantStatus.ACTIVE
        now = now or datetime.utcnow()
        return GrantStatus.CLOSED if end_date < now else GrantStatus.ACTIVE

    @staticmethod
    def normalize_currency(value: Optional[str]) -> str:
        """Map a currency symbol or code to ISO 4217, default USD"""
        if not value or not str(value).strip():
            return "USD"
        key = str(value).strip().upper()
        return CURRENCY_MAP.get(key, key)[:10]

    @staticmethod
    def categories_from(
        items: Optional[Iterable[Any]],
        category_type: CategoryType,
        name_key: str = "name",
        code_key: Optional[str] = None,
        hierarchy: Optional[str] = None
    ) -> List[GrantCategoryData]:
        """
        Build typed category records from strings or dicts.

        Duplicate names (case-insensitive) are kept once.
        """
        if not items:
            return []
        if isinstance(items, (str, dict)):
            items = [items]

        categories = []
        seen = set()
        for item in items:
            if isinstance(item, dict):
                name = item.get(name_key)
                code = item.get(code_key) if code_key else None
            else:
                name, code = item, None

            name = GrantNormalizer.clean_text(name)
            if not name or name.lower() in seen:
                continue
            seen.add(name.lower())

            categories.append(GrantCategoryData(
                category_type=category_type,
                category_code=str(code)[:100] if code is not None else None,
                category_name=name[:500],
                category_hierarchy=hierarchy
            ))
        return categories

    @staticmethod
    def extract_keywords(text: Optional[str], title: Optional[str] = None) -> List[GrantKeywordData]:
        """
        Extract keywords from title + description by term frequency.

        Title terms are boosted. Scores are normalized to (0, 1] and the
        result is ordered most relevant first, capped at MAX_KEYWORDS.
        """
        scores: Counter = Counter()
        order: Dict[str, int] = {}

        for source_text, weight in ((title, TITLE_BOOST), (text, 1)):
            if not source_text:
                continue
            for token in _TOKEN_RE.findall(str(source_text).lower()):
                if len(token) < MIN_KEYWORD_LENGTH or token in STOPWORDS or token.isdigit():
                    continue
                scores[token] += weight
                order.setdefault(token, len(order))

        if not scores:
            return []

        top = max(scores.values())
        ranked = sorted(scores, key=lambda t: (-scores[t], order[t]))
        return [
            GrantKeywordData(
                keyword=token,
                keyword_source=KeywordSource.EXTRACTED,
                relevance_score=round(scores[token] / top, 4)
            )
            for token in ranked[:MAX_KEYWORDS]
        ]

    @staticmethod
    def rank_keywords(
        provided: Optional[Iterable[str]],
        extracted: Optional[List[GrantKeywordData]] = None
    ) -> List[GrantKeywordData]:
        """
        Merge provider-supplied and extracted keywords.

        Provider keywords score 1.0. Duplicates (case-insensitive) keep the
        best score; the result is ordered by relevance and capped at
        MAX_KEYWORDS.
        """
        merged: Dict[str, GrantKeywordData] = {}

        candidates: List[GrantKeywordData] = []
        for keyword in provided or []:
            keyword = GrantNormalizer.clean_text(keyword)
            if keyword:
                candidates.append(GrantKeywordData(
                    keyword=keyword[:200],
                    keyword_source=KeywordSource.API_PROVIDED,
                    relevance_score=1.0
                ))
        candidates.extend(extracted or [])

        for candidate in candidates:
            key = candidate.keyword.lower()
            current = merged.get(key)
            if current is None or (candidate.relevance_score or 0) > (current.relevance_score or 0):
                merged[key] = candidate

        ranked = sorted(merged.values(), key=lambda k: k.relevance_score or 0, reverse=True)
        return ranked[:MAX_KEYWORDS]

    @staticmethod
    def parse_eligibility(text: Optional[str]) -> List[GrantEligibilityData]:
        """Organization-type eligibility rules found in free text"""
        text = GrantNormalizer.clean_text(text)
        if not text:
            return []

        lowered = text.lower()
        rules = []
        for org_type in ORGANIZATION_TYPES:
            if re.search(rf"\b{re.escape(org_type)}\b", lowered):
                rules.append(GrantEligibilityData(
                    eligibility_type=EligibilityType.ORGANIZATION_TYPE,
                    eligibility_value=org_type,
                    eligibility_description=text,
                    is_required=True
                ))
        return rules

    @staticmethod
    def implied_eligibility(value: str, description: Optional[str] = None) -> GrantEligibilityData:
        """Default eligibility a provider implies without stating it"""
        return GrantEligibilityData(
            eligibility_type=EligibilityType.ORGANIZATION_TYPE,
            eligibility_value=value,
            eligibility_description=description,
            is_required=True
        )

    @staticmethod
    def first(record: Dict[str, Any], *keys: str) -> Any:
        """First non-empty value among keys"""
        for key in keys:
            value = record.get(key)
            if value not in (None, "", [], {}):
                return value
        return None

    @staticmethod
    def as_list(value: Any) -> List[Any]:
        """Wrap a scalar provider field; None becomes []"""
        if value is None or value == "":
            return []
        return list(value) if isinstance(value, (list, tuple)) else [value]

    @staticmethod
    def to_int(value: Any) -> Optional[int]:
        if value is None or value == "" or isinstance(value, bool):
            return None
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return None
