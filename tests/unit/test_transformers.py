"""
Unit tests for the normalizer and canonical record schemas
"""

import pytest
from datetime import datetime, date
from pydantic import ValidationError
from ingestion.transformers.normalizer import GrantNormalizer
from schemas.normalized import NormalizedGrant, NormalizedGrantData, GrantKeywordData, MAX_KEYWORDS
from models.base import GrantStatus, CategoryType, KeywordSource


class TestAmountNormalization:
    """Test funding amount parsing"""

    @pytest.mark.parametrize("value,expected", [
        (1500000, 1500000.0),
        (2500.75, 2500.75),
        ("$1,250,000.50", 1250000.5),
        ("1.234.567,89", 1234567.89),
        ("12,500", 12500.0),
        ("1234,5", 1234.5),
        ("1.234.567", 1234567.0),
        ("£1.5 million", 1500000.0),
        ("EUR 2 billion", 2000000000.0),
        ("500k", 500000.0),
        ("2.5M", 2500000.0),
    ])
    def test_parses_amounts(self, value, expected):
        assert GrantNormalizer.normalize_amount(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", [None, "", "n/a", 0, -100, "-5", True])
    def test_rejects_missing_and_non_positive(self, value):
        assert GrantNormalizer.normalize_amount(value) is None


class TestDateNormalization:
    """Test date parsing to naive UTC"""

    def test_iso_date(self):
        assert GrantNormalizer.normalize_date("2024-01-15") == datetime(2024, 1, 15)

    def test_timezone_converted_to_naive_utc(self):
        assert GrantNormalizer.normalize_date("2024-01-15T10:00:00Z") == datetime(2024, 1, 15, 10, 0)
        assert GrantNormalizer.normalize_date("2024-01-15T10:00:00+02:00") == datetime(2024, 1, 15, 8, 0)

    def test_epoch_milliseconds(self):
        assert GrantNormalizer.normalize_date(1705312800000) == datetime(2024, 1, 15, 10, 0)
        assert GrantNormalizer.normalize_date("1705312800000") == datetime(2024, 1, 15, 10, 0)

    def test_epoch_seconds(self):
        assert GrantNormalizer.normalize_date(1705312800) == datetime(2024, 1, 15, 10, 0)

    def test_us_format(self):
        assert GrantNormalizer.normalize_date("01/15/2024") == datetime(2024, 1, 15)

    def test_date_object(self):
        assert GrantNormalizer.normalize_date(date(2024, 1, 15)) == datetime(2024, 1, 15)

    @pytest.mark.parametrize("value", [None, "", "not a date", False])
    def test_unparseable_returns_none(self, value):
        assert GrantNormalizer.normalize_date(value) is None


class TestStatusAndCurrency:
    """Test status and currency translation"""

    def test_common_status_map(self):
        assert GrantNormalizer.normalize_status("Posted") == GrantStatus.ACTIVE
        assert GrantNormalizer.normalize_status("closed") == GrantStatus.CLOSED
        assert GrantNormalizer.normalize_status(" Forecasted ") == GrantStatus.FORECASTED

    def test_unknown_status_defaults_to_active(self):
        assert GrantNormalizer.normalize_status("mystery") == GrantStatus.ACTIVE
        assert GrantNormalizer.normalize_status(None) == GrantStatus.ACTIVE

    def test_provider_table(self):
        table = {"31094501": GrantStatus.FORECASTED}
        assert GrantNormalizer.normalize_status(31094501, table) == GrantStatus.FORECASTED
        # A provider table replaces the common map
        assert GrantNormalizer.normalize_status("closed", table) == GrantStatus.ACTIVE

    def test_status_from_dates(self):
        now = datetime(2024, 6, 1)
        assert GrantNormalizer.status_from_dates(datetime(2024, 1, 1), now) == GrantStatus.CLOSED
        assert GrantNormalizer.status_from_dates(datetime(2025, 1, 1), now) == GrantStatus.ACTIVE
        assert GrantNormalizer.status_from_dates(None, now) == GrantStatus.ACTIVE

    def test_currency(self):
        assert GrantNormalizer.normalize_currency("€") == "EUR"
        assert GrantNormalizer.normalize_currency("gbp") == "GBP"
        assert GrantNormalizer.normalize_currency("US$") == "USD"
        assert GrantNormalizer.normalize_currency(None) == "USD"


class TestCategoriesAndEligibility:
    """Test category and eligibility extraction"""

    def test_categories_deduplicated(self):
        categories = GrantNormalizer.categories_from(
            ["Health", "health", {"name": "Water", "code": "W1"}, None, ""],
            CategoryType.SECTOR,
            code_key="code"
        )

        assert [c.category_name for c in categories] == ["Health", "Water"]
        assert categories[1].category_code == "W1"
        assert categories[0].category_type == CategoryType.SECTOR

    def test_single_string_category(self):
        categories = GrantNormalizer.categories_from("Physics", CategoryType.RESEARCH_AREA)
        assert len(categories) == 1
        assert categories[0].category_name == "Physics"

    def test_parse_eligibility(self):
        rules = GrantNormalizer.parse_eligibility("Open to nonprofit organizations and state governments")
        assert [r.eligibility_value for r in rules] == ["nonprofit", "state"]

    def test_parse_eligibility_empty(self):
        assert GrantNormalizer.parse_eligibility(None) == []

    def test_implied_eligibility(self):
        rule = GrantNormalizer.implied_eligibility("Government", "National governments")
        assert rule.eligibility_value == "Government"
        assert rule.is_required is True


class TestKeywords:
    """Test keyword extraction and ranking"""

    def test_extract_keywords_ranked_by_relevance(self):
        keywords = GrantNormalizer.extract_keywords(
            "Clean water supply for rural water systems.",
            "Water Access"
        )

        assert [k.keyword for k in keywords] == ["water", "access", "clean", "supply", "rural", "systems"]
        assert keywords[0].relevance_score == 1.0
        assert keywords[1].relevance_score == 0.6
        assert all(k.keyword_source == KeywordSource.EXTRACTED for k in keywords)

    def test_stopwords_and_short_tokens_skipped(self):
        keywords = GrantNormalizer.extract_keywords("the program for new research and its use")
        assert keywords == []

    def test_extract_keywords_capped(self):
        text = " ".join(f"term{i:03d}" for i in range(60))
        keywords = GrantNormalizer.extract_keywords(text)

        assert len(keywords) == MAX_KEYWORDS
        assert keywords[0].keyword == "term000"

    def test_rank_keywords_prefers_provided(self):
        extracted = GrantNormalizer.extract_keywords("Clean water supply", "Water Access")
        keywords = GrantNormalizer.rank_keywords(["Water", "Climate"], extracted)

        names = [k.keyword.lower() for k in keywords]
        assert names.count("water") == 1
        assert keywords[0].keyword == "Water"
        assert keywords[0].keyword_source == KeywordSource.API_PROVIDED
        assert keywords[1].keyword == "Climate"
        scores = [k.relevance_score for k in keywords]
        assert scores == sorted(scores, reverse=True)


class TestHelpers:
    def test_first(self):
        assert GrantNormalizer.first({"a": "", "b": None, "c": "x"}, "a", "b", "c") == "x"
        assert GrantNormalizer.first({}, "a") is None

    def test_as_list(self):
        assert GrantNormalizer.as_list(None) == []
        assert GrantNormalizer.as_list("x") == ["x"]
        assert GrantNormalizer.as_list(("a", "b")) == ["a", "b"]

    def test_to_int(self):
        assert GrantNormalizer.to_int("12") == 12
        assert GrantNormalizer.to_int("3.0") == 3
        assert GrantNormalizer.to_int("many") is None

    def test_clean_text(self):
        assert GrantNormalizer.clean_text("<p>Hello\n  <b>world</b></p>") == "Hello world"
        assert GrantNormalizer.clean_text("   ") is None


class TestNormalizedSchemas:
    """Test canonical record validation"""

    def test_identifier_coerced_to_string(self):
        grant = NormalizedGrant(data_source_id=1, source_identifier=12345, title="Title")
        assert grant.source_identifier == "12345"

    def test_title_whitespace_collapsed(self):
        grant = NormalizedGrant(data_source_id=1, source_identifier="A", title="  Rural   Water  ")
        assert grant.title == "Rural Water"

    def test_blank_title_rejected(self):
        with pytest.raises(ValidationError):
            NormalizedGrant(data_source_id=1, source_identifier="A", title="   ")

    def test_long_title_truncated(self):
        grant = NormalizedGrant(data_source_id=1, source_identifier="A", title="Water " * 250)
        assert len(grant.title) == 1000
        assert grant.title.startswith("Water Water")

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError):
            NormalizedGrant(data_source_id=1, source_identifier="A", title="T", funding_amount_max=-1)

    def test_keywords_sorted_and_capped(self):
        keywords = [
            GrantKeywordData(keyword=f"kw{i}", relevance_score=i / 100)
            for i in range(60)
        ]
        data = NormalizedGrantData(
            grant=NormalizedGrant(data_source_id=1, source_identifier="A", title="T"),
            keywords=keywords
        )

        assert len(data.keywords) == MAX_KEYWORDS
        assert data.keywords[0].keyword == "kw59"
        assert data.source_identifier == "A"
