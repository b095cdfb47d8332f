"""
Retention policy tests
Testing: prefix selection from agreement duration and PDF keys
"""
from datetime import date, datetime

import pytest

from agreements.retention import (
    build_agreement_pdf_key,
    get_retention_period,
    get_retention_prefix,
    to_date,
    whole_years_between,
)
from config import RetentionSettings


def years_after(start: date, years: int) -> date:
    return start.replace(year=start.year + years)


class TestRetentionPrefix:
    @pytest.fixture
    def retention(self):
        return RetentionSettings()

    @pytest.fixture
    def start(self):
        return date(2025, 1, 1)

    def test_base_term(self, retention, start):
        """3 years + 7 base years = 10, within the base threshold"""
        assert get_retention_prefix(start, years_after(start, 3), retention) == "base"

    def test_extended_term(self, retention, start):
        assert get_retention_prefix(start, years_after(start, 8), retention) == "extended"

    def test_maximum_term(self, retention, start):
        assert get_retention_prefix(start, years_after(start, 13), retention) == "maximum"

    def test_custom_prefixes(self, start):
        retention = RetentionSettings(base_term_prefix="ten", retention_base_years=0, base_term_threshold=3)
        assert get_retention_prefix(start, years_after(start, 3), retention) == "ten"

    def test_retention_period(self, retention, start):
        assert get_retention_period(start, years_after(start, 3), retention) == 10
        assert get_retention_period(start, years_after(start, 5), retention) == 15
        assert get_retention_period(start, years_after(start, 20), retention) == 20

    def test_accepts_iso_strings(self, retention):
        assert get_retention_prefix("2025-09-01", "2028-09-01", retention) == "base"
        assert get_retention_prefix("2025-09-01T00:00:00Z", "2031-09-01T00:00:00Z", retention) == "extended"


class TestDates:
    def test_whole_years_ignores_partial_year(self):
        assert whole_years_between("2025-09-01", "2028-08-31") == 2
        assert whole_years_between("2025-09-01", "2028-09-01") == 3

    def test_whole_years_negative_when_reversed(self):
        assert whole_years_between("2028-09-01", "2025-09-01") == -3

    def test_to_date(self):
        assert to_date(datetime(2025, 3, 5, 12, 30)) == date(2025, 3, 5)
        assert to_date("2025-03-05") == date(2025, 3, 5)
        with pytest.raises(TypeError):
            to_date(20250305)


def test_pdf_key():
    assert build_agreement_pdf_key("base", "SFI123456789", 2) == "base/SFI123456789/2/SFI123456789-2.pdf"
