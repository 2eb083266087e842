"""Tests for backend/revenue_leakage/pipeline/utils.py — shared utility functions.

Covers:
  - parse_amount: numeric, string, lakh, crore, empty, garbage
  - format_inr: Indian digit grouping, negatives, rounding
  - parse_date / days_between / quarter_label
  - normalize_code: case, whitespace, missing values
  - slugify_label: letters-only label prefix
"""

from datetime import date, datetime

import pytest

from revenue_leakage.pipeline.utils import (
    days_between,
    format_inr,
    normalize_code,
    parse_amount,
    parse_date,
    quarter_label,
    slugify_label,
)


# ═══════════════════════════════════════════════════
# 1. parse_amount
# ═══════════════════════════════════════════════════

class TestParseAmount:
    """parse_amount: int/float passthrough, string parsing, lakh/crore multipliers."""

    def test_int(self):
        assert parse_amount(100) == 100.0

    def test_float(self):
        assert parse_amount(99.5) == 99.5

    def test_commas(self):
        assert parse_amount("15,00,000") == 1500000.0

    def test_rs_prefix(self):
        assert parse_amount("Rs. 10,000") == 10000.0

    def test_rupee_symbol(self):
        assert parse_amount("₹25,000") == 25000.0

    def test_inr_prefix(self):
        assert parse_amount("INR 50000") == 50000.0

    def test_lakh_decimal(self):
        assert parse_amount("3.5 lakh") == 350000.0

    def test_crore(self):
        assert parse_amount("2 crores") == 20000000.0

    def test_crore_abbreviation(self):
        assert parse_amount("1.5 Cr") == 15000000.0

    def test_lac_variant(self):
        assert parse_amount("10 lacs") == 1000000.0

    def test_negative_kept(self):
        assert parse_amount("-500") == -500.0

    def test_bool_rejected(self):
        assert parse_amount(True) is None

    def test_none_returns_none(self):
        assert parse_amount(None) is None

    def test_empty_string(self):
        assert parse_amount("") is None

    def test_garbage(self):
        assert parse_amount("hello world") is None

    def test_whitespace_only(self):
        assert parse_amount("   ") is None


# ═══════════════════════════════════════════════════
# 2. format_inr
# ═══════════════════════════════════════════════════

class TestFormatInr:

    @pytest.mark.parametrize("amount,expected", [
        (0, "₹0"),
        (999, "₹999"),
        (1200, "₹1,200"),
        (480000, "₹4,80,000"),
        (15000000, "₹1,50,00,000"),
        (20000.4, "₹20,000"),
        (-1200, "-₹1,200"),
    ])
    def test_grouping(self, amount, expected):
        assert format_inr(amount) == expected


# ═══════════════════════════════════════════════════
# 3. Dates
# ═══════════════════════════════════════════════════

class TestParseDate:

    def test_iso(self):
        assert parse_date("2024-03-01") == date(2024, 3, 1)

    def test_day_first(self):
        assert parse_date("01/03/2024") == date(2024, 3, 1)
        assert parse_date("01-03-2024") == date(2024, 3, 1)

    def test_month_name(self):
        assert parse_date("1 Mar 2024") == date(2024, 3, 1)

    def test_timestamp(self):
        assert parse_date("2024-03-01T10:15:00") == date(2024, 3, 1)

    def test_date_and_datetime_passthrough(self):
        assert parse_date(date(2024, 3, 1)) == date(2024, 3, 1)
        assert parse_date(datetime(2024, 3, 1, 9, 30)) == date(2024, 3, 1)

    def test_unparseable(self):
        assert parse_date("yesterday") is None
        assert parse_date("") is None
        assert parse_date(None) is None
        assert parse_date(20240301) is None


class TestDaysBetween:

    def test_forward(self):
        assert days_between(date(2024, 3, 1), date(2024, 3, 11)) == 10

    def test_backward_is_negative(self):
        assert days_between(date(2024, 3, 11), date(2024, 3, 1)) == -10

    def test_missing(self):
        assert days_between(None, date(2024, 3, 1)) is None
        assert days_between(date(2024, 3, 1), None) is None


class TestQuarterLabel:

    @pytest.mark.parametrize("d,label", [
        (date(2024, 1, 15), "2024-Q1"),
        (date(2024, 3, 31), "2024-Q1"),
        (date(2024, 4, 1), "2024-Q2"),
        (date(2024, 12, 31), "2024-Q4"),
    ])
    def test_quarters(self, d, label):
        assert quarter_label(d) == label


# ═══════════════════════════════════════════════════
# 4. Identifiers
# ═══════════════════════════════════════════════════

class TestNormalizeCode:

    def test_upper_and_trim(self):
        assert normalize_code("  sr01 ") == "SR01"

    def test_collapses_whitespace(self):
        assert normalize_code("12 /\t 1") == "12 / 1"

    def test_numbers(self):
        assert normalize_code(101) == "101"

    def test_none(self):
        assert normalize_code(None) == ""


class TestSlugifyLabel:

    def test_village_label(self):
        assert slugify_label("Village Kondapuram Sy.92") == "VILL"

    def test_ward_label(self):
        assert slugify_label("Ward 4, Block 2") == "WARD"

    def test_no_letters(self):
        assert slugify_label("12/3") == ""
