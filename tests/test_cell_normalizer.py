"""
Unit tests for the CellNormalizer.
"""

from __future__ import annotations

from datetime import date, datetime

import pytest

from financial_inference.cell_normalizer import CellNormalizer


@pytest.fixture
def normalizer() -> CellNormalizer:
    return CellNormalizer()


# ======================================================================
# Header normalisation
# ======================================================================

class TestNormalizeHeader:
    def test_lowercase_and_strip(self, normalizer: CellNormalizer) -> None:
        assert normalizer.normalize_header("  Transaction Date  ") == "transaction date"

    def test_underscores_and_hyphens_collapse(self, normalizer: CellNormalizer) -> None:
        assert normalizer.normalize_header("Bill_Date") == "bill date"
        assert normalizer.normalize_header("due--date") == "due date"
        assert normalizer.normalize_header("Net  _ Amount") == "net amount"

    def test_unicode_dash(self, normalizer: CellNormalizer) -> None:
        assert normalizer.normalize_header("Post–Date") == "post date"

    def test_header_key_keeps_underscores(self) -> None:
        assert CellNormalizer.header_key(" Bill_Date ") == "bill_date"
        assert CellNormalizer.header_key(None) == ""


# ======================================================================
# Value normalisation
# ======================================================================

class TestNormalizeValue:
    def test_thousands_separator(self, normalizer: CellNormalizer) -> None:
        value, warnings = normalizer.normalize_value("1,23,456")
        assert value == 123456.0
        assert warnings == []

    def test_currency_symbol(self, normalizer: CellNormalizer) -> None:
        assert normalizer.to_number("$12,000") == 12000.0
        assert normalizer.to_number("€ 99.50") == 99.5

    def test_parenthetical_negative(self, normalizer: CellNormalizer) -> None:
        assert normalizer.to_number("(1,200)") == -1200.0

    def test_percent_stripped_with_warning(self, normalizer: CellNormalizer) -> None:
        value, warnings = normalizer.normalize_value("12.5%")
        assert value == 12.5
        assert any("Percent" in w for w in warnings)

    def test_text_is_not_numeric(self, normalizer: CellNormalizer) -> None:
        value, warnings = normalizer.normalize_value("Acme Corp")
        assert value is None
        assert warnings

    def test_bool_rejected(self, normalizer: CellNormalizer) -> None:
        assert normalizer.to_number(True) is None

    def test_non_finite_rejected(self, normalizer: CellNormalizer) -> None:
        assert normalizer.to_number(float("inf")) is None
        assert normalizer.to_number("nan") is None

    def test_none_and_empty(self, normalizer: CellNormalizer) -> None:
        assert normalizer.to_number(None) is None
        assert normalizer.to_number("   ") is None


# ======================================================================
# Cell coercion
# ======================================================================

class TestCoerceCell:
    def test_empty_cells_become_none(self, normalizer: CellNormalizer) -> None:
        assert normalizer.coerce_cell(None) is None
        assert normalizer.coerce_cell("") is None
        assert normalizer.coerce_cell("   ") is None

    def test_empty_is_never_zero(self, normalizer: CellNormalizer) -> None:
        assert normalizer.coerce_cell("") != 0

    def test_numeric_text(self, normalizer: CellNormalizer) -> None:
        assert normalizer.coerce_cell(" 1,234.50 ") == 1234.5

    def test_int_becomes_float(self, normalizer: CellNormalizer) -> None:
        result = normalizer.coerce_cell(5)
        assert result == 5.0
        assert isinstance(result, float)

    def test_text_kept_trimmed(self, normalizer: CellNormalizer) -> None:
        assert normalizer.coerce_cell("  Acme  ") == "Acme"

    def test_date_text_stays_text(self, normalizer: CellNormalizer) -> None:
        assert normalizer.coerce_cell("2024-01-15") == "2024-01-15"

    def test_datetime_kept(self, normalizer: CellNormalizer) -> None:
        stamp = datetime(2024, 1, 15, 9, 30)
        assert normalizer.coerce_cell(stamp) is stamp


# ======================================================================
# Dates and periods
# ======================================================================

class TestParseDate:
    @pytest.mark.parametrize("raw, expected", [
        ("2024-01-15", date(2024, 1, 15)),
        ("2024/01/15", date(2024, 1, 15)),
        ("01/15/2024", date(2024, 1, 15)),
        ("15/01/2024", date(2024, 1, 15)),
        ("15 Jan 2024", date(2024, 1, 15)),
        ("Jan 15, 2024", date(2024, 1, 15)),
        ("Mar 2024", date(2024, 3, 1)),
        ("2024-03", date(2024, 3, 1)),
    ])
    def test_text_formats(self, raw: str, expected: date) -> None:
        assert CellNormalizer.parse_date(raw) == expected

    def test_datetime_and_date(self) -> None:
        assert CellNormalizer.parse_date(datetime(2024, 2, 1, 12, 0)) == date(2024, 2, 1)
        assert CellNormalizer.parse_date(date(2024, 2, 1)) == date(2024, 2, 1)

    def test_non_dates(self) -> None:
        assert CellNormalizer.parse_date("pending") is None
        assert CellNormalizer.parse_date("12 apples") is None
        assert CellNormalizer.parse_date(45000.0) is None
        assert CellNormalizer.parse_date(None) is None


class TestPeriodLabel:
    @pytest.mark.parametrize("raw", ["2024-Q1", "Q3 2024", "FY2024", "Mar 2024", "2024-W09", 2024.0])
    def test_period_labels(self, raw) -> None:
        assert CellNormalizer.is_period_label(raw)

    @pytest.mark.parametrize("raw", ["hello", "2024-01-15", 12.5, None])
    def test_not_period_labels(self, raw) -> None:
        assert not CellNormalizer.is_period_label(raw)
