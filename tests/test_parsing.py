"""Tests for money and date parsing."""
import unittest
from datetime import date
from decimal import Decimal

from statementflow.utils.parsing import AMOUNT_PATTERN, infer_year, parse_amount, parse_date


class TestParseAmount(unittest.TestCase):

    def test_european_and_us_formats(self):
        self.assertEqual(parse_amount("1.234,56"), Decimal("1234.56"))
        self.assertEqual(parse_amount("1,234.56"), Decimal("1234.56"))
        self.assertEqual(parse_amount("45,32"), Decimal("45.32"))
        self.assertEqual(parse_amount("85.00"), Decimal("85.00"))

    def test_negative_forms(self):
        self.assertEqual(parse_amount("-12,30"), Decimal("-12.30"))
        self.assertEqual(parse_amount("(45,00)"), Decimal("-45.00"))

    def test_not_a_number(self):
        self.assertIsNone(parse_amount("abc"))
        self.assertIsNone(parse_amount(""))
        self.assertIsNone(parse_amount(None))

    def test_amount_pattern_skips_dates(self):
        """Dates and card numbers are not amounts."""
        line = "05/01/2024 CONTINENTE CASCAIS 45,32"
        found = [m.group(0).strip() for m in AMOUNT_PATTERN.finditer(line)]
        self.assertEqual(found, ["45,32"])

    def test_amount_pattern_keeps_space_separated_numbers_apart(self):
        found = [m.group(0).strip() for m in AMOUNT_PATTERN.finditer("POSTO 5 100,00 D 8.900,00")]
        self.assertEqual(found, ["100,00", "8.900,00"])


class TestParseDate(unittest.TestCase):

    def test_full_dates(self):
        self.assertEqual(parse_date("05/01/2024"), date(2024, 1, 5))
        self.assertEqual(parse_date("2024-01-05"), date(2024, 1, 5))
        self.assertEqual(parse_date("05.01.24"), date(2024, 1, 5))

    def test_day_month_uses_base_year(self):
        self.assertEqual(parse_date("05/01", base_year=2023), date(2023, 1, 5))

    def test_month_names(self):
        self.assertEqual(parse_date("15 jan 2024"), date(2024, 1, 15))
        self.assertEqual(parse_date("3 Dezembro", base_year=2023), date(2023, 12, 3))
        self.assertIsNone(parse_date("3 Nothing 2024"))

    def test_invalid_dates(self):
        self.assertIsNone(parse_date("31/02/2024"))
        self.assertIsNone(parse_date(""))

    def test_infer_year(self):
        text = "Periodo 01/12/2023 a 31/12/2023\n05/01/2024 X\n06/01/2024 Y\n07/01/2024 Z"
        self.assertEqual(infer_year(text), 2024)
        self.assertIsNone(infer_year("no dates here 05/01"))


if __name__ == "__main__":
    unittest.main()
