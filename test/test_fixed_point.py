"""
Unit tests for the Decimal256 fixed-point type.
"""

import unittest
import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))

from fixed_point import DECIMAL_FRACTIONAL, Decimal256, to_decimal256, to_uint256
from queue_errors import Underflow


class TestDecimal256(unittest.TestCase):
    def test_parse_and_format(self):
        """Decimal strings round-trip through the 18-digit representation."""
        self.assertEqual(Decimal256.from_str("0.05").atoms, 5 * 10 ** 16)
        self.assertEqual(Decimal256.from_str("1000").atoms, 1000 * DECIMAL_FRACTIONAL)
        self.assertEqual(str(Decimal256.from_str("12.3400")), "12.34")
        self.assertEqual(str(Decimal256.from_str("0.000000001")), "0.000000001")

    def test_invalid_strings(self):
        for text in ("", "-1", "1.2.3", "abc", "0.0000000000000000001"):
            with self.assertRaises(ValueError):
                Decimal256.from_str(text)

    def test_arithmetic_floors(self):
        """Multiplication and division round toward zero."""
        third = Decimal256.one() / Decimal256.from_uint256(3)
        self.assertEqual(third.atoms, 333333333333333333)
        self.assertEqual((third * Decimal256.from_uint256(3)).atoms, 999999999999999999)
        self.assertEqual(Decimal256.from_str("0.5").mul_uint(3), 1)
        self.assertEqual(Decimal256.from_ratio(50, 1000), Decimal256.from_str("0.05"))

    def test_subtraction_underflow(self):
        with self.assertRaises(Underflow):
            Decimal256.from_str("0.1") - Decimal256.from_str("0.2")
        with self.assertRaises(Underflow):
            Decimal256(-1)

    def test_floor_and_fract(self):
        value = Decimal256.from_str("30.75")
        self.assertEqual(value.floor(), 30)
        self.assertEqual(value.fract(), Decimal256.from_str("0.75"))

    def test_division_by_zero(self):
        with self.assertRaises(ZeroDivisionError):
            Decimal256.one() / Decimal256.zero()
        with self.assertRaises(ZeroDivisionError):
            Decimal256.from_ratio(1, 0)

    def test_ordering(self):
        self.assertLess(Decimal256.from_str("0.01"), Decimal256.from_str("0.1"))
        self.assertGreaterEqual(Decimal256.one(), Decimal256.percent(100))
        self.assertEqual(Decimal256.percent(5), Decimal256.from_str("0.05"))

    def test_message_conversions(self):
        self.assertEqual(to_uint256("1000"), 1000)
        self.assertEqual(to_uint256(7), 7)
        self.assertEqual(to_decimal256("0.8"), Decimal256.from_str("0.8"))
        with self.assertRaises(ValueError):
            to_uint256("-5")
        with self.assertRaises(ValueError):
            to_uint256(1.5)


if __name__ == "__main__":
    unittest.main()
