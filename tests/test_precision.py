"""
Test suite for liberdus_core.precision — LIB / wei conversions.
"""

import unittest

from liberdus_core.codec import BigInt
from liberdus_core.precision import WEI, format_amount, from_wei, to_wei


class TestToWei(unittest.TestCase):

    def test_whole_amount(self):
        self.assertEqual(to_wei("2"), 2 * WEI)

    def test_fractional_amount(self):
        self.assertEqual(to_wei("1.5"), 1_500_000_000_000_000_000)

    def test_smallest_unit(self):
        self.assertEqual(to_wei("0.000000000000000001"), 1)

    def test_leading_dot(self):
        self.assertEqual(to_wei(".25"), WEI // 4)

    def test_int_input(self):
        self.assertEqual(to_wei(3), 3 * WEI)

    def test_returns_bigint(self):
        self.assertIsInstance(to_wei("1"), BigInt)

    def test_thousands_separator_ignored(self):
        self.assertEqual(to_wei("1,000"), 1000 * WEI)

    def test_too_many_decimals(self):
        with self.assertRaises(ValueError):
            to_wei("0.0000000000000000001")

    def test_invalid_text(self):
        for bad in ("", ".", "abc", "1.2.3", "-1"):
            with self.assertRaises(ValueError, msg=bad):
                to_wei(bad)


class TestFromWei(unittest.TestCase):

    def test_whole(self):
        self.assertEqual(from_wei(5 * WEI), "5")

    def test_fraction_trimmed(self):
        self.assertEqual(from_wei(1_500_000_000_000_000_000), "1.5")

    def test_smallest_unit(self):
        self.assertEqual(from_wei(1), "0.000000000000000001")

    def test_negative(self):
        self.assertEqual(from_wei(-WEI // 2), "-0.5")

    def test_exact_inverse(self):
        for text in ("0.1", "123.456", "99999999.999999999999999999"):
            self.assertEqual(from_wei(to_wei(text)), text)

    def test_format_amount(self):
        self.assertEqual(format_amount(to_wei("2.25")), "2.25 LIB")
