"""Tests for the shared value objects and encryption helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase, override_settings

from shared.domain.value_objects import Money, StayPeriod
from shared.infrastructure.encryption import decrypt_string, encrypt_string, mask


class MoneyTests(SimpleTestCase):
    def test_floats_are_rejected(self) -> None:
        with self.assertRaises(TypeError):
            Money(10.5, "AED")
        with self.assertRaises(TypeError):
            Money(Decimal("10"), "AED") * 1.5

    def test_strings_and_ints_are_converted_to_decimal(self) -> None:
        self.assertEqual(Money("10.25", "aed").amount, Decimal("10.25"))
        self.assertEqual(Money("10.25", "aed").currency, "AED")
        self.assertEqual(Money(3, "USD").amount, Decimal("3"))

    def test_unknown_currency_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            Money("1", "XXX")

    def test_mixed_currency_arithmetic_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            Money("1", "AED") + Money("1", "USD")
        with self.assertRaises(ValueError):
            Money("1", "AED") < Money("1", "USD")

    def test_truncate_rounds_toward_zero_per_currency(self) -> None:
        self.assertEqual(Money("10.999", "AED").truncate().amount, Decimal("10.99"))
        self.assertEqual(Money("-10.999", "AED").truncate().amount, Decimal("-10.99"))
        self.assertEqual(Money("1.2345", "BHD").truncate().amount, Decimal("1.234"))
        self.assertEqual(Money("99.9", "JPY").truncate().amount, Decimal("99"))

    def test_arithmetic_and_comparison(self) -> None:
        total = Money("100.10", "AED") - Money("0.10", "AED") + Money("5", "AED")
        self.assertEqual(total, Money("105.00", "AED"))
        self.assertEqual(-total, Money("-105", "AED"))
        self.assertTrue(Money("1", "AED") > Money("0.99", "AED"))
        self.assertTrue(Money.zero("USD").is_zero())
        self.assertFalse(Money("-1", "USD").is_positive())

    def test_str_uses_minor_units(self) -> None:
        self.assertEqual(str(Money("1234.5", "AED")), "1,234.50 AED")
        self.assertEqual(str(Money("7", "KWD")), "7.000 KWD")


class StayPeriodTests(SimpleTestCase):
    def setUp(self) -> None:
        self.check_in = datetime(2026, 3, 10, 14, tzinfo=dt_timezone.utc)

    def test_check_out_must_follow_check_in(self) -> None:
        with self.assertRaises(ValueError):
            StayPeriod(self.check_in, self.check_in)

    def test_hours_until_check_in(self) -> None:
        stay = StayPeriod(self.check_in, self.check_in + timedelta(days=3))

        self.assertEqual(stay.hours_until_check_in(self.check_in - timedelta(hours=30)), Decimal("30"))
        self.assertEqual(stay.hours_until_check_in(self.check_in + timedelta(minutes=90)), Decimal("-1.5"))
        self.assertFalse(stay.has_ended(self.check_in))
        self.assertTrue(stay.has_ended(self.check_in + timedelta(days=3)))


class EncryptionTests(SimpleTestCase):
    def test_round_trip_and_mask(self) -> None:
        token = encrypt_string("AE070331234567890123456")

        self.assertNotIn("1234567", token)
        self.assertEqual(decrypt_string(token), "AE070331234567890123456")
        self.assertEqual(mask("AE070331234567890123456"), "*" * 19 + "3456")
        self.assertEqual(mask("123"), "***")
        self.assertEqual(encrypt_string(""), "")

    def test_token_from_another_key_is_refused(self) -> None:
        with override_settings(ENCRYPTION_KEY="another-key"):
            token = encrypt_string("wallet-42")

        with self.assertRaises(ImproperlyConfigured):
            decrypt_string(token)
