"""
Tests for applicant identifier normalization.
"""

import pytest

from admissions.modules.applicants.helpers import (
    mask_email,
    mask_phone,
    normalize_email,
    normalize_identifier,
    normalize_phone,
)


class TestNormalizeEmail:
    def test_lowercases(self):
        assert normalize_email("  Asha.Rao@Example.COM ") == "asha.rao@example.com"

    @pytest.mark.parametrize("value", ["not-an-email", "a@", "@example.com"])
    def test_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            normalize_email(value)


class TestNormalizePhone:
    def test_strips_separators(self):
        assert normalize_phone("+91 98765-43210") == "+919876543210"
        assert normalize_phone("(022) 2345.6789") == "02223456789"

    def test_double_zero_prefix(self):
        assert normalize_phone("0091 9876543210") == "+919876543210"

    @pytest.mark.parametrize("value", ["12345", "abcdefghij", "+1234567890123456"])
    def test_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            normalize_phone(value)


class TestNormalizeIdentifier:
    def test_dispatches_on_at_sign(self):
        assert normalize_identifier("A@Example.com") == "a@example.com"
        assert normalize_identifier("+91 98765 43210") == "+919876543210"

    def test_empty(self):
        with pytest.raises(ValueError):
            normalize_identifier("   ")


def test_masking():
    assert mask_email("asha@example.com") == "a***@example.com"
    assert mask_phone("+919876543210") == "*********3210"
