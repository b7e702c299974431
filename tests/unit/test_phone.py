"""Tests for phone number normalization and validation."""

import pytest

from nursery_auth.core.logging import mask_phone
from nursery_auth.core.phone import is_valid_phone, normalize_phone


@pytest.mark.unit
class TestNormalizePhone:
    def test_strips_hyphens(self):
        assert normalize_phone("090-1234-5678") == "09012345678"

    def test_strips_whitespace(self):
        assert normalize_phone(" 090 1234 5678 ") == "09012345678"

    def test_plain_number_unchanged(self):
        assert normalize_phone("09012345678") == "09012345678"

    def test_keeps_country_code(self):
        assert normalize_phone("+819012345678") == "+819012345678"

    @pytest.mark.parametrize("raw", ["", None])
    def test_empty_input(self, raw):
        assert normalize_phone(raw) == ""

    def test_idempotent(self):
        once = normalize_phone("03-1234-5678")
        assert normalize_phone(once) == once


@pytest.mark.unit
class TestIsValidPhone:
    @pytest.mark.parametrize(
        "raw",
        [
            "09012345678",
            "090-1234-5678",
            "03-1234-5678",
            "0120-12-3456",
            "+819012345678",
        ],
    )
    def test_accepts_supported_formats(self, raw):
        assert is_valid_phone(raw)

    @pytest.mark.parametrize(
        "raw",
        [
            "9012345678",  # missing leading zero
            "0901234567",  # too short
            "090123456789",  # too long
            "+8109012345678",
            "090-1234-567a",
            "phone",
            "",
        ],
    )
    def test_rejects_other_input(self, raw):
        assert not is_valid_phone(raw)


@pytest.mark.unit
class TestMaskPhone:
    def test_keeps_last_four_digits(self):
        assert mask_phone("09012345678") == "*******5678"

    def test_short_values_fully_masked(self):
        assert mask_phone("123") == "***"

    def test_empty(self):
        assert mask_phone(None) == ""
