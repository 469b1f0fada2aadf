"""Unit tests for destination number normalization."""
import pytest

from outbound_caller.core.exceptions import InvalidNumber
from outbound_caller.services.telephony.numbers import normalize_phone_number


class TestNormalizePhoneNumber:
    """Test normalize_phone_number."""

    def test_e164_passes_through(self):
        assert normalize_phone_number("+16502530000") == "+16502530000"

    def test_formatting_is_stripped(self):
        assert normalize_phone_number("  +44 20 7946 0958 ") == "+442079460958"

    def test_national_number_uses_default_region(self):
        """Test numbers without a country code are parsed in the configured region."""
        assert normalize_phone_number("9876543210") == "+919876543210"

    def test_explicit_region_wins(self):
        assert normalize_phone_number("(650) 253-0000", default_region="US") == "+16502530000"

    @pytest.mark.parametrize("phone", ["", "   ", None])
    def test_empty_is_invalid(self, phone):
        with pytest.raises(InvalidNumber):
            normalize_phone_number(phone)

    def test_too_short_is_invalid(self):
        with pytest.raises(InvalidNumber):
            normalize_phone_number("12345")

    def test_text_is_invalid(self):
        with pytest.raises(InvalidNumber):
            normalize_phone_number("call me maybe")
