"""Destination phone number normalization."""
from typing import Optional

import phonenumbers
from phonenumbers import NumberParseException

from outbound_caller.core.config import settings
from outbound_caller.core.exceptions import InvalidNumber


def normalize_phone_number(phone: Optional[str], default_region: Optional[str] = None) -> str:
    """
    Normalize a phone number to E.164 (+919876543210).

    Numbers without a leading + are parsed in ``default_region``
    (DEFAULT_PHONE_REGION when not given).

    Raises:
        InvalidNumber: the input is empty or cannot be a dialable number
    """
    if not phone or not phone.strip():
        raise InvalidNumber("Phone number is required")

    region = default_region or settings.default_phone_region
    try:
        parsed = phonenumbers.parse(phone.strip(), region)
    except NumberParseException as e:
        raise InvalidNumber(f"Invalid phone number '{phone}': {e}") from e

    if not phonenumbers.is_possible_number(parsed):
        raise InvalidNumber(f"Invalid phone number '{phone}'")

    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
