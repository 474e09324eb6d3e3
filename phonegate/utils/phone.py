"""
Phone number normalization and validation utilities
"""
import re
from typing import List, Optional

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat

from phonegate.core.errors import ValidationError
from phonegate.settings import settings

E164_RE = re.compile(r"^\+[1-9]\d{6,14}$")
CODE_RE = re.compile(r"^\d{6}$")


def supported_regions() -> List[str]:
    return [x.strip().upper() for x in (settings.SUPPORTED_REGIONS or "").split(",") if x.strip()]


def normalize_phone(phone: str, default_region: Optional[str] = None) -> str:
    """
    Normalize a raw phone input to E.164.

    Local numbers are interpreted in `default_region` (settings.DEFAULT_REGION
    when omitted). Validation is structural (country code + possible length);
    whether the line can actually receive SMS is the provider's call. The
    country calling code must be shared by at least one supported region.

    Raises:
        ValidationError: if the number is empty, unparsable, impossible or unsupported
    """
    if not phone or not isinstance(phone, str) or not phone.strip():
        raise ValidationError("Please enter a phone number", code="invalid-phone")

    region = (default_region or settings.DEFAULT_REGION or "US").upper()
    try:
        parsed = phonenumbers.parse(phone.strip(), region)
    except NumberParseException as e:
        raise ValidationError(f"Invalid phone number format: {e}", code="invalid-phone")

    if not phonenumbers.is_possible_number(parsed):
        raise ValidationError("Please enter a valid phone number for your selected country", code="invalid-phone")

    allowed = supported_regions()
    if allowed:
        regions = phonenumbers.region_codes_for_country_code(parsed.country_code)
        if not set(regions) & set(allowed):
            raise ValidationError(f"Unsupported country code: +{parsed.country_code}", code="unsupported-region")

    formatted = phonenumbers.format_number(parsed, PhoneNumberFormat.E164)
    if not E164_RE.match(formatted):
        raise ValidationError("Invalid phone number format", code="invalid-phone")
    return formatted


def is_valid_code(code) -> bool:
    return isinstance(code, str) and bool(CODE_RE.match(code))


def get_phone_last4(phone: str) -> str:
    digits = "".join(filter(str.isdigit, phone or ""))
    return digits[-4:] if len(digits) >= 4 else digits
