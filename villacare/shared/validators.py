"""Shared validation utilities"""

import re
from typing import Optional

from ..config import DEFAULT_PHONE_COUNTRY_CODE

CHANNEL_PREFIXES = ("whatsapp:", "sms:")


def strip_channel_prefix(address: str) -> str:
    """Remove a Twilio channel prefix such as 'whatsapp:' from an address"""
    lowered = address.lower()
    for prefix in CHANNEL_PREFIXES:
        if lowered.startswith(prefix):
            return address[len(prefix) :]
    return address


def normalize_phone(
    phone: Optional[str], default_country_code: str = DEFAULT_PHONE_COUNTRY_CODE
) -> Optional[str]:
    """
    Validate and normalize a phone number to E.164 format.

    Accepts '+44 7957 686529', '0044 7957686529', 'whatsapp:+447957686529' and
    local numbers, which are assumed to belong to ``default_country_code``.

    Returns:
        Normalized phone number (+CCNNNNNNN)

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone:
        return phone

    phone = strip_channel_prefix(phone.strip())
    has_plus = phone.startswith("+")

    # Remove all non-digit characters
    digits = re.sub(r"\D", "", phone)

    if not has_plus:
        if digits.startswith("00"):
            digits = digits[2:]
        else:
            digits = default_country_code + digits.lstrip("0")

    # E.164 allows at most 15 digits; anything under 8 is not a reachable number
    if not 8 <= len(digits) <= 15:
        raise ValueError("Phone number must have between 8 and 15 digits")

    return f"+{digits}"


def mask_phone(phone: Optional[str]) -> str:
    """Mask a phone number for logs, keeping the last 4 digits"""
    if not phone:
        return "<none>"
    return f"***{phone[-4:]}"
