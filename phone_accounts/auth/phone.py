"""
Phone number normalization.

Phone numbers are the primary account key, so every number is reduced to a
single "+<country><number>" form before it is stored or looked up.
"""

import logging
from typing import Iterable, Optional

from ..errors import ValidationError

logger = logging.getLogger(__name__)

# E.164 allows at most 15 digits; anything under 10 cannot hold a country
# code plus subscriber number.
MIN_DIGITS = 10
MAX_DIGITS = 15


def normalize_phone(phone: str, default_country_code: str = "55") -> Optional[str]:
    """
    Normalize a phone number to a standard format.

    Removes spaces, dashes, dots and parentheses and ensures it starts with +.

    Args:
        phone: Phone number in any format
        default_country_code: Country code added when the number has no "+"

    Returns:
        Normalized phone number or None if invalid

    Examples:
        normalize_phone("(11) 99999-9999") -> "+5511999999999"
        normalize_phone("+86 180 0000 0000") -> "+8618000000000"
        normalize_phone("5511999999999") -> "+5511999999999"
    """
    if not phone or not isinstance(phone, str):
        return None

    stripped = phone.strip()
    for char in " -.()":
        stripped = stripped.replace(char, "")

    has_plus = stripped.startswith("+")
    digits = stripped[1:] if has_plus else stripped
    if not digits.isdigit():
        return None

    if not has_plus:
        if not default_country_code:
            return None
        # Long numbers that already start with the country code keep it
        already_prefixed = digits.startswith(default_country_code) and len(digits) >= 12
        if not already_prefixed:
            digits = default_country_code + digits

    if not MIN_DIGITS <= len(digits) <= MAX_DIGITS:
        return None

    return "+" + digits


class PhoneNormalizer:
    """
    Normalizes phone numbers, passing administrative numbers through as-is.

    Admin numbers are usually test or review numbers that would not survive
    normalization, so they are matched exactly before any parsing.
    """

    def __init__(self, admin_phone_numbers: Iterable[str] = (), default_country_code: str = "55"):
        self.admin_phone_numbers = set(admin_phone_numbers)
        self.default_country_code = default_country_code

    def is_admin(self, phone: str) -> bool:
        return phone in self.admin_phone_numbers

    def __call__(self, phone: str) -> str:
        """
        Normalize a phone number.

        Raises:
            ValidationError: If the number cannot be parsed
        """
        if phone and self.is_admin(phone):
            return phone

        normalized = normalize_phone(phone, self.default_country_code)
        if not normalized:
            logger.debug(f"Rejected unparsable phone number: {phone!r}")
            raise ValidationError("Not a valid phone")
        return normalized
