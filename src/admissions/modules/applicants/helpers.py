"""
Applicant Identifier Helpers

Normalization of login identifiers. Both registration and OTP login go
through these functions so lookups always compare canonical forms.
"""

import re

from email_validator import EmailNotValidError, validate_email

_PHONE_SEPARATORS = re.compile(r"[\s\-().]")
_PHONE_PATTERN = re.compile(r"^\+?\d{7,15}$")


def normalize_email(value: str) -> str:
    """
    Lowercase and syntax-check an email address.

    Raises:
        ValueError: If the address is malformed
    """
    try:
        result = validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(f"Invalid email address: {e}") from e
    return result.normalized.lower()


def normalize_phone(value: str) -> str:
    """
    Canonical phone form: optional leading '+' followed by 7-15 digits.

    Spaces, dashes, dots and parentheses are stripped; a leading "00"
    international prefix becomes '+'.

    Raises:
        ValueError: If the number is malformed
    """
    phone = _PHONE_SEPARATORS.sub("", value.strip())
    if phone.startswith("00"):
        phone = "+" + phone[2:]
    if not _PHONE_PATTERN.match(phone):
        raise ValueError("Invalid phone number")
    return phone


def normalize_identifier(value: str) -> str:
    """Normalize an email-or-phone login identifier."""
    if not value or not value.strip():
        raise ValueError("Identifier is required")
    if "@" in value:
        return normalize_email(value)
    return normalize_phone(value)


def mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    return f"{local[:1]}***@{domain}"


def mask_phone(phone: str) -> str:
    return f"{'*' * max(len(phone) - 4, 0)}{phone[-4:]}"
