"""
auth/validators.py -- Pure input rules for phones, emails and passwords.

Phone numbers are Russian mobile numbers. The canonical stored form is eleven
digits starting with 7 ("79123456789"); every accepted input spelling maps to
it:

    "+7 (912) 345-67-89" -> "79123456789"
    "89123456789"        -> "79123456789"
    "9123456789"         -> "79123456789"

normalize_phone() is idempotent. It never raises -- an input that cannot be
mapped is returned as its bare digits, and is_valid_phone() rejects it.

Password strength: at least 8 characters with an uppercase letter, a
lowercase letter and a digit. Special characters are accepted but not
required.
"""

from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_UPPER_RE = re.compile(r"[A-Z]")
_LOWER_RE = re.compile(r"[a-z]")
_DIGIT_RE = re.compile(r"\d")

PASSWORD_MIN_LENGTH = 8
PASSWORD_RULES_MESSAGE = (
    "Password must be at least 8 characters long and contain uppercase and lowercase letters and a digit."
)


def normalize_phone(phone: str) -> str:
    digits = _NON_DIGITS.sub("", phone or "")
    if digits.startswith("8"):
        return "7" + digits[1:]
    if digits.startswith("7"):
        return digits
    if len(digits) == 10:
        return "7" + digits
    return digits


def is_valid_phone(phone: str) -> bool:
    normalized = normalize_phone(phone)
    return len(normalized) == 11 and normalized.startswith("7")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match((email or "").strip()))


def is_password_strong(password: str) -> bool:
    """Return True if password satisfies the strength policy described above."""
    if not password or len(password) < PASSWORD_MIN_LENGTH:
        return False
    has_upper = _UPPER_RE.search(password) is not None
    has_lower = _LOWER_RE.search(password) is not None
    has_digit = _DIGIT_RE.search(password) is not None
    return has_upper and has_lower and has_digit


def is_phone_identifier(identifier: str) -> bool:
    """A login identifier is a phone number unless it contains '@'."""
    return "@" not in identifier


def format_phone_for_display(phone: str) -> str:
    """Render a stored phone as "+7 (912) 345-67-89"; unknown shapes pass through."""
    n = normalize_phone(phone)
    if len(n) != 11:
        return phone
    return f"+7 ({n[1:4]}) {n[4:7]}-{n[7:9]}-{n[9:11]}"


def format_phone_for_sms(phone: str) -> str:
    """Render a phone in the E.164 shape SMS gateways expect ("+79123456789")."""
    n = normalize_phone(phone)
    if len(n) != 11:
        return phone
    return f"+{n}"
