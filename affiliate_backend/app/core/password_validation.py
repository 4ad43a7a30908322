"""Input validation helpers for account registration."""
import re
from typing import List

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?\d{7,15}$")


def validate_password_strength(password: str) -> tuple[bool, List[str]]:
    """
    Validate password strength.

    Returns:
        (is_valid, list_of_errors)
    """
    errors = []

    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")

    if len(password) > 128:
        errors.append("Password is too long (128 characters max)")

    if not re.search(r'[A-Za-z]', password):
        errors.append("Password must contain at least one letter")

    if not re.search(r'\d', password):
        errors.append("Password must contain at least one digit")

    return (len(errors) == 0, errors)


def is_valid_email(email: str) -> bool:
    return bool(email) and EMAIL_RE.match(email) is not None


def normalize_phone(phone: str) -> str:
    """Strip spaces, dashes and brackets users type into phone fields."""
    return re.sub(r"[\s\-()]", "", phone or "")


def is_valid_phone(phone: str) -> bool:
    return PHONE_RE.match(normalize_phone(phone)) is not None
