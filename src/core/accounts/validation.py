"""
Batch validation of account provisioning requests.

Every rule is checked and every violation is collected, so a client can
fix the whole form in one round trip. Nothing here touches a store.
"""

import re
from datetime import date
from typing import Optional

from ..errors import FieldError
from .models import Borough, ProvisioningRequest, Role

MIN_PASSWORD_LENGTH = 8
MIN_AGE_YEARS = 13
MIN_FULL_NAME_LENGTH = 2

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_USERNAME = re.compile(r"^[A-Za-z0-9_]{3,20}$")

VALID_ROLES = [role.value for role in Role]
VALID_BOROUGHS = [borough.value for borough in Borough]


def age_on(birthday: date, today: date) -> int:
    """Whole years between birthday and today, by calendar (not year subtraction)."""
    years = today.year - birthday.year
    if (today.month, today.day) < (birthday.month, birthday.day):
        years -= 1
    return years


def parse_birthday(raw: Optional[str]) -> Optional[date]:
    """Parse an ISO date (YYYY-MM-DD). A trailing time part is ignored."""
    if not raw:
        return None
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError:
        return None


def validate_request(
    request: ProvisioningRequest,
    today: Optional[date] = None,
) -> list[FieldError]:
    """Return every violated constraint; an empty list means the request is valid."""
    today = today or date.today()
    errors: list[FieldError] = []

    if not request.email or not _EMAIL.fullmatch(request.email.strip()):
        errors.append(FieldError("email", "INVALID_EMAIL", "Invalid email format"))

    if not request.password or len(request.password) < MIN_PASSWORD_LENGTH:
        errors.append(FieldError(
            "password", "WEAK_PASSWORD",
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
        ))

    if not request.username or not _USERNAME.fullmatch(request.username):
        errors.append(FieldError(
            "username", "INVALID_USERNAME",
            "Username must be 3-20 alphanumeric characters or underscores",
        ))

    if not request.birthday:
        errors.append(FieldError("birthday", "MISSING_BIRTHDAY", "Birthday is required"))
    else:
        birthday = parse_birthday(request.birthday)
        if birthday is None:
            errors.append(FieldError("birthday", "INVALID_BIRTHDAY", "Birthday must be a date (YYYY-MM-DD)"))
        elif age_on(birthday, today) < MIN_AGE_YEARS:
            errors.append(FieldError("birthday", "UNDERAGE", f"Must be at least {MIN_AGE_YEARS} years old"))

    if request.borough not in VALID_BOROUGHS:
        errors.append(FieldError(
            "borough", "INVALID_BOROUGH",
            f"Borough must be one of: {', '.join(VALID_BOROUGHS)}",
        ))

    if request.tos_accepted is not True:
        errors.append(FieldError("tos_accepted", "TOS_NOT_ACCEPTED", "Terms of Service must be accepted"))

    if not request.idempotency_key or not request.idempotency_key.strip():
        errors.append(FieldError("idempotency_key", "MISSING_IDEMPOTENCY_KEY", "Idempotency key is required"))

    if not request.full_name or len(request.full_name.strip()) < MIN_FULL_NAME_LENGTH:
        errors.append(FieldError(
            "full_name", "INVALID_FULL_NAME",
            f"Full name must be at least {MIN_FULL_NAME_LENGTH} characters",
        ))

    if request.role not in VALID_ROLES:
        errors.append(FieldError(
            "role", "INVALID_ROLE",
            f"Role must be one of: {', '.join(VALID_ROLES)}",
        ))

    if request.is_performer:
        if not [t for t in request.performance_types if t and t.strip()]:
            errors.append(FieldError(
                "performance_types", "MISSING_PERFORMANCE_TYPES",
                "Performers must select at least one performance type",
            ))
        if not request.social_links():
            errors.append(FieldError(
                "social_media", "MISSING_SOCIAL_MEDIA",
                "Performers must provide at least one social media handle",
            ))

    return errors
