"""
Unit tests for batch validation of registration requests.

Validation must report every violation at once and never consult a store.
"""

from datetime import date

import pytest

from src.core.accounts.models import ProvisioningRequest
from src.core.accounts.validation import age_on, parse_birthday, validate_request

TODAY = date(2026, 6, 15)


def codes(request: ProvisioningRequest) -> set[str]:
    return {error.code for error in validate_request(request, today=TODAY)}


class TestAge:

    def test_birthday_later_this_year_does_not_count_yet(self):
        assert age_on(date(2013, 6, 16), TODAY) == 12

    def test_birthday_today_counts(self):
        assert age_on(date(2013, 6, 15), TODAY) == 13

    def test_parse_birthday_accepts_timestamp_suffix(self):
        assert parse_birthday("1990-01-31T00:00:00Z") == date(1990, 1, 31)

    def test_parse_birthday_rejects_garbage(self):
        assert parse_birthday("31/01/1990") is None


class TestValidateRequest:

    def test_valid_request_has_no_errors(self, make_request):
        assert validate_request(make_request(), today=TODAY) == []

    def test_empty_request_reports_every_required_field(self):
        assert codes(ProvisioningRequest()) == {
            "INVALID_EMAIL",
            "WEAK_PASSWORD",
            "INVALID_USERNAME",
            "MISSING_BIRTHDAY",
            "INVALID_BOROUGH",
            "TOS_NOT_ACCEPTED",
            "MISSING_IDEMPOTENCY_KEY",
            "INVALID_FULL_NAME",
            "INVALID_ROLE",
        }

    @pytest.mark.parametrize("overrides, code", [
        ({"email": "not-an-email"}, "INVALID_EMAIL"),
        ({"password": "short"}, "WEAK_PASSWORD"),
        ({"username": "ab"}, "INVALID_USERNAME"),
        ({"username": "has space"}, "INVALID_USERNAME"),
        ({"username": "x" * 21}, "INVALID_USERNAME"),
        ({"username": "abc\n"}, "INVALID_USERNAME"),
        ({"birthday": "yesterday"}, "INVALID_BIRTHDAY"),
        ({"birthday": "2013-06-16"}, "UNDERAGE"),
        ({"borough": "NJ"}, "INVALID_BOROUGH"),
        ({"tos_accepted": False}, "TOS_NOT_ACCEPTED"),
        ({"idempotency_key": "   "}, "MISSING_IDEMPOTENCY_KEY"),
        ({"full_name": " A "}, "INVALID_FULL_NAME"),
        ({"role": "admin"}, "INVALID_ROLE"),
    ])
    def test_single_violation(self, make_request, overrides, code):
        assert codes(make_request(**overrides)) == {code}

    def test_thirteenth_birthday_today_is_old_enough(self, make_request):
        assert codes(make_request(birthday="2013-06-15")) == set()

    def test_performer_needs_types_and_a_social_handle(self, make_request):
        request = make_request(role="street_performer", socials={"instagram": "  "})
        assert codes(request) == {"MISSING_PERFORMANCE_TYPES", "MISSING_SOCIAL_MEDIA"}

    def test_complete_performer_is_valid(self, make_request):
        request = make_request(
            role="street_performer",
            performance_types=["music"],
            socials={"tiktok": "@maria"},
        )
        assert codes(request) == set()

    def test_errors_carry_field_names(self, make_request):
        errors = validate_request(make_request(email="nope", password="x"), today=TODAY)
        assert {(e.field, e.code) for e in errors} == {
            ("email", "INVALID_EMAIL"),
            ("password", "WEAK_PASSWORD"),
        }
