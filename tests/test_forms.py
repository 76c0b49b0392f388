"""
tests/test_forms.py -- Signup and login form validation.
"""

from __future__ import annotations

import pytest

from auth.forms import parse_login, parse_signup
from core.errors import SignupInvalid, ValidationFailure

VALID = {
    "user_name": "new_user",
    "first_name": "New",
    "last_name": "User",
    "password": "Passw0rd",
    "verify": "Passw0rd",
    "email": "",
}


def test_valid_signup_trims_and_drops_blank_email() -> None:
    form = parse_signup(**{**VALID, "user_name": "  new_user  ", "first_name": " New "})
    assert form.user_name == "new_user"
    assert form.first_name == "New"
    assert form.email is None


def test_email_is_normalised() -> None:
    assert parse_signup(**{**VALID, "email": " New@Example.COM "}).email == "new@example.com"


@pytest.mark.parametrize(
    "field,value",
    [
        ("user_name", "ab"),
        ("user_name", "has space"),
        ("user_name", "x" * 21),
        ("first_name", "   "),
        ("last_name", "y" * 101),
        ("email", "not-an-email"),
    ],
)
def test_field_errors(field, value) -> None:
    with pytest.raises(SignupInvalid) as exc_info:
        parse_signup(**{**VALID, field: value})
    assert field in exc_info.value.field_errors


@pytest.mark.parametrize("password", ["short1A", "alllowercase1", "ALLUPPER123", "NoDigitsHere", "Sym!bol123", "A1" + "a" * 19])
def test_weak_passwords_rejected(password) -> None:
    with pytest.raises(SignupInvalid) as exc_info:
        parse_signup(**{**VALID, "password": password, "verify": password})
    assert "password" in exc_info.value.field_errors


def test_verify_must_match() -> None:
    with pytest.raises(SignupInvalid) as exc_info:
        parse_signup(**{**VALID, "verify": "Passw0rdX"})
    assert list(exc_info.value.field_errors) == ["verify"]


def test_login_requires_both_fields() -> None:
    with pytest.raises(ValidationFailure):
        parse_login("  ", "secret")
    with pytest.raises(ValidationFailure):
        parse_login("alice", "")
    assert parse_login(" alice ", "secret").user_name == "alice"
