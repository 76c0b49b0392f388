"""
auth/forms.py -- Pydantic models for the login and signup forms.

Rules:
  user_name   3-20 chars, letters / digits / underscore, surrounding spaces trimmed
  first/last  1-100 chars, trimmed
  email       optional; when present must look like local@domain.tld
  password    8-20 chars, letters and digits only, at least one lowercase,
              one uppercase and one digit
  verify      must equal password

Pydantic's regex engine has no look-ahead, so the password mix rule is a
field_validator rather than a Field pattern.

parse_signup() converts a ValidationError into SignupInvalid with one
human-readable message per failing field -- the shape the signup page shows.

Layer rule: no imports from api/, web/ or ledger/.
"""

from __future__ import annotations

import re
from typing import Annotated, Optional

from pydantic import BaseModel, StringConstraints, ValidationError, ValidationInfo, field_validator

from core.errors import SignupInvalid, ValidationFailure

_EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")
_PASSWORD_CHARS_RE = re.compile(r"^[A-Za-z\d]+$")

_FIELD_MESSAGES: dict[str, str] = {
    "user_name": "Username must be 3-20 characters: letters, numbers and underscores only.",
    "first_name": "First name is required and must be less than 100 characters.",
    "last_name": "Last name is required and must be less than 100 characters.",
    "email": "Please enter a valid email address.",
    "password": (
        "Password must be 8 to 20 characters including numbers, lowercase and uppercase letters."
    ),
    "verify": "Passwords do not match.",
}

UserName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=20, pattern=r"^\w+$")]
PersonName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]


class LoginForm(BaseModel):
    user_name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
    password: Annotated[str, StringConstraints(min_length=1, max_length=255)]


class SignupForm(BaseModel):
    user_name: UserName
    first_name: PersonName
    last_name: PersonName
    password: str
    verify: str
    email: Optional[str] = None

    @field_validator("user_name")
    @classmethod
    def ascii_user_name(cls, value: str) -> str:
        # \w matches non-ASCII letters too; user names are ASCII only.
        if not value.isascii():
            raise ValueError("user name must be ASCII")
        return value

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        if not value:
            return None
        if not _EMAIL_RE.match(value):
            raise ValueError("invalid email")
        return value.lower()

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        if not 8 <= len(value) <= 20 or not _PASSWORD_CHARS_RE.match(value):
            raise ValueError("bad password length or characters")
        if not (re.search(r"[a-z]", value) and re.search(r"[A-Z]", value) and re.search(r"\d", value)):
            raise ValueError("password needs lowercase, uppercase and a digit")
        return value

    @field_validator("verify")
    @classmethod
    def passwords_match(cls, value: str, info: ValidationInfo) -> str:
        # Only compare once password itself has validated.
        if "password" in info.data and value != info.data["password"]:
            raise ValueError("passwords do not match")
        return value


def parse_signup(**fields) -> SignupForm:
    """Validate raw signup fields. Raises SignupInvalid with per-field messages."""
    try:
        return SignupForm(**fields)
    except ValidationError as exc:
        errors: dict[str, str] = {}
        for err in exc.errors():
            name = str(err["loc"][0]) if err["loc"] else "form"
            errors.setdefault(name, _FIELD_MESSAGES.get(name, "Invalid value."))
        raise SignupInvalid(errors) from exc


def parse_login(user_name: str, password: str) -> LoginForm:
    """Validate the login form. Raises ValidationFailure when a field is empty."""
    try:
        return LoginForm(user_name=user_name, password=password)
    except ValidationError as exc:
        raise ValidationFailure("Username and password are required.") from exc
