"""Typed request schemas and explicit parse results.

Each endpoint has its own schema listing every field, its constraints and
the message produced when a constraint fails. :func:`parse_request` never
raises; it returns a :class:`ParseResult` the caller must inspect.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Literal, Type, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from authvault.auth.context import DeviceInfo
from authvault.auth.passwords import MAX_PASSWORD_LENGTH, validate_password
from authvault.core.exceptions import InputValidationError

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
RESERVED_USERNAMES = {"admin", "root", "system", "api", "www", "mail", "support"}

T = TypeVar("T", bound=BaseModel)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def check_email(value: str) -> str:
    value = normalize_email(value)
    if len(value) > 254:
        raise ValueError("Email must be at most 254 characters")
    domain = value.rsplit("@", 1)[-1]
    if "." not in domain or len(domain) <= 3:
        raise ValueError("Email domain is invalid")
    return value


def check_username(value: str) -> str:
    value = value.strip()
    if len(value) < 3:
        raise ValueError("Username must be at least 3 characters")
    if len(value) > 30:
        raise ValueError("Username must be at most 30 characters")
    if not USERNAME_PATTERN.match(value):
        raise ValueError(
            "Username can only contain letters, numbers, underscores, and hyphens"
        )
    if value.lower() in RESERVED_USERNAMES:
        raise ValueError("This username is reserved")
    return value


def check_password_policy(value: str) -> str:
    is_valid, message = validate_password(value)
    if not is_valid:
        raise ValueError(message)
    return value


class RequestSchema(BaseModel):
    """Base for request bodies: camelCase on the wire, snake_case in code."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DevicePayload(RequestSchema):
    user_agent: str | None = Field(default=None, alias="userAgent", max_length=512)
    platform: str | None = Field(default=None, max_length=100)
    device_id: str | None = Field(default=None, alias="deviceId", max_length=200)

    def to_device(self) -> DeviceInfo:
        return DeviceInfo(
            user_agent=self.user_agent,
            platform=self.platform,
            device_id=self.device_id,
        )


class LoginRequest(RequestSchema):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)
    remember_me: bool = Field(default=False, alias="rememberMe")
    device_info: DevicePayload | None = Field(default=None, alias="deviceInfo")

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        value = normalize_email(value)
        if len(value) > 255:
            raise ValueError("Email must be at most 255 characters")
        return value


class RegisterRequest(RequestSchema):
    email: EmailStr
    username: str
    password: str
    confirm_password: str = Field(..., alias="confirmPassword")
    accept_terms: bool = Field(..., alias="acceptTerms")
    device_info: DevicePayload | None = Field(default=None, alias="deviceInfo")

    @field_validator("email")
    @classmethod
    def validate_email_shape(cls, value: str) -> str:
        return check_email(value)

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        return check_username(value)

    @field_validator("password")
    @classmethod
    def validate_password_strength(cls, value: str) -> str:
        return check_password_policy(value)

    @field_validator("accept_terms")
    @classmethod
    def terms_accepted(cls, value: bool) -> bool:
        if not value:
            raise ValueError("You must accept the terms and conditions")
        return value

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class RefreshRequest(RequestSchema):
    refresh_token: str | None = Field(default=None, alias="refreshToken", max_length=4096)
    device_info: DevicePayload | None = Field(default=None, alias="deviceInfo")


class LogoutRequest(RequestSchema):
    logout_all: bool = Field(default=False, alias="logoutAll")
    reason: str | None = Field(default=None, max_length=255)
    refresh_token: str | None = Field(default=None, alias="refreshToken", max_length=4096)


class ForceLogoutRequest(RequestSchema):
    user_id: str = Field(..., alias="userId", min_length=1)
    reason: str | None = Field(default=None, max_length=255)


class ChangePasswordRequest(RequestSchema):
    current_password: str = Field(
        ..., alias="currentPassword", min_length=1, max_length=MAX_PASSWORD_LENGTH
    )
    new_password: str = Field(..., alias="newPassword")
    confirm_password: str = Field(..., alias="confirmPassword")

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        return check_password_policy(value)

    @model_validator(mode="after")
    def check_passwords(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        if self.new_password == self.current_password:
            raise ValueError("New password must be different from the current password")
        return self


class ChangeUsernameRequest(RequestSchema):
    new_username: str = Field(..., alias="newUsername")

    @field_validator("new_username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        return check_username(value)


class ProfileUpdateRequest(RequestSchema):
    username: str | None = None
    email: EmailStr | None = None

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str | None) -> str | None:
        return check_username(value) if value is not None else None

    @field_validator("email")
    @classmethod
    def validate_email_shape(cls, value: str | None) -> str | None:
        return check_email(value) if value is not None else None

    @model_validator(mode="after")
    def not_empty(self) -> "ProfileUpdateRequest":
        if self.username is None and self.email is None:
            raise ValueError("At least one of username or email is required")
        return self


class AvailabilityQuery(RequestSchema):
    email: str | None = None
    username: str | None = None

    @model_validator(mode="after")
    def one_of(self) -> "AvailabilityQuery":
        if not self.email and not self.username:
            raise ValueError("Email or username parameter required")
        return self


class AdminAccountUpdate(RequestSchema):
    role: Literal["user", "admin"] | None = None
    is_locked: bool | None = Field(default=None, alias="isLocked")
    locked_until: datetime | None = Field(default=None, alias="lockedUntil")

    @model_validator(mode="after")
    def not_empty(self) -> "AdminAccountUpdate":
        if self.role is None and self.is_locked is None and self.locked_until is None:
            raise ValueError("At least one of role, isLocked or lockedUntil is required")
        return self


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str
    code: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message, "code": self.code}


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """Outcome of parsing a payload: either a value or field errors."""

    value: T | None = None
    errors: tuple[FieldError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.value is not None and not self.errors

    def unwrap(self) -> T:
        """Return the parsed value or raise the matching validation error.

        Raises:
            InputValidationError: If parsing failed
        """
        if not self.ok:
            first = self.errors[0] if self.errors else None
            raise InputValidationError(
                first.message if first else "Request validation failed",
                field=first.field if first and first.field else None,
                errors=[error.to_dict() for error in self.errors],
            )
        return self.value


def _field_errors(exc: ValidationError, model_class: Type[BaseModel]) -> tuple[FieldError, ...]:
    aliases = {
        name: info.alias
        for name, info in model_class.model_fields.items()
        if info.alias
    }
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error["loc"]]
        if loc:
            loc[0] = aliases.get(loc[0], loc[0])
        message = error["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.append(FieldError(field=".".join(loc), message=message, code=error["type"]))
    return tuple(errors)


def parse_request(model_class: Type[T], payload: Any) -> ParseResult[T]:
    """Parse a decoded JSON payload into ``model_class``.

    Args:
        model_class: The request schema
        payload: The decoded body (anything; non-objects fail validation)

    Returns:
        A ParseResult holding either the value or field-level errors
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return ParseResult(
            errors=(FieldError(field="", message="Request body must be a JSON object", code="type_error"),)
        )
    try:
        return ParseResult(value=model_class.model_validate(payload))
    except ValidationError as e:
        return ParseResult(errors=_field_errors(e, model_class))
