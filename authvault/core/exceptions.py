"""Custom exceptions for AuthVault.

This module provides the error taxonomy used across the library. Every
exception carries a stable ``code`` and an HTTP ``status_code`` so the
transport layer can render it without inspecting the type.
"""

from datetime import datetime


class AuthVaultError(Exception):
    """Base exception for all AuthVault errors.

    All AuthVault exceptions inherit from this class, making it easy
    to catch all library-specific errors.
    """

    code: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str, hint: str | None = None):
        """Initialize the exception.

        Args:
            message: The error message
            hint: Optional hint for resolving the error
        """
        self.message = message
        self.hint = hint
        super().__init__(message)

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\nHint: {self.hint}"
        return self.message

    @property
    def details(self) -> dict | list | None:
        """Extra, client-safe information rendered with the error."""
        return None


class InputValidationError(AuthVaultError):
    """Raised when a request payload fails schema validation."""

    code = "validation_error"
    status_code = 400

    def __init__(
        self,
        message: str = "Request validation failed",
        field: str | None = None,
        errors: list[dict] | None = None,
    ):
        """Initialize the validation error.

        Args:
            message: The error message
            field: The field that failed validation, if only one did
            errors: Field-level errors (``field``, ``message``, ``code``)
        """
        self.field = field
        self.errors = errors or []

        hint = None
        if field:
            hint = f"Check the value for field '{field}'."

        super().__init__(message, hint)

    @property
    def details(self) -> list | None:
        return self.errors or None


class InvalidCredentialsError(AuthVaultError):
    """Raised when an email/password pair does not verify.

    The message never says whether the account exists.
    """

    code = "invalid_credentials"
    status_code = 401

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message, "Check your email and password.")


class UnauthorizedError(AuthVaultError):
    """Raised when a request carries no usable credentials."""

    code = "unauthorized"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message,
            "Ensure you're sending a valid token in the Authorization header.",
        )


class TokenExpiredError(UnauthorizedError):
    """Raised when a token's ``exp`` claim is in the past."""

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message)


class MalformedTokenError(UnauthorizedError):
    """Raised when a token cannot be decoded or its signature is invalid."""

    def __init__(self, message: str = "Malformed token"):
        super().__init__(message)


class WrongTokenTypeError(UnauthorizedError):
    """Raised when a refresh token is used as an access token or vice versa."""

    def __init__(self, expected: str, actual: str | None):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} token, got {actual or 'unknown'}")


class TokenRevokedError(UnauthorizedError):
    """Raised when a token has been blacklisted or its record revoked."""

    def __init__(self, message: str = "Token has been revoked"):
        super().__init__(message)


class AccountLockedError(AuthVaultError):
    """Raised when an account is locked against credential verification."""

    code = "account_locked"
    status_code = 403

    def __init__(self, locked_until: datetime | None = None):
        """Initialize the lock error.

        Args:
            locked_until: When the lock lapses, or None for an indefinite lock
        """
        self.locked_until = locked_until

        if locked_until:
            hint = f"Try again after {locked_until.isoformat()}."
        else:
            hint = "Contact an administrator to unlock the account."

        super().__init__("Account is temporarily locked", hint)

    @property
    def details(self) -> dict:
        return {
            "locked_until": self.locked_until.isoformat() if self.locked_until else None
        }


class ForbiddenError(AuthVaultError):
    """Raised when an authenticated caller lacks permission."""

    code = "forbidden"
    status_code = 403

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, "You don't have permission to perform this action.")


class NotFoundError(AuthVaultError):
    """Raised when a referenced record does not exist."""

    code = "not_found"
    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class ConflictError(AuthVaultError):
    """Raised when a write collides with existing state."""

    code = "conflict"
    status_code = 409

    def __init__(self, message: str, field: str | None = None):
        """Initialize the conflict error.

        Args:
            message: The error message
            field: The unique field that collided, if any
        """
        self.field = field

        hint = None
        if field:
            hint = f"The value for '{field}' already exists. Choose a different value."

        super().__init__(message, hint)

    @property
    def details(self) -> dict | None:
        if self.field:
            return {"field": self.field}
        return None


class RateLimitError(AuthVaultError):
    """Raised when rate limit is exceeded."""

    code = "rate_limit_exceeded"
    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: int | None = None,
    ):
        """Initialize the rate limit error.

        Args:
            message: The error message
            retry_after: Seconds until the rate limit resets
        """
        self.retry_after = retry_after

        if retry_after:
            hint = f"Try again in {retry_after} seconds."
        else:
            hint = "Please wait before making more requests."

        super().__init__(message, hint)

    @property
    def details(self) -> dict | None:
        if self.retry_after:
            return {"retry_after": self.retry_after}
        return None


class StoreError(AuthVaultError):
    """Raised when a persistent store operation fails."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        key: str | None = None,
        original_error: Exception | None = None,
    ):
        """Initialize the store error.

        Args:
            message: The error message
            operation: The S3 operation that failed (e.g., 'get_object')
            key: The S3 key involved in the operation
            original_error: The original exception
        """
        self.operation = operation
        self.key = key
        self.original_error = original_error

        hint = None
        if "NoSuchBucket" in message:
            hint = "The specified bucket does not exist."
        elif "AccessDenied" in message:
            hint = "Check your IAM permissions for this operation."

        super().__init__(message, hint)


class StoreConflictError(StoreError):
    """Raised when a conditional write loses (key exists or ETag changed)."""

    def __init__(self, key: str, operation: str = "put_object"):
        super().__init__(
            f"Conditional write failed for '{key}'",
            operation=operation,
            key=key,
        )


class StoreConnectionError(StoreError):
    """Raised when the S3 client cannot be created or reached."""

    def __init__(
        self,
        message: str | None = None,
        original_error: Exception | None = None,
        endpoint: str | None = None,
    ):
        """Initialize the connection error.

        Args:
            message: Custom error message (optional)
            original_error: The original exception that caused this error
            endpoint: The S3 endpoint URL being connected to
        """
        self.endpoint = endpoint
        final_message = message or f"Could not connect to S3 at {endpoint or 'AWS'}"
        super().__init__(final_message, original_error=original_error)
        if endpoint and "localhost" in endpoint:
            self.hint = (
                "If using LocalStack, ensure it's running: "
                "docker run -d -p 4566:4566 localstack/localstack"
            )
        else:
            self.hint = "Check your AWS credentials and network connection."


class ConfigurationError(AuthVaultError):
    """Raised when AuthVault configuration is invalid."""

    def __init__(
        self,
        message: str | None = None,
        missing_fields: list[str] | None = None,
    ):
        """Initialize the configuration error.

        Args:
            message: Custom error message
            missing_fields: List of missing configuration fields
        """
        self.missing_fields = missing_fields or []

        if missing_fields:
            fields_str = ", ".join(missing_fields)
            message = f"Missing required configuration: {fields_str}"
            hint = "Set these as environment variables or in your .env file."
        else:
            hint = "Check your AuthVault configuration."

        super().__init__(message or "Invalid AuthVault configuration", hint)
