"""Settings for AuthVault, loaded from the environment and ``.env``."""

import logging
import secrets

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from authvault.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ALLOWED_ALGORITHMS = ("HS256", "HS384", "HS512")
MIN_PRODUCTION_BCRYPT_ROUNDS = 12


class AuthVaultSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Field names map to upper-cased environment variables, e.g.
    ``aws_bucket_name`` reads ``AWS_BUCKET_NAME``. Every field has a default
    so the settings can be built in tests without a real environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "AuthVault"
    debug: bool = False
    log_level: str = "INFO"

    # S3 storage
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_default_region: str = "us-east-1"
    aws_bucket_name: str = "authvault-data"
    aws_url: str | None = None
    aws_retry_attempts: int = 3
    s3_base_path: str = "authvault/"

    # Tokens
    secret_key: str = ""
    algorithm: str = "HS256"
    jwt_issuer: str = "authvault"
    jwt_audience: str = "authvault-clients"
    access_token_expire_minutes: int = Field(default=15, ge=1)
    refresh_token_expire_days: int = Field(default=30, ge=1)
    refresh_rotation_threshold_minutes: int = Field(default=60, ge=0)
    session_expire_hours: int = Field(default=24, ge=1)
    remember_me_expire_days: int = Field(default=30, ge=1)

    # Credentials and lockout
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    max_failed_logins: int = Field(default=5, ge=1)
    failed_login_window_minutes: int = Field(default=60, ge=1)
    lockout_minutes: int = Field(default=30, ge=1)

    # HTTP surface
    secure_cookies: bool = False
    enforce_csrf: bool = False
    trust_x_forwarded_for: bool = False
    trusted_proxies: list[str] = Field(default_factory=list)
    rate_limits_enabled: bool = True

    @field_validator("algorithm")
    @classmethod
    def validate_algorithm(cls, value: str) -> str:
        """Only HMAC-SHA2 algorithms are accepted; ``none`` never is."""
        normalized = value.upper()
        if normalized not in ALLOWED_ALGORITHMS:
            raise ValueError(
                f"ALGORITHM must be one of {', '.join(ALLOWED_ALGORITHMS)}"
            )
        return normalized

    @field_validator("s3_base_path")
    @classmethod
    def normalize_base_path(cls, value: str) -> str:
        value = value.strip("/")
        return f"{value}/" if value else ""

    @model_validator(mode="after")
    def validate_secrets(self) -> "AuthVaultSettings":
        """Enforce the SECRET_KEY and bcrypt cost policy.

        With DEBUG=true a missing key is generated (tokens will not survive a
        restart) and low bcrypt costs are allowed for fast tests. Otherwise a
        key of at least 32 characters and a cost of at least 12 are required.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "Using auto-generated SECRET_KEY. Tokens will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if not self.debug and self.bcrypt_rounds < MIN_PRODUCTION_BCRYPT_ROUNDS:
            raise ValueError(
                f"BCRYPT_ROUNDS must be at least {MIN_PRODUCTION_BCRYPT_ROUNDS} "
                "outside of debug mode."
            )
        return self


def load_settings(**overrides) -> AuthVaultSettings:
    """Load settings from the environment, reporting problems as one error.

    Raises:
        ConfigurationError: If the environment does not form valid settings
    """
    try:
        return AuthVaultSettings(**overrides)
    except ValidationError as e:
        problems = "; ".join(
            error["msg"].removeprefix("Value error, ") for error in e.errors()
        )
        raise ConfigurationError(f"Invalid AuthVault configuration: {problems}") from e
