"""Testing utilities for AuthVault applications."""

from authvault.auth.context import RequestContext
from authvault.core.settings import AuthVaultSettings


def create_test_settings(
    bucket_name: str = "test-bucket",
    base_path: str = "test/",
    secret_key: str = "test-secret-key-for-testing-only",
    **overrides
) -> AuthVaultSettings:
    """Create AuthVault settings for testing.

    bcrypt runs at its minimum cost so tests stay fast.

    Args:
        bucket_name: The S3 bucket name for tests
        base_path: The S3 base path for tests
        secret_key: JWT secret key for tests
        **overrides: Additional settings to override

    Returns:
        AuthVaultSettings instance configured for testing
    """
    values = {
        "aws_bucket_name": bucket_name,
        "aws_access_key_id": "testing",
        "aws_secret_access_key": "testing",
        "aws_default_region": "us-east-1",
        "aws_url": "http://localhost:4566",
        "secret_key": secret_key,
        "s3_base_path": base_path,
        "debug": True,
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return AuthVaultSettings(**values)


def make_context(
    ip_address: str = "127.0.0.1",
    user_agent: str | None = "pytest-agent/1.0",
    method: str = "POST",
    bearer_token: str | None = None,
    cookies: dict[str, str] | None = None,
    csrf_header: str | None = None,
) -> RequestContext:
    """Build a RequestContext as the HTTP layer would."""
    return RequestContext(
        ip_address=ip_address,
        user_agent=user_agent,
        method=method,
        bearer_token=bearer_token,
        cookies=cookies or {},
        csrf_header=csrf_header,
    )
