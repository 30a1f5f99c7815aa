"""Pytest fixtures for AuthVault testing.

Import the fixtures you need into your conftest.py:

    from authvault.testing.fixtures import authvault_settings, mock_s3, auth_service
"""

from collections.abc import AsyncGenerator, Generator

import httpx
import pytest

from authvault.auth.rate_limit import RateLimiter
from authvault.auth.service import AuthService, build_auth_service
from authvault.core.settings import AuthVaultSettings
from authvault.fastapi.app import create_app
from authvault.testing.factories import AccountFactory
from authvault.testing.mocks import InMemoryS3
from authvault.testing.utils import create_test_settings


@pytest.fixture
def authvault_settings() -> AuthVaultSettings:
    """Provide test settings for AuthVault."""
    return create_test_settings()


@pytest.fixture
def mock_s3(authvault_settings: AuthVaultSettings) -> Generator[InMemoryS3, None, None]:
    """Provide an in-memory S3 mock with the test bucket created."""
    s3 = InMemoryS3()
    s3._ensure_bucket(authvault_settings.aws_bucket_name)
    yield s3
    s3.clear()


@pytest.fixture
def auth_service(authvault_settings: AuthVaultSettings, mock_s3: InMemoryS3) -> AuthService:
    """Provide a fully wired AuthService backed by the S3 mock."""
    return build_auth_service(authvault_settings, mock_s3)


@pytest.fixture
def account_factory() -> AccountFactory:
    return AccountFactory()


@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter()


@pytest.fixture
def authvault_app(
    authvault_settings: AuthVaultSettings,
    mock_s3: InMemoryS3,
    rate_limiter: RateLimiter,
):
    """Provide the FastAPI app wired to the S3 mock."""
    return create_app(settings=authvault_settings, s3_client=mock_s3, rate_limiter=rate_limiter)


@pytest.fixture
async def api_client(authvault_app) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Provide an async HTTP client talking to the app in-process.

    Yields:
        httpx.AsyncClient bound to the app
    """
    transport = httpx.ASGITransport(app=authvault_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
