"""Shared fixtures for AuthVault tests."""

import pytest

from authvault.testing.fixtures import (  # noqa: F401
    account_factory,
    api_client,
    auth_service,
    authvault_app,
    authvault_settings,
    mock_s3,
    rate_limiter,
)
from authvault.testing.utils import make_context


@pytest.fixture
def context():
    """A request context for a client at 127.0.0.1."""
    return make_context()
