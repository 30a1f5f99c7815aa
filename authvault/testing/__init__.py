"""Testing utilities for AuthVault."""

from authvault.testing.factories import AccountFactory
from authvault.testing.mocks import InMemoryS3, mock_s3_client
from authvault.testing.utils import create_test_settings, make_context

__all__ = [
    "AccountFactory",
    "InMemoryS3",
    "mock_s3_client",
    "create_test_settings",
    "make_context",
]
