"""AuthVault: credential and session lifecycle management on S3-backed storage."""

__version__ = "0.1.0"

# Core components
from authvault.core.client import PoolConfig, S3ClientManager
from authvault.core.exceptions import (
    AccountLockedError,
    AuthVaultError,
    ConfigurationError,
    ConflictError,
    ForbiddenError,
    InputValidationError,
    InvalidCredentialsError,
    NotFoundError,
    RateLimitError,
    StoreConflictError,
    StoreConnectionError,
    StoreError,
    TokenExpiredError,
    TokenRevokedError,
    UnauthorizedError,
)
from authvault.core.settings import AuthVaultSettings
from authvault.core.store import S3RecordStore

# Auth components
from authvault.auth.blacklist import RevocationLedger
from authvault.auth.context import RequestContext
from authvault.auth.credentials import CredentialVerifier, LockoutPolicy
from authvault.auth.models import Account, AccountView, RefreshToken, Session
from authvault.auth.rate_limit import RateLimitConfig, RateLimiter
from authvault.auth.service import AuthService, build_auth_service
from authvault.auth.sessions import SessionStore
from authvault.auth.tokens import TokenIssuer

# FastAPI components
from authvault.fastapi.app import create_app
from authvault.fastapi.error_handlers import register_error_handlers

__all__ = [
    # Version
    "__version__",
    # Core
    "AuthVaultSettings",
    "PoolConfig",
    "S3ClientManager",
    "S3RecordStore",
    "AuthVaultError",
    "InputValidationError",
    "InvalidCredentialsError",
    "UnauthorizedError",
    "TokenExpiredError",
    "TokenRevokedError",
    "AccountLockedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "RateLimitError",
    "StoreError",
    "StoreConflictError",
    "StoreConnectionError",
    "ConfigurationError",
    # Auth
    "Account",
    "AccountView",
    "AuthService",
    "build_auth_service",
    "CredentialVerifier",
    "LockoutPolicy",
    "RateLimitConfig",
    "RateLimiter",
    "RefreshToken",
    "RequestContext",
    "RevocationLedger",
    "Session",
    "SessionStore",
    "TokenIssuer",
    # FastAPI
    "create_app",
    "register_error_handlers",
]
