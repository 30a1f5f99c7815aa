"""Tests for the authvault command line interface."""

import asyncio
from contextlib import asynccontextmanager

import pytest
from click.testing import CliRunner

from authvault import __version__, cli as cli_module
from authvault.auth.service import build_auth_service
from authvault.cli import cli
from authvault.testing.mocks import InMemoryS3
from authvault.testing.utils import create_test_settings

PASSWORD = "Abc12345!"


@pytest.fixture
def settings():
    return create_test_settings()


@pytest.fixture
def store(settings):
    s3 = InMemoryS3()
    s3._ensure_bucket(settings.aws_bucket_name)
    return s3


@pytest.fixture
def runner(monkeypatch, store):
    @asynccontextmanager
    async def fake_open_service(settings):
        yield build_auth_service(settings, store)

    monkeypatch.setattr(cli_module, "open_service", fake_open_service)
    return CliRunner()


def invoke(runner, settings, *args):
    return runner.invoke(cli, list(args), obj={"settings": settings})


def test_version(runner, settings):
    """version prints the package version."""
    result = invoke(runner, settings, "version")

    assert result.exit_code == 0
    assert f"AuthVault version: {__version__}" in result.output


def test_create_admin_and_list(runner, settings):
    """create-admin stores an admin that list-accounts shows."""
    result = invoke(
        runner, settings, "create-admin", "root@example.com", "rootuser", "--password", PASSWORD
    )
    assert result.exit_code == 0, result.output
    assert "Created admin rootuser <root@example.com>" in result.output

    result = invoke(runner, settings, "list-accounts")
    assert result.exit_code == 0
    assert "root@example.com" in result.output
    assert "admin" in result.output


def test_create_admin_rejects_weak_password(runner, settings):
    """create-admin refuses weak passwords."""
    result = invoke(
        runner, settings, "create-admin", "root@example.com", "rootuser", "--password", "weak"
    )

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_create_admin_prompts_for_password(runner, settings):
    """create-admin prompts when no password is given."""
    result = runner.invoke(
        cli,
        ["create-admin", "root@example.com", "rootuser"],
        obj={"settings": settings},
        input=f"{PASSWORD}\n{PASSWORD}\n",
    )

    assert result.exit_code == 0, result.output
    assert "Created admin" in result.output


def test_list_accounts_empty(runner, settings):
    """list-accounts reports an empty store."""
    result = invoke(runner, settings, "list-accounts")

    assert result.exit_code == 0
    assert "No accounts found" in result.output


def test_promote_and_demote(runner, settings, store):
    """promote sets either role."""
    service = build_auth_service(settings, store)
    asyncio.run(service.create_account("alice@example.com", "alice", PASSWORD))

    result = invoke(runner, settings, "promote", "alice@example.com")
    assert result.exit_code == 0
    assert "alice@example.com is now admin" in result.output

    result = invoke(runner, settings, "promote", "alice@example.com", "--role", "user")
    assert "alice@example.com is now user" in result.output


def test_promote_unknown_account(runner, settings):
    """promote fails for unknown emails."""
    result = invoke(runner, settings, "promote", "ghost@example.com")

    assert result.exit_code == 1
    assert "Account not found" in result.output


def test_unlock(runner, settings, store):
    """unlock clears an account lock."""
    service = build_auth_service(settings, store)

    async def seed():
        account = await service.create_account("alice@example.com", "alice", PASSWORD)

        def lock(target):
            target.is_locked = True

        await service.accounts.modify(account.id, lock)

    asyncio.run(seed())

    result = invoke(runner, settings, "unlock", "alice@example.com")
    assert result.exit_code == 0
    assert "Unlocked alice@example.com" in result.output

    account = asyncio.run(service.accounts.get_by_email("alice@example.com"))
    assert account.is_locked is False


def test_cleanup(runner, settings):
    """cleanup prints a count per record type."""
    result = invoke(runner, settings, "cleanup")

    assert result.exit_code == 0
    for name in ("sessions", "refresh_tokens", "revocations", "login_attempts"):
        assert f"{name}: 0 removed" in result.output


def test_invalid_configuration(runner, monkeypatch):
    """Invalid settings exit with a readable error."""
    monkeypatch.setenv("SECRET_KEY", "short")

    result = runner.invoke(cli, ["list-accounts"], obj={})

    assert result.exit_code == 1
    assert "Invalid AuthVault configuration" in result.output
