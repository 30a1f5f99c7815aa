"""AuthVault CLI tool."""

import asyncio
import logging
from contextlib import asynccontextmanager

import click

from authvault import __version__
from authvault.auth.context import RequestContext
from authvault.auth.service import AuthService, build_auth_service
from authvault.core.client import S3ClientManager
from authvault.core.exceptions import AuthVaultError, ConfigurationError
from authvault.core.settings import AuthVaultSettings, load_settings

CLI_CONTEXT = RequestContext(ip_address="cli", user_agent=f"authvault-cli/{__version__}")


def _settings(ctx: click.Context) -> AuthVaultSettings:
    ctx.ensure_object(dict)
    if "settings" not in ctx.obj:
        try:
            ctx.obj["settings"] = load_settings()
        except ConfigurationError as e:
            raise click.ClickException(e.message) from e
    return ctx.obj["settings"]


@asynccontextmanager
async def open_service(settings: AuthVaultSettings):
    """Open an S3 client for one command and wire the auth service around it."""
    manager = S3ClientManager(settings)
    async with manager.session() as client:
        await manager.ensure_bucket_exists()
        yield build_auth_service(settings, client)


def _run(ctx: click.Context, action) -> None:
    """Run ``action(service)`` and turn AuthVault errors into CLI errors."""
    settings = _settings(ctx)

    async def _main():
        async with open_service(settings) as service:
            return await action(service)

    try:
        asyncio.run(_main())
    except AuthVaultError as e:
        raise click.ClickException(e.message) from e


@click.group()
@click.pass_context
def cli(ctx):
    """AuthVault CLI - Manage accounts and sessions."""
    ctx.ensure_object(dict)


@cli.command()
@click.option("--host", default="127.0.0.1", help="Interface to bind")
@click.option("--port", default=8000, type=int, help="Port to listen on")
@click.option("--reload", is_flag=True, help="Reload on code changes")
@click.pass_context
def serve(ctx, host, port, reload):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = _settings(ctx)
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    )
    click.echo(f"Starting {settings.app_name} on http://{host}:{port}")
    uvicorn.run(
        "authvault.fastapi.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@cli.command("create-admin")
@click.argument("email")
@click.argument("username")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="Password for the new account",
)
@click.pass_context
def create_admin(ctx, email, username, password):
    """Create an administrator account."""

    async def _create(service: AuthService):
        account = await service.create_account(email, username, password, role="admin")
        click.echo(f"Created admin {account.username} <{account.email}> ({account.id})")

    _run(ctx, _create)


@cli.command()
@click.argument("email")
@click.option(
    "--role",
    type=click.Choice(["user", "admin"]),
    default="admin",
    show_default=True,
    help="Role to assign",
)
@click.pass_context
def promote(ctx, email, role):
    """Set the role of an existing account."""

    async def _promote(service: AuthService):
        account = await service.set_role(email, role)
        click.echo(f"{account.email} is now {account.role}")

    _run(ctx, _promote)


@cli.command()
@click.argument("email")
@click.pass_context
def unlock(ctx, email):
    """Unlock an account locked by failed logins."""

    async def _unlock(service: AuthService):
        account = await service.unlock(email, CLI_CONTEXT)
        click.echo(f"Unlocked {account.email}")

    _run(ctx, _unlock)


@cli.command("list-accounts")
@click.option("--limit", default=None, type=int, help="Maximum number of accounts")
@click.pass_context
def list_accounts(ctx, limit):
    """List accounts."""

    async def _list(service: AuthService):
        accounts = await service.list_accounts(limit)
        if not accounts:
            click.echo("No accounts found")
            return
        for account in accounts:
            status = "locked" if account.is_locked else "active"
            click.echo(f"{account.id}  {account.email:<40} {account.username:<30} {account.role:<6} {status}")

    _run(ctx, _list)


@cli.command()
@click.pass_context
def cleanup(ctx):
    """Purge expired sessions, tokens, revocations and old login attempts."""

    async def _cleanup(service: AuthService):
        counts = await service.cleanup()
        for name, count in counts.items():
            click.echo(f"{name}: {count} removed")

    _run(ctx, _cleanup)


@cli.command()
def version():
    """Show AuthVault version."""
    click.echo(f"AuthVault version: {__version__}")


if __name__ == "__main__":
    cli()
