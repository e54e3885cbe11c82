"""Command line tools for operating an RTalks deployment."""

from __future__ import annotations

import click
import uvicorn

from rtalks.config.settings import AppSettings, get_config_manager
from rtalks.core.auth.service import AdminAuthService
from rtalks.core.auth.tokens import TokenService
from rtalks.core.errors import ValidationError
from rtalks.core.storage.sql_storage import SQLStore
from rtalks.logging.setup import setup_logging


def load_settings(config_path: str | None) -> AppSettings:
    """Load settings from an explicit path or the standard search paths."""
    config_manager = get_config_manager()
    try:
        settings = config_manager.load(config_path)
    except (FileNotFoundError, ValueError) as e:
        raise click.ClickException(f"Error loading configuration: {e}")
    setup_logging(config_manager.logging_config)
    return settings


def open_store(settings: AppSettings) -> SQLStore:
    store = SQLStore(settings.database.url, echo=settings.database.echo)
    store.open()
    return store


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False),
              default=None, help="Path to config.yaml (default: search paths)")
@click.pass_context
def cli(ctx, config_path):
    """RTalks administration CLI"""
    ctx.ensure_object(dict)
    ctx.obj["SETTINGS"] = load_settings(config_path)


@cli.command("init-db")
@click.option("--seed/--no-seed", default=False,
              help="Insert placeholder stats and contact details")
@click.pass_context
def init_db(ctx, seed):
    """Create missing database tables."""
    settings: AppSettings = ctx.obj["SETTINGS"]
    store = open_store(settings)
    try:
        if seed:
            if not store.get_stats():
                store.set_stats(
                    {"attendees": 0, "speakers": 0, "events": 0, "countries": 0})
            if not store.get_contact_info():
                store.set_contact_info(
                    {"email": "info@example.com", "phone": None, "address": None})
    finally:
        store.close()
    click.echo(f"Database ready: {store.safe_url()}")


@cli.command("create-admin")
@click.option("--email", required=True, help="Admin email address")
@click.option("--username", required=True, help="Admin login name")
@click.password_option(help="Admin password (prompted if omitted)")
@click.pass_context
def create_admin(ctx, email, username, password):
    """Create an admin account."""
    settings: AppSettings = ctx.obj["SETTINGS"]
    store = open_store(settings)
    try:
        auth = AdminAuthService(TokenService(settings.security.jwt_secret), store)
        identity = auth.register(email=email, username=username, password=password)
    except (ValidationError, ValueError) as e:
        raise click.ClickException(getattr(e, "message", None) or str(e))
    finally:
        store.close()
    click.echo(f"Admin created: id={identity.id}, username={identity.username}")


@cli.command()
@click.option("--host", default=None, help="Bind address (default: api.host)")
@click.option("--port", default=None, type=int, help="Port (default: api.port)")
@click.pass_context
def serve(ctx, host, port):
    """Run the API with uvicorn."""
    from rtalks.main import create_app

    settings: AppSettings = ctx.obj["SETTINGS"]
    try:
        app = create_app(settings)
    except ValueError as e:
        raise click.ClickException(str(e))
    uvicorn.run(app, host=host or settings.api.host, port=port or settings.api.port)


if __name__ == "__main__":
    cli()
