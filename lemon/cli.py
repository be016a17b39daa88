from __future__ import annotations

import click
from flask import current_app
from flask.cli import with_appcontext

from .models import init_db
from .services.access import ROLE_ADMIN, is_active_admin
from .services.container import get_services
from .services.credentials import create_upload_key, hash_password, hash_upload_key
from .services.store import ConflictError
from .services.users import (
    _password_rules_error,
    is_valid_email,
    is_valid_username,
    normalize_email,
    normalize_username,
)


@click.command("init-db")
@with_appcontext
def init_db_command():
    """Create the database tables."""
    init_db(get_services().store.engine)
    click.echo("Database ready.")


@click.command("create-admin")
@with_appcontext
@click.argument("email")
@click.argument("username")
@click.password_option()
def create_admin_command(email: str, username: str, password: str):
    """Create an admin account and print its upload key once."""
    email = normalize_email(email)
    username = normalize_username(username)
    if not is_valid_email(email):
        raise click.BadParameter("invalid email address", param_hint="EMAIL")
    if not is_valid_username(username):
        raise click.BadParameter("must match [a-z0-9_-]{3,20}", param_hint="USERNAME")
    password_error = _password_rules_error(password)
    if password_error:
        raise click.BadParameter(password_error, param_hint="--password")

    upload_key = create_upload_key()
    try:
        user = get_services().store.create_user(
            email=email,
            username=username,
            password_hash=hash_password(password),
            upload_key_hash=hash_upload_key(upload_key),
            role=ROLE_ADMIN,
        )
    except ConflictError as exc:
        raise click.ClickException(str(exc)) from exc

    current_app.logger.info("Created admin %s from the command line", user.id)
    click.echo(f"Created admin {user.username} ({user.id})")
    click.echo(f"Upload key: {upload_key}")


@click.command("create-invite")
@with_appcontext
@click.option("--by", "username", required=True, help="Admin username recorded as creator.")
@click.option("--count", default=1, show_default=True, type=click.IntRange(1, 50))
def create_invite_command(username: str, count: int):
    """Issue platform invites."""
    store = get_services().store
    admin = store.find_user_by_username(normalize_username(username))
    if not is_active_admin(admin):
        raise click.ClickException(f"{username} is not an active admin")
    for _ in range(count):
        click.echo(store.create_invite(created_by=admin.id).code)


@click.command("purge-sessions")
@with_appcontext
def purge_sessions_command():
    """Delete expired sessions."""
    services = get_services()
    removed = services.store.purge_expired_sessions(int(services.now()))
    click.echo(f"Removed {removed} expired sessions.")


def register_cli(app) -> None:
    for command in (
        init_db_command,
        create_admin_command,
        create_invite_command,
        purge_sessions_command,
    ):
        app.cli.add_command(command)
