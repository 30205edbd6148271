import click
from flask import Flask
from flask.cli import AppGroup

from .extensions import db
from .models import User
from .security import current_security
from .security.request_data import normalize_identifier

security_cli = AppGroup("security", help="Login lockout and rate-limit maintenance.")


@security_cli.command("sweep")
def sweep():
    """Purge old login attempts, long-expired lockouts, idle rate-limit windows and old security events."""
    result = current_security().sweep()
    for name, removed in result.items():
        click.echo(f"{name}: {removed} removed")


@security_cli.command("unlock")
@click.argument("identifier")
@click.option("--clear-attempts", is_flag=True, help="Also forget the failed-attempt history.")
def unlock(identifier, clear_attempts):
    """Lift the lockout on IDENTIFIER (email or login id)."""
    identifier = normalize_identifier(identifier)
    security = current_security()
    removed = security.lockout.unlock(identifier, actor="cli")
    if clear_attempts:
        security.ledger.clear(identifier)
    if not removed:
        click.echo(f"{identifier} is not locked")
        return
    click.echo(f"{identifier} unlocked")


@security_cli.command("status")
@click.argument("identifier")
def status(identifier):
    """Show lock status and recent failures for IDENTIFIER."""
    identifier = normalize_identifier(identifier)
    security = current_security()
    lock = security.lockout.is_locked(identifier)
    failures = security.ledger.count_recent_failures(identifier, security.lockout.settings.lookback)
    if lock.locked:
        minutes = lock.remaining_minutes(security.clock.now())
        click.echo(f"{identifier}: LOCKED for {minutes} more minutes (locked {lock.attempt_count} times)")
    else:
        click.echo(f"{identifier}: not locked")
    click.echo(f"recent failed attempts: {failures}")


def register_cli(app: Flask):
    app.cli.add_command(security_cli)

    @app.cli.command("create-user")
    @click.argument("email")
    @click.argument("password")
    @click.option("--name", default=None)
    @click.option("--login-id", default=None)
    @click.option("--role", default="user", show_default=True)
    def create_user(email, password, name, login_id, role):
        """Create an account (bootstrap admins with --role admin)."""
        email = email.strip().lower()
        if User.find_by_login(email) is not None:
            raise click.ClickException("User already exists")

        user = User(email=email, name=name or email.split("@")[0], login_id=login_id, role=role)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f"{user.email} created with role {user.role}")
