"""Typer CLI for Philia Hub."""

from __future__ import annotations

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import settings
from .crud import get_user_by_email
from .database import get_session
from .permissions import ROLES
from .scheduler import purge_tokens
from .storage import init_db, upgrade_database

app = typer.Typer(help="Philia Hub command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        message = str(getattr(exc, "orig", exc)).lower()
        if "readonly" in message or "read-only" in message:
            typer.secho(
                "Unable to upgrade because the database is read-only. "
                f"Ensure write access to {settings.database_path}.",
                err=True,
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1)
        raise

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("purge")
def purge() -> None:
    """Delete expired verification and password reset tokens."""
    init_db()
    removed = purge_tokens()
    typer.echo(f"Removed {removed} expired token(s).")


@app.command("set-role")
def set_role(
    email: str = typer.Argument(..., help="Account email"),
    role: str = typer.Argument(..., help="member, org_admin, moderator or admin"),
) -> None:
    """Change an account's role."""
    normalized = role.strip().lower()
    if normalized not in ROLES:
        typer.secho(f"Unknown role {role!r}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    init_db()
    with get_session() as session:
        user = get_user_by_email(session, email)
        if user is None:
            typer.secho(f"No account for {email}", err=True, fg=typer.colors.RED)
            raise typer.Exit(code=1)
        user.role = normalized
        stored_email = user.email
    typer.echo(f"{stored_email} is now {normalized}.")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the API; the app lifespan starts APScheduler."""
    init_db()
    config = uvicorn.Config(
        "philiahub.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting Philia Hub on {host}:{port}")
    server.run()


if __name__ == "__main__":
    app()
