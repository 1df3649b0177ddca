#!/usr/bin/env python3
"""Command Line Interface for the Loop Tracker.

Usage:
    cd src
    python cli.py server                  # Start API server
    python cli.py init-db                 # Create missing tables
    python cli.py create-user NAME EMAIL  # Add a user
    python cli.py issue-token EMAIL       # Mint a bearer token
    python cli.py stats                   # Show loop statistics
    python cli.py loops overdue           # List overdue loops
    python cli.py info                    # Show configuration
"""
from __future__ import annotations

from typing import Optional

import typer
import uvicorn
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from core.config import get_settings
from core.db import get_session
from core.logging_config import get_logger, setup_logging

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

app = typer.Typer(help="Loop Tracker CLI")
loops_app = typer.Typer(help="Loop deadline commands")
app.add_typer(loops_app, name="loops")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Loop Tracker - real-estate transaction tracking."""
    log_level = "DEBUG" if verbose else SETTINGS.log_level
    setup_logging(level=log_level, log_file=SETTINGS.log_file, json_format=SETTINGS.log_format == "json")


# =============================================================================
# Server Commands
# =============================================================================


@app.command("server")
def run_server(
    host: str = typer.Option("0.0.0.0", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload for development"),
) -> None:
    """Start the API server."""
    typer.echo(f"Starting API server on {host}:{port}...")
    uvicorn.run("api.app:app", host=host, port=port, reload=reload)


# =============================================================================
# Database and User Commands
# =============================================================================


@app.command("init-db")
def init_database(
    all_tables: bool = typer.Option(False, "--all", help="Create every table, not only missing ones"),
) -> None:
    """Create database tables."""
    from core.db import init_db

    result = init_db(create_missing_only=not all_tables)
    if result["status"] == "error":
        typer.secho(f"✗ Database init failed: {result.get('error')}", fg="red")
        raise typer.Exit(1)

    created = result["tables_created"]
    typer.secho(f"✓ Database ready ({len(created)} tables created)", fg="green")
    for warning in result["warnings"]:
        typer.secho(f"  {warning}", fg="yellow")


@app.command("create-user")
def create_user(
    name: str = typer.Argument(..., help="Display name"),
    email: str = typer.Argument(..., help="Unique email address"),
    admin: bool = typer.Option(False, "--admin", help="Grant the admin role"),
) -> None:
    """Add a user."""
    from core.models import User, UserRole

    role = UserRole.ADMIN.value if admin else UserRole.AGENT.value
    try:
        with get_session() as session:
            user = User(name=name.strip(), email=email.strip().lower(), role=role)
            session.add(user)
            session.flush()
            user_id = user.id
    except IntegrityError:
        typer.secho(f"✗ A user with email {email} already exists", fg="red")
        raise typer.Exit(1)

    typer.secho(f"✓ Created {role} {name} (id {user_id})", fg="green")


@app.command("issue-token")
def issue_token(
    email: str = typer.Argument(..., help="Email of the user"),
    expires_minutes: Optional[int] = typer.Option(None, help="Override token lifetime"),
) -> None:
    """Mint a bearer token for a user."""
    from core.auth import create_access_token
    from core.models import User

    with get_session() as session:
        user = session.scalar(select(User).where(User.email == email.strip().lower()))
        if user is None:
            typer.secho(f"✗ No user with email {email}", fg="red")
            raise typer.Exit(1)
        if user.suspended:
            typer.secho(f"✗ User {email} is suspended", fg="red")
            raise typer.Exit(1)
        token = create_access_token(user.id, user.role, expires_minutes=expires_minutes)

    typer.echo(token)


# =============================================================================
# Loop Commands
# =============================================================================


@app.command("stats")
def show_stats() -> None:
    """Show loop statistics."""
    from domain.loops import LoopService

    with get_session() as session:
        service = LoopService(session)
        stats = service.stats()
        closing_soon = len(service.closing_loops())

    typer.echo("Loop Statistics:")
    typer.echo(f"  Total: {stats.total}")
    typer.echo(f"  Active: {stats.active}")
    typer.echo(f"  Closing: {stats.closing}")
    typer.echo(f"  Closed: {stats.closed}")
    typer.echo(f"  Total Sales: {stats.total_sales:,.2f}")
    typer.echo(f"  Closing Soon: {closing_soon}")


def _echo_loops(rows) -> None:
    from domain.urgency import urgency_for_row

    for row in rows:
        urgency = urgency_for_row(row)
        badge = urgency.badge or ""
        typer.echo(f"  #{row['id']:<5} {row['end_date']}  {row['property_address']}  {badge}")


@loops_app.command("closing")
def closing_loops(
    days: Optional[int] = typer.Option(None, help="Window in days (defaults to CLOSING_SOON_DAYS)"),
) -> None:
    """List open loops closing soon."""
    from domain.loops import LoopService

    with get_session() as session:
        rows = LoopService(session).closing_loops(days=days)

    typer.echo(f"Closing soon: {len(rows)}")
    _echo_loops(rows)


@loops_app.command("overdue")
def overdue_loops() -> None:
    """List open loops past their end date."""
    from domain.loops import LoopService

    with get_session() as session:
        rows = LoopService(session).overdue_loops()

    if rows:
        typer.secho(f"Overdue: {len(rows)}", fg="yellow")
    else:
        typer.echo("No overdue loops")
    _echo_loops(rows)


# =============================================================================
# Utility Commands
# =============================================================================


@app.command("info")
def show_info() -> None:
    """Show application configuration info."""
    typer.echo("Loop Tracker Configuration:")
    typer.echo(f"  Environment: {SETTINGS.environment}")
    typer.echo(f"  Dry Run: {SETTINGS.dry_run}")
    typer.echo(f"  Log Level: {SETTINGS.log_level}")
    typer.echo(f"  Database: {SETTINGS.database_url}")
    typer.echo(f"  Upload Dir: {SETTINGS.upload_dir}")
    typer.echo(f"  Closing Soon Days: {SETTINGS.closing_soon_days}")
    typer.echo(f"  Email Configured: {SETTINGS.is_email_enabled()}")


if __name__ == "__main__":
    app()
