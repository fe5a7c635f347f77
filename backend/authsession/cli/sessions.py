"""Flask CLI commands for operating on refresh-token sessions."""

from __future__ import annotations

import logging

import click
from flask import current_app
from flask.cli import with_appcontext

from authsession.services.sessions.cleanup import CleanupScheduler
from authsession.services.sessions.service import SessionManager

LOGGER = logging.getLogger(__name__)


def _manager() -> SessionManager:
    return current_app.extensions["session_manager"]


def _cleanup() -> CleanupScheduler:
    return current_app.extensions["session_cleanup"]


@click.group("sessions")
def sessions_cli() -> None:
    """Inspect and revoke refresh-token sessions."""


@sessions_cli.command("cleanup")
@with_appcontext
def cleanup_command() -> None:
    """Run one cleanup sweep now."""
    report = _cleanup().run()
    if report.skipped:
        click.echo("Cleanup already running; nothing done.")
        return
    if report.error:
        raise click.ClickException(f"Cleanup failed: {report.error}")
    click.echo(
        f"Deleted {report.deleted} refresh tokens, "
        f"purged {report.purged} blacklist entries."
    )


@sessions_cli.command("revoke-user")
@click.argument("user_id")
@click.option("--reason", default="revoked by operator", show_default=True)
@click.option("--actor", default=None, help="Operator id recorded as revoked_by.")
@with_appcontext
def revoke_user_command(user_id: str, reason: str, actor: str | None) -> None:
    """Revoke every active session of USER_ID."""
    count = _manager().revoke_all_for_user(user_id, reason, revoked_by=actor)
    LOGGER.info("Operator revoked sessions", extra={"user_id": user_id, "count": count})
    click.echo(f"Revoked {count} session(s) for {user_id}.")


@sessions_cli.command("list")
@click.argument("user_id")
@with_appcontext
def list_command(user_id: str) -> None:
    """List active sessions of USER_ID, most recently used first."""
    sessions = _manager().list_active_sessions(user_id)
    if not sessions:
        click.echo("  (no active sessions)")
        return
    for info in sessions:
        last_used = info.last_used_at.isoformat() if info.last_used_at else "-"
        click.echo(
            f"  {info.id}  device={info.device_id}  issued={info.issued_at.isoformat()}"
            f"  last_used={last_used}  ip={info.ip_address or '-'}"
        )
