"""Flask CLI commands for operating the token and rate-limit stores."""

from __future__ import annotations

import json
import logging

import click
from flask.cli import with_appcontext

from tokenguard.core.extensions import get_context
from tokenguard.schemas import LimitStatusSchema, SessionSchema

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    """Raise logging verbosity for tokenguard modules when requested."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.getLogger("tokenguard").setLevel(level)
    LOGGER.setLevel(level)


@click.group("tokenguard")
@click.option("--verbose", is_flag=True, help="Enable verbose logging.")
@click.pass_context
def tokenguard_cli(ctx: click.Context, verbose: bool) -> None:
    """Administrative commands for credentials and rate limits."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _configure_logging(verbose)


@tokenguard_cli.command("sweep")
@with_appcontext
def sweep() -> None:
    """Remove expired refresh records and counters once."""
    removed = get_context().sweep_expired()
    click.echo(f"Removed {removed} expired entries.")


@tokenguard_cli.command("unlock-account")
@click.argument("subject_id")
@with_appcontext
def unlock_account(subject_id: str) -> None:
    """Clear the brute-force lockout of SUBJECT_ID."""
    get_context().rate_limiter.unlock_account(subject_id)
    click.echo(f"Account {subject_id} unlocked.")


@tokenguard_cli.command("unlock-identifier")
@click.argument("identifier")
@with_appcontext
def unlock_identifier(identifier: str) -> None:
    """Clear the rate-limit counter (and block) of IDENTIFIER."""
    get_context().rate_limiter.unlock_identifier(identifier)
    click.echo(f"Identifier {identifier} unlocked.")


@tokenguard_cli.command("status")
@click.argument("identifier")
@click.option("--subject", "subject_id", default=None, help="Also report this account's lockout.")
@with_appcontext
def status(identifier: str, subject_id: str | None) -> None:
    """Print the raw rate-limit counters of IDENTIFIER as JSON."""
    current = get_context().rate_limiter.status(identifier, subject_id)
    click.echo(json.dumps(LimitStatusSchema().dump(current), indent=2, sort_keys=True))


@tokenguard_cli.command("revoke-all")
@click.argument("subject_id")
@with_appcontext
def revoke_all(subject_id: str) -> None:
    """Revoke every refresh token of SUBJECT_ID."""
    revoked = get_context().tokens.revoke_all(subject_id)
    click.echo(f"Revoked {revoked} sessions for {subject_id}.")


@tokenguard_cli.command("sessions")
@click.argument("subject_id")
@with_appcontext
def sessions(subject_id: str) -> None:
    """List the active sessions of SUBJECT_ID as JSON."""
    records = get_context().tokens.list_sessions(subject_id)
    click.echo(json.dumps(SessionSchema(many=True).dump(records), indent=2))
