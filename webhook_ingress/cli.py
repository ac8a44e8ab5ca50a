"""Click CLI for signing and verifying webhook requests locally."""

from __future__ import annotations

import json
import sys
import time
import uuid
from datetime import UTC, datetime
from pathlib import Path

import click

from webhook_ingress.models import Provider
from webhook_ingress.verifier import verify
from webhook_ingress.verifier.stripe import stripe_signature_header
from webhook_ingress.verifier.svix import svix_headers

_SIGNABLE = {
    "resend": Provider.RESEND,
    "stripe": Provider.STRIPE,
    "stripe_connect": Provider.STRIPE_CONNECT,
}


@click.group()
def cli() -> None:
    """Webhook ingress signing and verification tools."""


@cli.command()
@click.option("--provider", type=click.Choice(sorted(_SIGNABLE)), required=True)
@click.option("--secret", required=True, envvar="WEBHOOK_SECRET", help="Signing secret.")
@click.option("--body-file", type=click.Path(exists=True, dir_okay=False), required=True)
@click.option("--message-id", default=None, help="Svix message id (random if omitted).")
@click.option("--timestamp", type=int, default=None, help="Unix time (now if omitted).")
def sign(
    provider: str, secret: str, body_file: str, message_id: str | None, timestamp: int | None,
) -> None:
    """Print the headers a sender would attach to BODY_FILE."""
    body = Path(body_file).read_bytes()
    ts = timestamp if timestamp is not None else int(time.time())
    if _SIGNABLE[provider] is Provider.RESEND:
        headers = svix_headers(secret, message_id or f"msg_{uuid.uuid4().hex}", ts, body)
    else:
        headers = {"Stripe-Signature": stripe_signature_header(secret, ts, body)}
    click.echo(json.dumps(headers, indent=2))


@cli.command("verify")
@click.option(
    "--provider", type=click.Choice([p.value for p in Provider]), required=True,
)
@click.option("--secret", default=None, envvar="WEBHOOK_SECRET", help="Signing secret.")
@click.option(
    "--headers-file", type=click.Path(exists=True, dir_okay=False), required=True,
    help="JSON object of request headers.",
)
@click.option("--body-file", type=click.Path(exists=True, dir_okay=False), required=True)
@click.option("--now", type=int, default=None, help="Unix time to verify at.")
def verify_command(
    provider: str, secret: str | None, headers_file: str, body_file: str, now: int | None,
) -> None:
    """Verify a captured request; exit 1 if it would be rejected."""
    headers = json.loads(Path(headers_file).read_text())
    if not isinstance(headers, dict):
        raise click.BadParameter("headers file must contain a JSON object")
    body = Path(body_file).read_bytes()
    at = datetime.fromtimestamp(now, UTC) if now is not None else datetime.now(UTC)
    result = verify(Provider(provider), headers, body, secret, at)
    click.echo(result.model_dump_json(indent=2))
    if not result.accepted:
        sys.exit(1)


if __name__ == "__main__":
    cli()
