"""Svix-style composite signature scheme (used by Resend).

The sender signs ``{svix-id}.{svix-timestamp}.{body}`` with HMAC-SHA256 using
the base64-decoded ``whsec_`` secret, and sends one or more
``v1,<base64>`` entries, space separated, in ``svix-signature``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from collections.abc import Mapping
from datetime import datetime

from webhook_ingress.verifier.base import (
    DEFAULT_TOLERANCE_SECONDS,
    SignatureStrategy,
    check_freshness,
    normalize_headers,
    parse_timestamp,
    require_header,
)
from webhook_ingress.verifier.errors import (
    InvalidSecretError,
    MalformedSignatureError,
    SecretNotConfiguredError,
    SignatureMismatchError,
)

SIGNATURE_HEADER = "svix-signature"
TIMESTAMP_HEADER = "svix-timestamp"
MESSAGE_ID_HEADER = "svix-id"

_SECRET_PREFIX = "whsec_"
_SIGNATURE_VERSION = "v1"


def _pad_b64(value: str) -> str:
    return value + "=" * (-len(value) % 4)


def decode_secret(secret: str) -> bytes:
    """Decode a ``whsec_<base64>`` secret into the raw HMAC key."""
    if not secret:
        raise SecretNotConfiguredError()
    encoded = secret.removeprefix(_SECRET_PREFIX)
    try:
        key = base64.b64decode(_pad_b64(encoded), validate=True)
    except (binascii.Error, ValueError):
        try:
            key = base64.urlsafe_b64decode(_pad_b64(encoded))
        except (binascii.Error, ValueError):
            raise InvalidSecretError() from None
    if not key:
        raise InvalidSecretError()
    return key


def sign_svix(secret: str, message_id: str, timestamp: str, body: bytes) -> str:
    """Return the base64 HMAC-SHA256 signature for a Svix payload."""
    signed_payload = f"{message_id}.{timestamp}.".encode() + body
    digest = hmac.new(decode_secret(secret), signed_payload, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def svix_headers(
    secret: str, message_id: str, timestamp: int, body: bytes,
) -> dict[str, str]:
    """Build the full set of headers a Svix sender would attach."""
    ts = str(timestamp)
    return {
        MESSAGE_ID_HEADER: message_id,
        TIMESTAMP_HEADER: ts,
        SIGNATURE_HEADER: f"{_SIGNATURE_VERSION},{sign_svix(secret, message_id, ts, body)}",
    }


def parse_signature_header(value: str) -> list[tuple[str, str]]:
    """Split ``"v1,abc v1,def"`` into ``[("v1", "abc"), ("v1", "def")]``.

    Raises MalformedSignatureError when no entry has the version,payload shape.
    """
    entries: list[tuple[str, str]] = []
    for entry in value.split():
        version, sep, payload = entry.partition(",")
        if sep and version and payload:
            entries.append((version, payload))
    if not entries:
        raise MalformedSignatureError()
    return entries


class SvixSignatureStrategy(SignatureStrategy):
    """Verifies Svix signatures: authenticity first, then freshness."""

    def __init__(
        self, secret: str, tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    ) -> None:
        self._secret = secret
        self._tolerance_seconds = tolerance_seconds

    def verify(
        self, headers: Mapping[str, str], raw_body: bytes, now: datetime,
    ) -> None:
        h = normalize_headers(headers)
        signature = require_header(h, SIGNATURE_HEADER, "signature")
        timestamp = require_header(h, TIMESTAMP_HEADER, "timestamp")
        message_id = require_header(h, MESSAGE_ID_HEADER, "message_id", "message ID")

        entries = parse_signature_header(signature)

        signed_payload = f"{message_id}.{timestamp}.".encode() + raw_body
        expected = hmac.new(
            decode_secret(self._secret), signed_payload, hashlib.sha256,
        ).digest()

        matched = False
        for version, payload in entries:
            if version != _SIGNATURE_VERSION:
                continue
            try:
                provided = base64.b64decode(_pad_b64(payload), validate=True)
            except (binascii.Error, ValueError):
                continue
            # No early exit: every v1 entry is compared.
            if hmac.compare_digest(provided, expected):
                matched = True
        if not matched:
            raise SignatureMismatchError()

        check_freshness(parse_timestamp(timestamp), now, self._tolerance_seconds)
