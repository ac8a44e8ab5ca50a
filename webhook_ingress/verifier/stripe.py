"""Stripe ``Stripe-Signature`` scheme.

Header format: ``t=<unix>,v1=<hex>[,v1=<hex>...]``. The signed string is
``{t}.{body}`` and the HMAC-SHA256 key is the endpoint secret as-is.
"""

from __future__ import annotations

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
    MalformedSignatureError,
    SecretNotConfiguredError,
    SignatureMismatchError,
)

SIGNATURE_HEADER = "stripe-signature"
_SCHEME = "v1"


def sign_stripe(secret: str, timestamp: int | str, body: bytes) -> str:
    """Return the hex v1 signature for a Stripe payload."""
    if not secret:
        raise SecretNotConfiguredError()
    signed_payload = f"{timestamp}.".encode() + body
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def stripe_signature_header(secret: str, timestamp: int, body: bytes) -> str:
    return f"t={timestamp},{_SCHEME}={sign_stripe(secret, timestamp, body)}"


def parse_stripe_header(value: str) -> tuple[str, list[str]]:
    """Return the raw ``t`` value and all ``v1`` signatures."""
    timestamp: str | None = None
    signatures: list[str] = []
    for item in value.split(","):
        key, sep, val = item.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = val
        elif key == _SCHEME:
            signatures.append(val)
    if not timestamp or not signatures:
        raise MalformedSignatureError()
    return timestamp, signatures


class StripeSignatureStrategy(SignatureStrategy):
    def __init__(
        self, secret: str, tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    ) -> None:
        self._secret = secret
        self._tolerance_seconds = tolerance_seconds

    def verify(
        self, headers: Mapping[str, str], raw_body: bytes, now: datetime,
    ) -> None:
        h = normalize_headers(headers)
        header = require_header(h, SIGNATURE_HEADER, "signature")
        raw_timestamp, signatures = parse_stripe_header(header)
        timestamp = parse_timestamp(raw_timestamp)

        expected = sign_stripe(self._secret, raw_timestamp, raw_body).encode()
        matched = False
        for candidate in signatures:
            if hmac.compare_digest(candidate.encode(), expected):
                matched = True
        if not matched:
            raise SignatureMismatchError()

        check_freshness(timestamp, now, self._tolerance_seconds)
