"""Common pieces shared by the signature strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime

import httpx

from webhook_ingress.verifier.errors import (
    MalformedSignatureError,
    MissingHeaderError,
    StaleTimestampError,
)

DEFAULT_TOLERANCE_SECONDS = 300


class SignatureStrategy(ABC):
    """One provider's signing scheme.

    ``verify`` returns None when the request is authentic and fresh, and
    raises a ``VerificationError`` subclass otherwise.
    """

    @abstractmethod
    def verify(
        self, headers: Mapping[str, str], raw_body: bytes, now: datetime,
    ) -> None: ...


def normalize_headers(headers: Mapping[str, str]) -> httpx.Headers:
    """Case-insensitive view of the headers exactly as received."""
    if isinstance(headers, httpx.Headers):
        return headers
    return httpx.Headers(dict(headers))


def require_header(
    headers: httpx.Headers, name: str, logical_name: str, label: str | None = None,
) -> str:
    """Return a non-empty header value or raise MissingHeaderError."""
    value = headers.get(name, "")
    if not value:
        raise MissingHeaderError(logical_name, f"Missing {label or logical_name}")
    return value


def parse_timestamp(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        raise MalformedSignatureError("Invalid timestamp") from None


def check_freshness(timestamp: int, now: datetime, tolerance_seconds: int) -> None:
    """Reject timestamps further than the tolerance from now, in either direction.

    An age exactly equal to the tolerance is accepted.
    """
    age = int(now.timestamp()) - timestamp
    if abs(age) > tolerance_seconds:
        raise StaleTimestampError(age)
