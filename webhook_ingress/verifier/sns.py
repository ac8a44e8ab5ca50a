"""AWS SNS notification signatures.

SNS signs a canonical subset of the JSON envelope with the private key of a
certificate it publishes at ``SigningCertURL``. The certificate is fetched
only from allow-listed hosts, cached with a TTL, and any fetch failure
rejects the request.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlsplit

import httpx
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from webhook_ingress.verifier.base import SignatureStrategy
from webhook_ingress.verifier.errors import (
    CertificateFetchError,
    DisallowedCertificateHostError,
    MalformedSignatureError,
    MissingHeaderError,
    SignatureMismatchError,
)

logger = logging.getLogger(__name__)

DEFAULT_CERT_HOST_PATTERNS = (r"^sns\.[a-z0-9-]+\.amazonaws\.com(\.cn)?$",)
DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_FETCH_TIMEOUT_SECONDS = 5.0

_NOTIFICATION_FIELDS = ("Message", "MessageId", "Subject", "Timestamp", "TopicArn", "Type")
_SUBSCRIPTION_FIELDS = (
    "Message", "MessageId", "SubscribeURL", "Timestamp", "Token", "TopicArn", "Type",
)
_FIELDS_BY_TYPE = {
    "Notification": _NOTIFICATION_FIELDS,
    "SubscriptionConfirmation": _SUBSCRIPTION_FIELDS,
    "UnsubscribeConfirmation": _SUBSCRIPTION_FIELDS,
}
_HASHES_BY_VERSION: dict[str, Callable[[], hashes.HashAlgorithm]] = {
    "1": hashes.SHA1,
    "2": hashes.SHA256,
}

CertificateFetcher = Callable[[str, float], bytes]


def fetch_certificate_pem(url: str, timeout: float) -> bytes:
    """Download a PEM certificate over TLS."""
    with httpx.Client(verify=True, timeout=timeout) as client:
        resp = client.get(url)
        resp.raise_for_status()
        return resp.content


@dataclass(frozen=True)
class _CacheEntry:
    certificate: x509.Certificate
    expires_at: datetime


class CertificateCache:
    """TTL cache of signing certificates keyed by URL.

    Readers see an immutable snapshot dict. Refreshes build a new dict and
    swap the reference, so lookups take no lock.
    """

    def __init__(
        self,
        allowed_host_patterns: Sequence[str] = DEFAULT_CERT_HOST_PATTERNS,
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        fetcher: CertificateFetcher = fetch_certificate_pem,
    ) -> None:
        self._allowed = tuple(re.compile(p) for p in allowed_host_patterns)
        self._ttl = timedelta(seconds=ttl_seconds)
        self._fetch_timeout = fetch_timeout
        self._fetcher = fetcher
        self._snapshot: Mapping[str, _CacheEntry] = {}
        self._refresh_lock = threading.Lock()

    def check_url(self, url: str) -> None:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
        if parts.scheme != "https" or not any(p.fullmatch(host) for p in self._allowed):
            raise DisallowedCertificateHostError(url)

    def get(self, url: str, now: datetime) -> x509.Certificate:
        self.check_url(url)
        entry = self._snapshot.get(url)
        if entry is not None and entry.expires_at > now:
            return entry.certificate

        with self._refresh_lock:
            entry = self._snapshot.get(url)
            if entry is not None and entry.expires_at > now:
                return entry.certificate
            certificate = self._load(url)
            snapshot = {
                k: v for k, v in self._snapshot.items() if v.expires_at > now
            }
            snapshot[url] = _CacheEntry(certificate, now + self._ttl)
            self._snapshot = snapshot
            return certificate

    def _load(self, url: str) -> x509.Certificate:
        try:
            pem = self._fetcher(url, self._fetch_timeout)
        except httpx.HTTPError as exc:
            logger.warning("Signing certificate fetch failed for %s: %s", url, exc)
            raise CertificateFetchError(url, type(exc).__name__) from exc
        try:
            return x509.load_pem_x509_certificate(pem)
        except ValueError as exc:
            raise CertificateFetchError(url, "invalid PEM certificate") from exc


def canonical_message(envelope: Mapping[str, Any]) -> bytes:
    """Build the ``Key\\nValue\\n`` string SNS signs for this message type."""
    fields = _FIELDS_BY_TYPE.get(str(envelope.get("Type")))
    if fields is None:
        raise MalformedSignatureError("Unsupported message type")
    parts: list[str] = []
    for name in fields:
        value = envelope.get(name)
        if value is None:
            # Subject is the only optional field SNS leaves out of the string.
            if name == "Subject":
                continue
            raise MalformedSignatureError(f"Missing {name}")
        parts.append(f"{name}\n{value}\n")
    return "".join(parts).encode()


def parse_envelope(raw_body: bytes) -> dict[str, Any]:
    try:
        envelope = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedSignatureError("Invalid notification format") from None
    if not isinstance(envelope, dict):
        raise MalformedSignatureError("Invalid notification format")
    return envelope


class SnsSignatureStrategy(SignatureStrategy):
    """Verifies SNS envelopes against the publisher's certificate.

    Freshness is not checked; SNS redelivers failed notifications with backoff.
    """

    def __init__(self, certificates: CertificateCache) -> None:
        self._certificates = certificates

    def verify(
        self, headers: Mapping[str, str], raw_body: bytes, now: datetime,
    ) -> None:
        envelope = parse_envelope(raw_body)
        self.verify_envelope(envelope, now)

    def verify_envelope(self, envelope: Mapping[str, Any], now: datetime) -> None:
        signature_b64 = envelope.get("Signature")
        if not signature_b64:
            raise MissingHeaderError("signature")
        cert_url = envelope.get("SigningCertURL")
        if not cert_url:
            raise MissingHeaderError("signing_cert_url", "Missing signing certificate URL")

        hash_factory = _HASHES_BY_VERSION.get(str(envelope.get("SignatureVersion", "1")))
        if hash_factory is None:
            raise MalformedSignatureError("Unsupported signature version")

        message = canonical_message(envelope)
        try:
            signature = base64.b64decode(signature_b64, validate=True)
        except (binascii.Error, ValueError, TypeError):
            raise SignatureMismatchError() from None

        certificate = self._certificates.get(str(cert_url), now)
        public_key = certificate.public_key()
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise SignatureMismatchError("Unsupported certificate key type")
        try:
            public_key.verify(signature, message, padding.PKCS1v15(), hash_factory())
        except InvalidSignature:
            raise SignatureMismatchError() from None
