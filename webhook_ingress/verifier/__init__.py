"""Webhook ingress verification.

``verify`` is the one-shot entry point for the shared-secret schemes;
``WebhookVerifier`` holds one strategy per configured provider, selected at
startup, and is what the HTTP layer uses.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from webhook_ingress.models import Provider, VerificationOutcome, VerificationResult
from webhook_ingress.verifier.base import DEFAULT_TOLERANCE_SECONDS, SignatureStrategy
from webhook_ingress.verifier.errors import SecretNotConfiguredError, VerificationError
from webhook_ingress.verifier.sns import CertificateCache, SnsSignatureStrategy
from webhook_ingress.verifier.stripe import StripeSignatureStrategy
from webhook_ingress.verifier.svix import SvixSignatureStrategy

if TYPE_CHECKING:
    from webhook_ingress.config import IngressSettings

logger = logging.getLogger(__name__)

__all__ = [
    "WebhookVerifier",
    "build_strategy",
    "run_strategy",
    "verify",
]


def build_strategy(
    provider: Provider,
    secret: str | None = None,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    certificates: CertificateCache | None = None,
) -> SignatureStrategy:
    """Construct the strategy for a provider's signing scheme."""
    if provider is Provider.SNS_MEDIACONVERT:
        return SnsSignatureStrategy(certificates or CertificateCache())
    if not secret:
        raise SecretNotConfiguredError()
    if provider is Provider.RESEND:
        return SvixSignatureStrategy(secret, tolerance_seconds)
    return StripeSignatureStrategy(secret, tolerance_seconds)


def run_strategy(
    strategy: SignatureStrategy,
    headers: Mapping[str, str],
    raw_body: bytes,
    now: datetime,
) -> VerificationResult:
    """Run a strategy and turn every failure into a rejection."""
    try:
        strategy.verify(headers, raw_body, now)
    except VerificationError as exc:
        return exc.to_result()
    except Exception:
        logger.exception("Unexpected error during webhook verification")
        return VerificationResult(
            outcome=VerificationOutcome.REJECTED_BAD_SIGNATURE,
            reason="Internal verification error",
        )
    return VerificationResult.accept()


def verify(
    provider: Provider,
    headers: Mapping[str, str],
    raw_body: bytes,
    secret: str | None,
    now: datetime,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> VerificationResult:
    """Verify a single request. Never raises."""
    try:
        strategy = build_strategy(provider, secret, tolerance_seconds)
    except VerificationError as exc:
        return exc.to_result()
    return run_strategy(strategy, headers, raw_body, now)


class WebhookVerifier:
    """Verifies requests for the providers it was built with."""

    def __init__(self, strategies: Mapping[Provider, SignatureStrategy]) -> None:
        self._strategies = dict(strategies)

    @classmethod
    def from_settings(cls, settings: IngressSettings) -> WebhookVerifier:
        """Build one strategy per enabled provider."""
        certificates = None
        if settings.sns.enabled:
            certificates = CertificateCache(
                allowed_host_patterns=settings.sns.cert_host_allowlist,
                ttl_seconds=settings.sns.cert_cache_ttl_seconds,
                fetch_timeout=settings.sns.cert_fetch_timeout_seconds,
            )
        return cls({
            provider: build_strategy(
                provider,
                settings.secret_for(provider),
                settings.tolerance_seconds,
                certificates,
            )
            for provider in settings.enabled_providers
        })

    @property
    def providers(self) -> frozenset[Provider]:
        return frozenset(self._strategies)

    def verify(
        self,
        provider: Provider,
        headers: Mapping[str, str],
        raw_body: bytes,
        now: datetime | None = None,
    ) -> VerificationResult:
        strategy = self._strategies.get(provider)
        if strategy is None:
            return SecretNotConfiguredError().to_result()
        return run_strategy(strategy, headers, raw_body, now or datetime.now(UTC))
