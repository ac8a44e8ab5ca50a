"""Verification failure taxonomy.

Every error is terminal for the request. Each one carries the reason string
that goes to the operator alert channel and the outcome it maps to.
"""

from __future__ import annotations

from webhook_ingress.models import VerificationOutcome, VerificationResult


class VerificationError(Exception):
    """Base class for all webhook verification failures."""

    outcome = VerificationOutcome.REJECTED_BAD_SIGNATURE

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def to_result(self) -> VerificationResult:
        return VerificationResult(outcome=self.outcome, reason=self.reason)


class MissingHeaderError(VerificationError):
    outcome = VerificationOutcome.REJECTED_MISSING_HEADER

    def __init__(self, header: str, reason: str | None = None) -> None:
        super().__init__(reason or f"Missing {header}")
        self.header = header

    def to_result(self) -> VerificationResult:
        return VerificationResult(
            outcome=self.outcome, reason=self.reason, header=self.header,
        )


class MalformedSignatureError(VerificationError):
    def __init__(self, reason: str = "Invalid signature format") -> None:
        super().__init__(reason)


class SignatureMismatchError(VerificationError):
    def __init__(self, reason: str = "Invalid signature") -> None:
        super().__init__(reason)


class StaleTimestampError(VerificationError):
    outcome = VerificationOutcome.REJECTED_STALE_TIMESTAMP

    def __init__(self, age: int) -> None:
        super().__init__("Timestamp too old" if age >= 0 else "Timestamp too new")
        self.age = age

    def to_result(self) -> VerificationResult:
        return VerificationResult(
            outcome=self.outcome, reason=self.reason, age_seconds=self.age,
        )


class CertificateFetchError(VerificationError):
    def __init__(self, url: str, detail: str) -> None:
        super().__init__(f"Unable to fetch signing certificate: {detail}")
        self.url = url


class DisallowedCertificateHostError(VerificationError):
    def __init__(self, url: str) -> None:
        super().__init__("Signing certificate URL not allowed")
        self.url = url


class InvalidSecretError(VerificationError):
    def __init__(self) -> None:
        super().__init__("Invalid signing secret")


class SecretNotConfiguredError(VerificationError):
    def __init__(self) -> None:
        super().__init__("Signing secret not configured")
