"""Shared test fixtures for webhook-ingress."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

from webhook_ingress.audit.logger import AuditLogger
from webhook_ingress.models import AuditEvent, AuditEventType, RiskLevel
from webhook_ingress.verifier.sns import canonical_message

RESEND_SECRET = "whsec_test123"
STRIPE_SECRET = "whsec_stripe_endpoint_secret"
STRIPE_CONNECT_SECRET = "whsec_stripe_connect_secret"
SNS_CERT_URL = "https://sns.us-east-1.amazonaws.com/SimpleNotificationService-abc.pem"

FIXED_NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


# --- Factory functions for test data ---


def make_audit_event(**kwargs: Any) -> AuditEvent:
    """Factory for AuditEvent with sensible defaults."""
    defaults: dict[str, Any] = {
        "event_type": AuditEventType.WEBHOOK_REJECTED,
        "action": "verify",
        "result": "rejected",
        "risk_level": RiskLevel.HIGH,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)


# --- SNS signing fixtures ---


@dataclass
class SnsSigner:
    """Signs SNS envelopes with a throwaway self-signed certificate."""

    private_key: rsa.RSAPrivateKey
    certificate_pem: bytes

    def sign(self, envelope: dict[str, Any], version: str = "1") -> dict[str, Any]:
        signed = dict(envelope)
        signed["SignatureVersion"] = version
        signed.setdefault("SigningCertURL", SNS_CERT_URL)
        algorithm = hashes.SHA1() if version == "1" else hashes.SHA256()
        signature = self.private_key.sign(
            canonical_message(signed), padding.PKCS1v15(), algorithm,
        )
        signed["Signature"] = base64.b64encode(signature).decode()
        return signed


def _self_signed(key: rsa.RSAPrivateKey) -> bytes:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "sns.amazonaws.com")])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(FIXED_NOW - timedelta(days=1))
        .not_valid_after(FIXED_NOW + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM)


@pytest.fixture(scope="session")
def sns_signer() -> SnsSigner:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return SnsSigner(private_key=key, certificate_pem=_self_signed(key))


def make_sns_notification(**kwargs: Any) -> dict[str, Any]:
    """Factory for an unsigned MediaConvert SNS notification envelope."""
    defaults: dict[str, Any] = {
        "Type": "Notification",
        "MessageId": "22b80b92-fdea-4c2c-8f9d-bdfb0c7bf324",
        "TopicArn": "arn:aws:sns:us-east-1:123456789012:mediaconvert",
        "Message": json.dumps({"detail": {"jobId": "abcd", "status": "COMPLETE"}}),
        "Timestamp": "2026-01-01T12:00:00.000Z",
    }
    defaults.update(kwargs)
    return defaults
