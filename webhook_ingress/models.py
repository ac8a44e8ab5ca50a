"""Shared Pydantic data models for webhook-ingress."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class Provider(str, Enum):
    STRIPE = "stripe"
    STRIPE_CONNECT = "stripe_connect"
    RESEND = "resend"
    SNS_MEDIACONVERT = "sns_mediaconvert"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    Provider.STRIPE: "Stripe",
    Provider.STRIPE_CONNECT: "Stripe Connect",
    Provider.RESEND: "Resend",
    Provider.SNS_MEDIACONVERT: "SNS MediaConvert",
}


class VerificationOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED_BAD_SIGNATURE = "rejected_bad_signature"
    REJECTED_MISSING_HEADER = "rejected_missing_header"
    REJECTED_STALE_TIMESTAMP = "rejected_stale_timestamp"


class AuditEventType(str, Enum):
    WEBHOOK_ACCEPTED = "webhook_accepted"
    WEBHOOK_REJECTED = "webhook_rejected"
    WEBHOOK_DISPATCH_FAILED = "webhook_dispatch_failed"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Verification Models ---


class VerificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: VerificationOutcome
    reason: str | None = None
    header: str | None = None  # logical header name, missing-header only
    age_seconds: int | None = None  # stale-timestamp only

    @property
    def accepted(self) -> bool:
        return self.outcome == VerificationOutcome.ACCEPTED

    @classmethod
    def accept(cls) -> VerificationResult:
        return cls(outcome=VerificationOutcome.ACCEPTED)


# --- Dispatch Models ---


def _now() -> datetime:
    return datetime.now(UTC)


class WebhookTask(BaseModel):
    """One unit of downstream work for an accepted webhook."""

    model_config = ConfigDict(frozen=True)

    provider: Provider
    payload: bytes
    content_type: str = "application/json"
    message_id: str | None = None
    received_at: datetime = Field(default_factory=_now)


# --- Audit Models ---


def _now_iso() -> str:
    return _now().isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    provider: Provider | None = None
    source_ip: str | None = None
    action: str
    result: str  # "accepted" | "rejected" | "error"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
