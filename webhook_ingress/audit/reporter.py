"""Operator-facing reporting of webhook verification outcomes.

Rejections carry the specific reason here; the HTTP response to the sender
stays generic.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from webhook_ingress.models import (
    AuditEvent,
    AuditEventType,
    Provider,
    RiskLevel,
    VerificationResult,
)

if TYPE_CHECKING:
    from webhook_ingress.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


def rejection_message(provider: Provider, result: VerificationResult) -> str:
    return f"Error verifying {provider.display_name} webhook: {result.reason}"


class RejectionReporter:
    def __init__(self, audit_logger: AuditLogger | None = None) -> None:
        self._audit = audit_logger

    def report(
        self,
        provider: Provider,
        result: VerificationResult,
        source_ip: str | None = None,
    ) -> str:
        """Alert on a rejected request and return the alert message."""
        message = rejection_message(provider, result)
        logger.warning(message)
        if self._audit:
            details: dict[str, object] = {
                "reason": result.reason,
                "outcome": result.outcome.value,
            }
            if result.header:
                details["header"] = result.header
            if result.age_seconds is not None:
                details["age_seconds"] = result.age_seconds
            self._audit.log(AuditEvent(
                event_type=AuditEventType.WEBHOOK_REJECTED,
                provider=provider,
                source_ip=source_ip,
                action="verify",
                result="rejected",
                risk_level=RiskLevel.HIGH,
                details=details,
            ))
        return message

    def accepted(
        self,
        provider: Provider,
        source_ip: str | None = None,
        message_id: str | None = None,
    ) -> None:
        logger.info("Accepted %s webhook", provider.display_name)
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.WEBHOOK_ACCEPTED,
                provider=provider,
                source_ip=source_ip,
                action="verify",
                result="accepted",
                risk_level=RiskLevel.INFO,
                details={"message_id": message_id} if message_id else None,
            ))

    def dispatch_failed(
        self, provider: Provider, error: Exception, source_ip: str | None = None,
    ) -> None:
        logger.error("Failed to dispatch %s webhook: %s", provider.display_name, error)
        if self._audit:
            self._audit.log(AuditEvent(
                event_type=AuditEventType.WEBHOOK_DISPATCH_FAILED,
                provider=provider,
                source_ip=source_ip,
                action="dispatch",
                result="error",
                risk_level=RiskLevel.MEDIUM,
                details={"error": str(error)},
            ))
