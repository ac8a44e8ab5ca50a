"""Process-wide configuration, loaded once at startup."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from webhook_ingress.models import Provider
from webhook_ingress.verifier.sns import (
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_CERT_HOST_PATTERNS,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
)

_TRUTHY = {"1", "true", "yes", "on"}

_SECRET_ENV_VARS = {
    Provider.STRIPE: "STRIPE_ENDPOINT_SECRET",
    Provider.STRIPE_CONNECT: "STRIPE_CONNECT_ENDPOINT_SECRET",
    Provider.RESEND: "RESEND_WEBHOOK_SECRET",
}


class SnsSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    cert_host_allowlist: tuple[str, ...] = DEFAULT_CERT_HOST_PATTERNS
    cert_cache_ttl_seconds: int = Field(default=DEFAULT_CACHE_TTL_SECONDS, gt=0)
    cert_fetch_timeout_seconds: float = Field(default=DEFAULT_FETCH_TIMEOUT_SECONDS, gt=0)


class IngressSettings(BaseModel):
    """Immutable settings passed explicitly into the verifier and the app."""

    model_config = ConfigDict(frozen=True)

    secrets: dict[Provider, SecretStr] = Field(default_factory=dict)
    sns: SnsSettings = Field(default_factory=SnsSettings)
    tolerance_seconds: int = Field(default=300, gt=0)
    max_body_bytes: int = Field(default=1_048_576, gt=0)
    rate_limit: int = Field(default=60, gt=0)
    rate_window_seconds: int = Field(default=60, gt=0)
    worker_url: str | None = None
    worker_token: SecretStr | None = None
    dispatch_queue_size: int = Field(default=1000, gt=0)
    audit_log_path: str | None = None
    audit_log_max_bytes: int = Field(default=10_485_760, gt=0)
    audit_log_backup_count: int = Field(default=5, ge=0)

    @property
    def enabled_providers(self) -> list[Provider]:
        """Providers with a secret (or SNS switched on), in declaration order.

        SNS is certificate-based; only ``sns.enabled`` turns it on.
        """
        enabled = [
            p for p in Provider
            if p in self.secrets and p is not Provider.SNS_MEDIACONVERT
        ]
        if self.sns.enabled:
            enabled.append(Provider.SNS_MEDIACONVERT)
        return enabled

    def secret_for(self, provider: Provider) -> str | None:
        secret = self.secrets.get(provider)
        return secret.get_secret_value() if secret else None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> IngressSettings:
        """Read settings from environment variables. Invalid values raise ValidationError."""
        env = os.environ if environ is None else environ
        secrets = {
            provider: SecretStr(env[var])
            for provider, var in _SECRET_ENV_VARS.items()
            if env.get(var)
        }
        sns_values: dict[str, object] = {
            "enabled": env.get("SNS_ENABLED", "").lower() in _TRUTHY,
        }
        if env.get("SNS_CERT_HOST_ALLOWLIST"):
            sns_values["cert_host_allowlist"] = tuple(
                p.strip() for p in env["SNS_CERT_HOST_ALLOWLIST"].split(",") if p.strip()
            )
        if env.get("SNS_CERT_CACHE_TTL_SECONDS"):
            sns_values["cert_cache_ttl_seconds"] = env["SNS_CERT_CACHE_TTL_SECONDS"]
        if env.get("SNS_CERT_FETCH_TIMEOUT_SECONDS"):
            sns_values["cert_fetch_timeout_seconds"] = env["SNS_CERT_FETCH_TIMEOUT_SECONDS"]

        values: dict[str, object] = {
            "secrets": secrets,
            "sns": SnsSettings.model_validate(sns_values),
            "worker_url": env.get("WORKER_URL") or None,
            "worker_token": env.get("WORKER_TOKEN") or None,
            "audit_log_path": env.get("AUDIT_LOG_PATH") or None,
        }
        optional_ints = {
            "tolerance_seconds": "WEBHOOK_TOLERANCE_SECONDS",
            "max_body_bytes": "WEBHOOK_MAX_BODY_BYTES",
            "rate_limit": "WEBHOOK_RATE_LIMIT",
            "rate_window_seconds": "WEBHOOK_RATE_WINDOW_SECONDS",
            "dispatch_queue_size": "DISPATCH_QUEUE_SIZE",
            "audit_log_max_bytes": "AUDIT_LOG_MAX_BYTES",
            "audit_log_backup_count": "AUDIT_LOG_BACKUP_COUNT",
        }
        for field_name, var in optional_ints.items():
            if env.get(var):
                values[field_name] = env[var]
        return cls.model_validate(values)
