"""FastAPI webhook ingress application."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable

from fastapi import FastAPI, Request, Response
from starlette.concurrency import run_in_threadpool

from webhook_ingress.audit.logger import AuditLogger
from webhook_ingress.audit.reporter import RejectionReporter
from webhook_ingress.config import IngressSettings
from webhook_ingress.ingress.dispatch import (
    DispatchError,
    HttpForwardDispatcher,
    InMemoryDispatcher,
    TaskDispatcher,
)
from webhook_ingress.ingress.rate_limiter import WebhookRateLimiter
from webhook_ingress.models import Provider, WebhookTask
from webhook_ingress.verifier import WebhookVerifier

logger = logging.getLogger(__name__)

# Legacy per-provider paths, kept so existing sender configurations keep working.
LEGACY_PATHS = {
    Provider.STRIPE: "/stripe-webhook",
    Provider.STRIPE_CONNECT: "/stripe-connect-webhook",
    Provider.RESEND: "/resend-webhook",
    Provider.SNS_MEDIACONVERT: "/sns-mediaconvert-webhook",
}

# Verification that may hit the network runs off the event loop.
_BLOCKING_PROVIDERS = frozenset({Provider.SNS_MEDIACONVERT})


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    settings = IngressSettings.from_env()
    audit_logger = None
    if settings.audit_log_path:
        audit_logger = AuditLogger(
            settings.audit_log_path,
            max_bytes=settings.audit_log_max_bytes,
            backup_count=settings.audit_log_backup_count,
        )
    dispatcher: TaskDispatcher
    if settings.worker_url and settings.worker_token:
        dispatcher = HttpForwardDispatcher(
            settings.worker_url, settings.worker_token.get_secret_value(),
        )
    else:
        logger.warning("WORKER_URL not set; accepted webhooks are queued in memory")
        dispatcher = InMemoryDispatcher(maxsize=settings.dispatch_queue_size)
    return create_app(settings, dispatcher, audit_logger)


def create_app(
    settings: IngressSettings,
    dispatcher: TaskDispatcher,
    audit_logger: AuditLogger | None = None,
    verifier: WebhookVerifier | None = None,
) -> FastAPI:
    """Create the ingress app; routes exist only for configured providers."""
    app = FastAPI(docs_url=None, redoc_url=None)
    verifier = verifier or WebhookVerifier.from_settings(settings)
    reporter = RejectionReporter(audit_logger)
    rate_limiter = WebhookRateLimiter(
        max_requests=settings.rate_limit,
        window_seconds=settings.rate_window_seconds,
    )
    app.state.dispatcher = dispatcher
    app.state.verifier = verifier
    app.state.rate_limiter = rate_limiter

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    def make_handler(provider: Provider) -> Callable[[Request], Awaitable[Response]]:
        async def handle(request: Request) -> Response:
            source_ip = request.client.host if request.client else "unknown"

            declared = request.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > settings.max_body_bytes:
                return Response(status_code=413)
            body = await _read_body(request, settings.max_body_bytes)
            if body is None:
                return Response(status_code=413)

            if not rate_limiter.check(source_ip):
                return Response(status_code=429)

            headers = dict(request.headers)
            if provider in _BLOCKING_PROVIDERS:
                result = await run_in_threadpool(verifier.verify, provider, headers, body)
            else:
                result = verifier.verify(provider, headers, body)

            if not result.accepted:
                await run_in_threadpool(reporter.report, provider, result, source_ip)
                return Response(status_code=400)

            message_id = _message_id(provider, request, body)
            await run_in_threadpool(reporter.accepted, provider, source_ip, message_id)
            task = WebhookTask(
                provider=provider,
                payload=body,
                content_type=request.headers.get("content-type", "application/json"),
                message_id=message_id,
            )
            try:
                await dispatcher.dispatch(task)
            except DispatchError as exc:
                await run_in_threadpool(reporter.dispatch_failed, provider, exc, source_ip)
                return Response(status_code=503)
            return Response(status_code=200)

        return handle

    for provider in Provider:
        if provider not in verifier.providers:
            continue
        handler = make_handler(provider)
        for path in (f"/webhooks/{provider.value}", LEGACY_PATHS[provider]):
            app.add_api_route(path, handler, methods=["POST"])

    return app


async def _read_body(request: Request, limit: int) -> bytes | None:
    """Read the body, giving up with None as soon as it exceeds `limit`."""
    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


def _message_id(provider: Provider, request: Request, body: bytes) -> str | None:
    """Best-effort id for tracing; never affects the accept decision."""
    if provider is Provider.RESEND:
        return request.headers.get("svix-id")
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    value = data.get("MessageId") if provider is Provider.SNS_MEDIACONVERT else data.get("id")
    return str(value) if value is not None else None
