"""Tests for SNS certificate-based verification."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import httpx
import pytest

from tests.conftest import SNS_CERT_URL, SnsSigner, make_sns_notification
from webhook_ingress.verifier.errors import (
    CertificateFetchError,
    DisallowedCertificateHostError,
    MalformedSignatureError,
    MissingHeaderError,
    SignatureMismatchError,
)
from webhook_ingress.verifier.sns import (
    CertificateCache,
    SnsSignatureStrategy,
    canonical_message,
)


def _strategy(signer: SnsSigner, fetcher: MagicMock | None = None) -> SnsSignatureStrategy:
    fetcher = fetcher or MagicMock(return_value=signer.certificate_pem)
    return SnsSignatureStrategy(CertificateCache(fetcher=fetcher))


def _body(envelope: dict[str, object]) -> bytes:
    return json.dumps(envelope).encode()


class TestCanonicalMessage:
    def test_notification_without_subject(self) -> None:
        envelope = make_sns_notification(Message="m", MessageId="id", Timestamp="t", TopicArn="a")
        assert canonical_message(envelope) == (
            b"Message\nm\nMessageId\nid\nTimestamp\nt\nTopicArn\na\nType\nNotification\n"
        )

    def test_notification_with_subject(self) -> None:
        envelope = make_sns_notification(Subject="hello")
        assert b"Subject\nhello\n" in canonical_message(envelope)

    def test_subscription_confirmation_fields(self) -> None:
        envelope = make_sns_notification(
            Type="SubscriptionConfirmation", SubscribeURL="https://x", Token="tok",
        )
        message = canonical_message(envelope)
        assert b"SubscribeURL\nhttps://x\n" in message
        assert b"Token\ntok\n" in message

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(MalformedSignatureError):
            canonical_message(make_sns_notification(Type="Bogus"))


class TestSnsSignature:
    @pytest.mark.parametrize("version", ["1", "2"])
    def test_valid_envelope_accepted(
        self, sns_signer: SnsSigner, now: datetime, version: str,
    ) -> None:
        envelope = sns_signer.sign(make_sns_notification(), version=version)
        _strategy(sns_signer).verify({}, _body(envelope), now)

    def test_tampered_message_rejected(self, sns_signer: SnsSigner, now: datetime) -> None:
        envelope = sns_signer.sign(make_sns_notification())
        envelope["Message"] = "forged"
        with pytest.raises(SignatureMismatchError):
            _strategy(sns_signer).verify({}, _body(envelope), now)

    def test_missing_signature(self, sns_signer: SnsSigner, now: datetime) -> None:
        envelope = sns_signer.sign(make_sns_notification())
        del envelope["Signature"]
        with pytest.raises(MissingHeaderError) as exc_info:
            _strategy(sns_signer).verify({}, _body(envelope), now)
        assert exc_info.value.header == "signature"

    def test_missing_cert_url(self, sns_signer: SnsSigner, now: datetime) -> None:
        envelope = sns_signer.sign(make_sns_notification())
        del envelope["SigningCertURL"]
        with pytest.raises(MissingHeaderError) as exc_info:
            _strategy(sns_signer).verify({}, _body(envelope), now)
        assert exc_info.value.header == "signing_cert_url"

    def test_unsupported_signature_version(self, sns_signer: SnsSigner, now: datetime) -> None:
        envelope = sns_signer.sign(make_sns_notification())
        envelope["SignatureVersion"] = "3"
        with pytest.raises(MalformedSignatureError, match="version"):
            _strategy(sns_signer).verify({}, _body(envelope), now)

    def test_non_json_body(self, sns_signer: SnsSigner, now: datetime) -> None:
        with pytest.raises(MalformedSignatureError, match="notification format"):
            _strategy(sns_signer).verify({}, b'{ "abc"#012: "xyz" }', now)

    def test_json_array_body(self, sns_signer: SnsSigner, now: datetime) -> None:
        with pytest.raises(MalformedSignatureError):
            _strategy(sns_signer).verify({}, b"[]", now)

    def test_disallowed_cert_host_never_fetched(
        self, sns_signer: SnsSigner, now: datetime,
    ) -> None:
        fetcher = MagicMock(return_value=sns_signer.certificate_pem)
        envelope = sns_signer.sign(
            make_sns_notification(SigningCertURL="https://attacker.example.com/cert.pem"),
        )
        with pytest.raises(DisallowedCertificateHostError):
            _strategy(sns_signer, fetcher).verify({}, _body(envelope), now)
        fetcher.assert_not_called()


class TestCertificateCache:
    def test_rejects_plain_http(self) -> None:
        cache = CertificateCache(fetcher=MagicMock())
        with pytest.raises(DisallowedCertificateHostError):
            cache.check_url("http://sns.us-east-1.amazonaws.com/cert.pem")

    def test_rejects_lookalike_host(self) -> None:
        cache = CertificateCache(fetcher=MagicMock())
        with pytest.raises(DisallowedCertificateHostError):
            cache.check_url("https://sns.us-east-1.amazonaws.com.evil.io/cert.pem")

    def test_accepts_china_region(self) -> None:
        cache = CertificateCache(fetcher=MagicMock())
        cache.check_url("https://sns.cn-north-1.amazonaws.com.cn/cert.pem")

    def test_cached_within_ttl(self, sns_signer: SnsSigner, now: datetime) -> None:
        fetcher = MagicMock(return_value=sns_signer.certificate_pem)
        cache = CertificateCache(fetcher=fetcher, ttl_seconds=60)
        first = cache.get(SNS_CERT_URL, now)
        second = cache.get(SNS_CERT_URL, now + timedelta(seconds=59))
        assert first is second
        fetcher.assert_called_once_with(SNS_CERT_URL, cache._fetch_timeout)

    def test_refetched_after_ttl(self, sns_signer: SnsSigner, now: datetime) -> None:
        fetcher = MagicMock(return_value=sns_signer.certificate_pem)
        cache = CertificateCache(fetcher=fetcher, ttl_seconds=60)
        cache.get(SNS_CERT_URL, now)
        cache.get(SNS_CERT_URL, now + timedelta(seconds=61))
        assert fetcher.call_count == 2

    def test_fetch_failure_fails_closed(self, now: datetime) -> None:
        fetcher = MagicMock(side_effect=httpx.ConnectTimeout("timed out"))
        cache = CertificateCache(fetcher=fetcher)
        with pytest.raises(CertificateFetchError):
            cache.get(SNS_CERT_URL, now)

    def test_invalid_pem_fails_closed(self, now: datetime) -> None:
        cache = CertificateCache(fetcher=MagicMock(return_value=b"not a cert"))
        with pytest.raises(CertificateFetchError, match="invalid PEM"):
            cache.get(SNS_CERT_URL, now)

    def test_failed_fetch_not_cached(self, sns_signer: SnsSigner, now: datetime) -> None:
        fetcher = MagicMock(
            side_effect=[httpx.ConnectError("down"), sns_signer.certificate_pem],
        )
        cache = CertificateCache(fetcher=fetcher)
        with pytest.raises(CertificateFetchError):
            cache.get(SNS_CERT_URL, now)
        assert cache.get(SNS_CERT_URL, now) is not None
