"""
Tests for Turnstile verification: providers, the gateway and daily analytics.
"""
import json
from datetime import date
from unittest.mock import patch
from urllib.parse import parse_qs

import httpx
import pytest

from conftest import FakeVerificationProvider
from portfolio_guard.core.errors import ConfigurationError, ExternalServiceError
from portfolio_guard.models.turnstile import TurnstileAnalytics
from portfolio_guard.services.turnstile_service import TurnstileService
from portfolio_guard.services.verification import (
    INTERNAL_ERROR,
    INVALID_INPUT_RESPONSE,
    RealVerificationProvider,
    SimulatedVerificationProvider,
    TurnstileGateway,
    VerificationOutcome,
    build_verification_provider,
)

VERIFY_URL = "https://turnstile.test/siteverify"


def _real_provider(handler) -> RealVerificationProvider:
    return RealVerificationProvider(verify_url=VERIFY_URL, timeout=2.0, transport=httpx.MockTransport(handler))


def _today_bucket(db_session):
    db_session.expire_all()
    return db_session.query(TurnstileAnalytics).one_or_none()


async def test_real_provider_success_posts_form():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(
            200,
            json={"success": True, "challenge_ts": "2026-01-01T00:00:00Z", "hostname": "example.com"},
        )

    result = await _real_provider(handler).siteverify(
        "secret", "token-123", remote_ip="203.0.113.5", idempotency_key="abc"
    )

    assert result.outcome == VerificationOutcome.VERIFIED
    assert result.success
    assert result.hostname == "example.com"
    assert seen["url"] == VERIFY_URL
    assert seen["form"] == {
        "secret": ["secret"],
        "response": ["token-123"],
        "remoteip": ["203.0.113.5"],
        "idempotency_key": ["abc"],
    }


async def test_real_provider_failure_keeps_error_codes():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error-codes": ["timeout-or-duplicate"]})

    result = await _real_provider(handler).siteverify("secret", "token")

    assert result.outcome == VerificationOutcome.FAILED
    assert result.error_codes == ["timeout-or-duplicate"]
    assert result.to_public_dict() == {"success": False, "challenge_ts": None, "hostname": None}


async def test_real_provider_truthy_non_boolean_is_not_success():
    def handler(request):
        return httpx.Response(200, json={"success": "true"})

    result = await _real_provider(handler).siteverify("secret", "token")
    assert result.outcome == VerificationOutcome.FAILED


@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(500, text="upstream down"),
        lambda request: httpx.Response(200, text="<html>not json</html>"),
        lambda request: httpx.Response(200, content=json.dumps(["not", "an", "object"])),
        lambda request: httpx.Response(200, json={"success": False, "error-codes": 5}),
        lambda request: httpx.Response(200, json={"success": False, "error-codes": [1, 2]}),
    ],
)
async def test_real_provider_bad_answers_raise(handler):
    with pytest.raises(ExternalServiceError):
        await _real_provider(handler).siteverify("secret", "token")


async def test_real_provider_timeout_raises():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ExternalServiceError):
        await _real_provider(handler).siteverify("secret", "token")


async def test_real_provider_connection_error_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ExternalServiceError):
        await _real_provider(handler).siteverify("secret", "token")


async def test_simulated_provider_accepts_everything():
    result = await SimulatedVerificationProvider(hostname="localhost").siteverify("secret", "anything")
    assert result.success
    assert result.hostname == "localhost"
    assert result.challenge_ts.endswith("Z")


def test_build_provider_by_mode():
    assert build_verification_provider("simulated").name == "simulated"
    assert build_verification_provider("real").name == "real"
    with pytest.raises(ConfigurationError):
        build_verification_provider("magic")


def test_simulated_provider_is_refused_in_production():
    with patch("portfolio_guard.core.config.settings.APP_ENV", "production"):
        with pytest.raises(ConfigurationError):
            build_verification_provider("simulated")
        assert build_verification_provider("real").name == "real"


async def test_gateway_verified_updates_analytics(db_session):
    provider = FakeVerificationProvider()
    gateway = TurnstileGateway(provider, db_session, secret_resolver=lambda: "resolved-secret")

    result = await gateway.verify("good-token", remote_ip="203.0.113.9", idempotency_key="k1")

    assert result.success
    assert provider.calls == [
        {"secret": "resolved-secret", "token": "good-token", "remote_ip": "203.0.113.9", "idempotency_key": "k1"}
    ]
    bucket = _today_bucket(db_session)
    assert (bucket.total_verifications, bucket.successful_verifications, bucket.failed_verifications) == (1, 1, 0)


async def test_gateway_explicit_secret_wins(db_session):
    provider = FakeVerificationProvider()
    gateway = TurnstileGateway(provider, db_session, secret_resolver=lambda: "resolved-secret")
    await gateway.verify("good-token", secret_key="explicit-secret")
    assert provider.calls[0]["secret"] == "explicit-secret"


@pytest.mark.parametrize("token", ["", None, "x" * 2049])
async def test_gateway_rejects_bad_token_without_calling_provider(db_session, token):
    provider = FakeVerificationProvider()
    gateway = TurnstileGateway(provider, db_session, max_token_length=2048)

    result = await gateway.verify(token)

    assert result.outcome == VerificationOutcome.FAILED
    assert result.error_codes == [INVALID_INPUT_RESPONSE]
    assert provider.calls == []
    bucket = _today_bucket(db_session)
    assert (bucket.total_verifications, bucket.failed_verifications) == (1, 1)


async def test_gateway_accepts_token_at_max_length(db_session):
    provider = FakeVerificationProvider()
    gateway = TurnstileGateway(provider, db_session, max_token_length=2048)
    result = await gateway.verify("x" * 2048)
    assert result.success
    assert len(provider.calls) == 1


async def test_gateway_maps_service_errors_to_error_outcome(db_session):
    def handler(request):
        return httpx.Response(503)

    gateway = TurnstileGateway(_real_provider(handler), db_session, secret_resolver=lambda: "secret")
    result = await gateway.verify("token")

    assert result.outcome == VerificationOutcome.ERROR
    assert result.error_codes == [INTERNAL_ERROR]
    assert not result.success
    assert _today_bucket(db_session).failed_verifications == 1


async def test_gateway_maps_malformed_error_codes_to_error_outcome(db_session):
    def handler(request):
        return httpx.Response(200, json={"success": False, "error-codes": 5})

    gateway = TurnstileGateway(_real_provider(handler), db_session, secret_resolver=lambda: "secret")
    result = await gateway.verify("token")

    assert result.outcome == VerificationOutcome.ERROR
    assert result.error_codes == [INTERNAL_ERROR]
    bucket = _today_bucket(db_session)
    assert (bucket.total_verifications, bucket.failed_verifications) == (1, 1)


async def test_analytics_counts_add_up(db_session):
    """N attempts with S successes give total N, successful S, failed N - S."""
    verified = TurnstileGateway(FakeVerificationProvider(), db_session)
    declined = TurnstileGateway(
        FakeVerificationProvider(VerificationOutcome.FAILED, ["invalid-input-response"]), db_session
    )

    for _ in range(4):
        await verified.verify("token")
    for _ in range(3):
        await declined.verify("token")
    await verified.verify("")

    bucket = _today_bucket(db_session)
    assert bucket.total_verifications == 8
    assert bucket.successful_verifications == 4
    assert bucket.failed_verifications == 4
    assert bucket.total_verifications == bucket.successful_verifications + bucket.failed_verifications


def test_record_verification_keeps_one_row_per_day(db_session):
    service = TurnstileService(db_session)
    day = date(2026, 1, 15)
    other_day = date(2026, 1, 16)

    service.record_verification(True, day=day)
    service.record_verification(False, day=day)
    service.record_verification(True, day=other_day)

    rows = service.get_analytics()
    assert [row.date for row in rows] == [other_day, day]
    first = rows[1]
    assert (first.total_verifications, first.successful_verifications, first.failed_verifications) == (2, 1, 1)

    assert [row.date for row in service.get_analytics(date_from=other_day)] == [other_day]
    assert [row.date for row in service.get_analytics(date_to=day)] == [day]


def test_verify_endpoint(client, fake_provider):
    response = client.post("/api/turnstile/verify", json={"token": "abc", "idempotencyKey": "retry-1"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["hostname"] == "testserver"
    assert fake_provider.calls[0]["idempotency_key"] == "retry-1"


def test_verify_endpoint_failure_is_generic(client, fake_provider):
    fake_provider.outcome = VerificationOutcome.FAILED
    fake_provider.error_codes = ["invalid-input-secret"]

    response = client.post("/api/turnstile/verify", json={"token": "abc"})

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Security verification failed. Please try again."}
    assert "invalid-input-secret" not in response.text


def test_verify_endpoint_empty_token(client, fake_provider):
    response = client.post("/api/turnstile/verify", json={})
    assert response.status_code == 400
    assert fake_provider.calls == []
