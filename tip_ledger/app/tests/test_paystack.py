import json

import httpx
import pytest

from ..core.errors import PaymentProviderError
from ..services import PaystackClient
from ..services.paystack import sign_payload
from .conftest import SECRET


def _client(handler, secret_key=SECRET):
    return PaystackClient(
        secret_key,
        base_url="https://api.paystack.test",
        currency="GHS",
        transport=httpx.MockTransport(handler),
    )


def test_initialize_posts_amount_in_minor_units():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "status": True,
                "data": {
                    "authorization_url": "https://checkout.paystack.com/abc",
                    "reference": "TIP_123",
                    "access_code": "abc",
                },
            },
        )

    client = _client(handler)
    init = client.initialize(
        amount=2500,
        email="fan@example.com",
        reference="TIP_123",
        metadata={"creator_id": "c1"},
        callback_url="https://tips.example.test/payment/result?ref=TIP_123",
    )

    assert init.authorization_url == "https://checkout.paystack.com/abc"
    assert init.reference == "TIP_123"
    assert init.access_code == "abc"
    assert seen["method"] == "POST"
    assert seen["path"] == "/transaction/initialize"
    assert seen["auth"] == f"Bearer {SECRET}"
    assert seen["body"] == {
        "amount": 2500,
        "currency": "GHS",
        "email": "fan@example.com",
        "reference": "TIP_123",
        "metadata": {"creator_id": "c1"},
        "callback_url": "https://tips.example.test/payment/result?ref=TIP_123",
    }


def test_verify_reads_charge_details():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/transaction/verify/TIP_123"
        return httpx.Response(
            200,
            json={
                "status": True,
                "data": {
                    "reference": "TIP_123",
                    "status": "success",
                    "amount": 2500,
                    "metadata": {"creator_id": "c1"},
                    "customer": {"email": "fan@example.com"},
                },
            },
        )

    verification = _client(handler).verify("TIP_123")

    assert verification.succeeded
    assert verification.amount == 2500
    assert verification.metadata == {"creator_id": "c1"}
    assert verification.customer_email == "fan@example.com"


def test_verify_tolerates_string_metadata():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"status": True, "data": {"status": "abandoned", "amount": 0, "metadata": ""}},
        )

    verification = _client(handler).verify("TIP_9")

    assert not verification.succeeded
    assert verification.reference == "TIP_9"
    assert verification.metadata == {}


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"status": False, "message": "Invalid key"}),
        httpx.Response(500, text="upstream exploded"),
        httpx.Response(400, json={"status": False}),
    ],
)
def test_error_responses_raise(response):
    client = _client(lambda request: response)

    with pytest.raises(PaymentProviderError):
        client.initialize(amount=100, email="a@b.c", reference="TIP_1", metadata={})


def test_network_failure_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PaymentProviderError, match="unreachable"):
        _client(handler).verify("TIP_1")


def test_missing_secret_key_fails_before_any_request():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"status": True, "data": {}})

    client = _client(handler, secret_key="")

    with pytest.raises(PaymentProviderError, match="secret key missing"):
        client.verify("TIP_1")
    assert calls == []


def test_signature_checks():
    client = _client(lambda request: httpx.Response(200))
    body = b'{"event":"charge.success"}'

    assert client.verify_signature(body, sign_payload(SECRET, body))
    assert not client.verify_signature(body, sign_payload("sk_other", body))
    assert not client.verify_signature(body + b" ", sign_payload(SECRET, body))
    assert not client.verify_signature(body, None)
    assert not _client(lambda request: httpx.Response(200), secret_key="").verify_signature(
        body, sign_payload("", body)
    )
