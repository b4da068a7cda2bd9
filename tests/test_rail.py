import hashlib
import hmac
import json
import time

import pytest
import requests

from app.services.rail import RailError, RailTimeout, StripeRail, _flatten


def _rail():
    return StripeRail(secret_key="sk_test_dummy", webhook_secret="whsec_test", api_base="https://stripe.test/v1")


def _sign(payload: bytes, secret="whsec_test", timestamp=None):
    timestamp = str(timestamp or int(time.time()))
    digest = hmac.new(secret.encode(), timestamp.encode() + b"." + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self.ok = status_code < 400
        self._body = body

    def json(self):
        return self._body


def test_flatten_nested_params():
    encoded = _flatten({
        "amount": 500,
        "metadata": {"linkId": "7", "skip": None},
        "items": [{"quantity": 1}],
        "default_for_currency": True,
    })
    assert encoded == [
        ("amount", "500"),
        ("metadata[linkId]", "7"),
        ("items[0][quantity]", "1"),
        ("default_for_currency", "true"),
    ]


def test_construct_event_accepts_valid_signature():
    payload = json.dumps({"type": "payout.paid"}).encode()
    assert _rail().construct_event(payload, _sign(payload))["type"] == "payout.paid"


def test_construct_event_rejects_wrong_secret():
    payload = b'{"type": "payout.paid"}'
    with pytest.raises(RailError):
        _rail().construct_event(payload, _sign(payload, secret="whsec_other"))


def test_construct_event_rejects_stale_timestamp():
    payload = b'{"type": "payout.paid"}'
    with pytest.raises(RailError):
        _rail().construct_event(payload, _sign(payload, timestamp=int(time.time()) - 3600))


def test_transfer_sends_idempotency_key(monkeypatch):
    seen = {}

    def fake_request(method, url, data=None, headers=None, timeout=None):
        seen.update(method=method, url=url, data=data, headers=headers)
        return FakeResponse(200, {"id": "tr_123"})

    monkeypatch.setattr(requests, "request", fake_request)

    assert _rail().create_transfer("acct_1", 5000, {"withdrawalId": 3}, idempotency_key="withdrawal-3-transfer") == "tr_123"
    assert seen["url"] == "https://stripe.test/v1/transfers"
    assert seen["headers"]["Idempotency-Key"] == "withdrawal-3-transfer"
    assert ("destination", "acct_1") in seen["data"]
    assert ("amount", "5000") in seen["data"]


def test_payout_runs_on_connected_account(monkeypatch):
    seen = {}

    def fake_request(method, url, data=None, headers=None, timeout=None):
        seen.update(headers=headers, data=data)
        return FakeResponse(200, {"id": "po_1"})

    monkeypatch.setattr(requests, "request", fake_request)

    assert _rail().create_payout("acct_1", 5000, "instant", {}) == "po_1"
    assert seen["headers"]["Stripe-Account"] == "acct_1"
    assert ("method", "instant") in seen["data"]


def test_timeout_is_ambiguous(monkeypatch):
    def fake_request(*args, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(requests, "request", fake_request)

    with pytest.raises(RailTimeout):
        _rail().create_transfer("acct_1", 5000, {})


def test_api_error_carries_status(monkeypatch):
    def fake_request(*args, **kwargs):
        return FakeResponse(400, {"error": {"message": "Insufficient funds", "code": "balance_insufficient"}})

    monkeypatch.setattr(requests, "request", fake_request)

    with pytest.raises(RailError) as exc:
        _rail().create_transfer("acct_1", 5000, {})

    assert not isinstance(exc.value, RailTimeout)
    assert exc.value.status == 400
    assert exc.value.code == "balance_insufficient"
