"""End-to-end tests for the payments HTTP surface."""

import json

import pytest
from fastapi.testclient import TestClient

from rentpay.common.config import settings
from rentpay.common.state_machine import COMPLETED, PENDING
from rentpay.services.payments import main
from rentpay.services.payments.callbacks import CallbackReconciler, CallbackVerifier
from rentpay.services.payments.history import PaymentHistoryQuery
from rentpay.services.payments.notifications import PaymentNotifier
from rentpay.services.payments.rate_limit import FixedWindowRateLimiter
from tests.helpers import FakeRedis, stk_callback

PHONE = "254712345678"


class RecordingNotifier(PaymentNotifier):
    def __init__(self):
        self.completed = []
        self.failed = []

    def payment_completed(self, payment):
        self.completed.append(payment.checkout_request_id)

    def payment_failed(self, payment):
        self.failed.append(payment.checkout_request_id)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def verifier():
    return CallbackVerifier(settings.mpesa_callback_secret)


@pytest.fixture
def client(store, tokens, initiation, notifier, verifier):
    limiter = FixedWindowRateLimiter(FakeRedis(), limit=3, window_seconds=60)
    overrides = {
        main.get_store: lambda: store,
        main.get_tokens: lambda: tokens,
        main.get_initiation_service: lambda: initiation,
        main.get_reconciler: lambda: CallbackReconciler(store),
        main.get_history_query: lambda: PaymentHistoryQuery(store),
        main.get_verifier: lambda: verifier,
        main.get_notifier: lambda: notifier,
        main.get_rate_limiter: lambda: limiter,
    }
    main.app.dependency_overrides.update(overrides)
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def post_callback(client, verifier, payload, signature=None):
    body = json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    headers["X-Mpesa-Signature"] = signature if signature is not None else verifier.sign(body)
    return client.post("/payments/callback", content=body, headers=headers)


class TestInitiate:
    def test_accepted(self, client, store):
        resp = client.post("/payments/initiate", json={"phone": PHONE, "amount": 500}, headers={"x-payer-id": "u-1"})

        assert resp.status_code == 200
        assert resp.json() == {
            "checkoutRequestId": "ws_CO_1",
            "responseCode": "0",
            "message": "Success. Request accepted for processing",
        }
        payment = store.find_by_checkout_id("ws_CO_1")
        assert payment.status == PENDING
        assert payment.payer_id == "u-1"

    @pytest.mark.parametrize(
        "body",
        [
            {"phone": "12345", "amount": 500},
            {"phone": PHONE, "amount": 0},
            {"phone": PHONE, "amount": -10},
            {"phone": PHONE, "amount": "abc"},
            {"phone": PHONE},
            {},
        ],
    )
    def test_invalid_input_is_400_without_side_effects(self, client, daraja, store, body):
        resp = client.post("/payments/initiate", json=body)

        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"
        assert daraja.token_calls == 0
        assert daraja.push_requests == []
        assert store.count_by_phone(PHONE) == 0

    def test_rate_limited_after_ceiling(self, client, daraja):
        for i in range(3):
            daraja.push_reply = (200, daraja.accepted(f"ws_CO_{i}"))
            assert client.post("/payments/initiate", json={"phone": PHONE, "amount": 10}).status_code == 200

        resp = client.post("/payments/initiate", json={"phone": PHONE, "amount": 10})

        assert resp.status_code == 429
        assert resp.json()["code"] == "rate_limited"
        assert len(daraja.push_requests) == 3

    def test_gateway_rejection_is_502(self, client, daraja, store):
        daraja.push_reply = (500, {"errorCode": "500.001.1001", "errorMessage": "Unable to lock subscriber"})

        resp = client.post("/payments/initiate", json={"phone": PHONE, "amount": 500})

        assert resp.status_code == 502
        body = resp.json()
        assert body["code"] == "gateway_rejected"
        assert body["message"] == "Unable to lock subscriber"
        assert store.count_by_phone(PHONE) == 0

    def test_upstream_detail_hidden_in_production(self, client, daraja, monkeypatch):
        monkeypatch.setattr(main.settings, "environment", "production")
        daraja.push_reply = (500, {"errorCode": "500.001.1001", "errorMessage": "Unable to lock subscriber"})

        body = client.post("/payments/initiate", json={"phone": PHONE, "amount": 500}).json()

        assert "detail" not in body

    def test_token_failure_is_503(self, client, daraja):
        daraja.token_reply = (400, {"errorMessage": "Invalid grant type"})

        resp = client.post("/payments/initiate", json={"phone": PHONE, "amount": 500})

        assert resp.status_code == 503
        assert resp.json()["code"] == "gateway_auth_failed"


class TestCallback:
    def test_full_payment_lifecycle(self, client, verifier, store, notifier):
        client.post("/payments/initiate", json={"phone": PHONE, "amount": 500})
        assert store.find_by_checkout_id("ws_CO_1").status == PENDING

        resp = post_callback(client, verifier, stk_callback("ws_CO_1", receipt="ABC123"))

        assert resp.status_code == 200
        assert resp.json() == {"ResultCode": 0, "ResultDesc": "Success"}
        payment = store.find_by_checkout_id("ws_CO_1")
        assert payment.status == COMPLETED
        assert payment.mpesa_receipt_number == "ABC123"
        assert notifier.completed == ["ws_CO_1"]

        replay = post_callback(client, verifier, stk_callback("ws_CO_1", receipt="ABC123"))

        assert replay.json() == {"ResultCode": 0, "ResultDesc": "Success"}
        assert store.find_by_checkout_id("ws_CO_1").status == COMPLETED
        assert notifier.completed == ["ws_CO_1"]

    def test_failed_payment_notifies_failure(self, client, verifier, store, notifier):
        store.insert_pending(PHONE, 500, "ws_CO_7")

        post_callback(client, verifier, stk_callback("ws_CO_7", result_code=1032))

        assert notifier.failed == ["ws_CO_7"]

    def test_unknown_checkout_id_is_acknowledged(self, client, verifier, store):
        resp = post_callback(client, verifier, stk_callback("ws_CO_404"))

        assert resp.status_code == 200
        assert resp.json()["ResultCode"] == 0
        assert store.find_by_checkout_id("ws_CO_404") is None

    def test_bad_signature_is_403(self, client, verifier, store):
        store.insert_pending(PHONE, 500, "ws_CO_1")

        resp = post_callback(client, verifier, stk_callback("ws_CO_1"), signature="deadbeef")

        assert resp.status_code == 403
        assert store.find_by_checkout_id("ws_CO_1").status == PENDING

    def test_missing_signature_is_403(self, client):
        resp = client.post("/payments/callback", json=stk_callback("ws_CO_1"))
        assert resp.status_code == 403

    def test_signed_garbage_is_acknowledged(self, client, verifier):
        body = b"not json"
        resp = client.post("/payments/callback", content=body, headers={"X-Mpesa-Signature": verifier.sign(body)})

        assert resp.status_code == 200
        assert resp.json()["ResultCode"] == 0


class TestHistory:
    def test_history_envelope(self, client, store):
        store.insert_pending(PHONE, 500, "ws_CO_1", payer_id="u-1")

        resp = client.get(f"/payments/history/{PHONE}")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "success"
        assert body["total"] == 1
        assert body["page"] == 1
        assert body["limit"] == 10
        assert body["totalPages"] == 1
        record = body["data"][0]
        assert record["checkoutRequestId"] == "ws_CO_1"
        assert record["payerId"] == "u-1"
        assert record["status"] == PENDING
        assert "createdAt" in record

    @pytest.mark.parametrize(
        "path",
        [
            "/payments/history/12345",
            f"/payments/history/{PHONE}?page=0",
            f"/payments/history/{PHONE}?limit=500",
            f"/payments/history/{PHONE}?limit=abc",
            f"/payments/history/{PHONE}?page=100000000000000000000",
        ],
    )
    def test_bad_request(self, client, path):
        resp = client.get(path)
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"

    def test_status_lookup(self, client, store):
        store.insert_pending(PHONE, 500, "ws_CO_1")

        assert client.get("/payments/status/ws_CO_1").json()["status"] == PENDING
        assert client.get("/payments/status/ws_CO_missing").status_code == 404


class TestAdmin:
    def test_requires_api_key(self, client):
        assert client.get("/admin/payments").status_code == 401
        assert client.get("/admin/payments", headers={"x-api-key": "wrong"}).status_code == 401

    def test_lists_payments(self, client, store):
        store.insert_pending(PHONE, 500, "ws_CO_1")
        store.insert_pending("254700000001", 900, "ws_CO_2")

        resp = client.get("/admin/payments?status=Pending", headers={"x-api-key": settings.api_key})

        assert resp.status_code == 200
        assert resp.json()["total"] == 2

    def test_rejects_unknown_status(self, client):
        resp = client.get("/admin/payments?status=Refunded", headers={"x-api-key": settings.api_key})
        assert resp.status_code == 400


def test_health_reports_gateway_session(client):
    body = client.get("/payments/health").json()
    assert body == {
        "status": "operational",
        "services": {"database": "connected", "gateway": "unauthenticated"},
    }

    client.post("/payments/initiate", json={"phone": PHONE, "amount": 500})

    assert client.get("/payments/health").json()["services"]["gateway"] == "authenticated"


def test_metrics_endpoint(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "payment_requests_total" in resp.text
