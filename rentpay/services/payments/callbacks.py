"""Daraja STK callback authentication and reconciliation.

The gateway retries callbacks until it receives `ResultCode: 0`, and may
deliver them before, during, or long after the initiation response. Applying
a callback is therefore idempotent: only a `Pending` record is ever changed,
and anything else (unknown id, replay, internal error) is acknowledged and
logged.
"""

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from rentpay.common.errors import CallbackAuthError
from rentpay.common.logging import bind_checkout_request_id, logger
from rentpay.common.metrics import payment_callbacks_total
from rentpay.common.state_machine import COMPLETED, FAILED, is_terminal
from rentpay.services.payments.models import Payment
from rentpay.services.payments.store import PaymentRecordStore

SIGNATURE_HEADER = "x-mpesa-signature"
ACKNOWLEDGEMENT = {"ResultCode": 0, "ResultDesc": "Success"}
# Daraja reports TransactionDate in Nairobi local time.
EAT = timezone(timedelta(hours=3), name="EAT")


class CallbackVerifier:
    """Authenticates callbacks by source address and body HMAC."""

    def __init__(self, secret: str, allowed_ips: set[str] | None = None) -> None:
        self.secret = secret.encode()
        self.allowed_ips = allowed_ips or set()

    def sign(self, body: bytes) -> str:
        return hmac.new(self.secret, body, hashlib.sha256).hexdigest()

    def verify(self, body: bytes, signature: str | None, client_ip: str | None) -> None:
        """Raise `CallbackAuthError` unless the delivery is authentic."""

        if self.allowed_ips and client_ip not in self.allowed_ips:
            logger.warning("callback rejected: source %s not allowed", client_ip)
            raise CallbackAuthError("callback source not allowed")
        if not signature:
            logger.warning("callback rejected: missing signature")
            raise CallbackAuthError("missing callback signature")
        provided = signature.removeprefix("sha256=").strip().lower()
        if not hmac.compare_digest(provided, self.sign(body)):
            logger.warning("callback rejected: signature mismatch")
            raise CallbackAuthError("invalid callback signature")


@dataclass(frozen=True)
class StkCallback:
    checkout_request_id: str
    result_code: int
    result_desc: str | None
    receipt_number: str | None
    transaction_date: datetime | None


@dataclass(frozen=True)
class ReconcileOutcome:
    """What a callback delivery did. `payment` is set only on a transition."""

    outcome: str
    payment: Payment | None = None


def _parse_transaction_date(raw: Any) -> datetime | None:
    if raw is None:
        return None
    try:
        return datetime.strptime(str(raw), "%Y%m%d%H%M%S").replace(tzinfo=EAT)
    except ValueError:
        logger.warning("unparseable TransactionDate=%s", raw)
        return None


def parse_callback(payload: Any) -> StkCallback:
    """Extract the fields reconciliation needs from the gateway envelope."""

    try:
        callback = payload["Body"]["stkCallback"]
        checkout_request_id = callback["CheckoutRequestID"]
        result_code = int(callback["ResultCode"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"malformed stk callback: {exc!r}") from exc
    if not isinstance(checkout_request_id, str) or not checkout_request_id:
        raise ValueError("malformed stk callback: empty CheckoutRequestID")

    metadata: dict[str, Any] = {}
    items = (callback.get("CallbackMetadata") or {}).get("Item") or []
    for item in items:
        if isinstance(item, dict) and "Name" in item:
            metadata[item["Name"]] = item.get("Value")

    receipt = metadata.get("MpesaReceiptNumber")
    return StkCallback(
        checkout_request_id=checkout_request_id,
        result_code=result_code,
        result_desc=callback.get("ResultDesc"),
        receipt_number=str(receipt) if receipt is not None else None,
        transaction_date=_parse_transaction_date(metadata.get("TransactionDate")),
    )


class CallbackReconciler:
    """Applies each callback result to its payment record at most once."""

    def __init__(self, store: PaymentRecordStore, service_name: str = "rentpay-payments") -> None:
        self.store = store
        self.service_name = service_name

    def _count(self, outcome: str) -> None:
        payment_callbacks_total.labels(service=self.service_name, outcome=outcome).inc()

    def reconcile(self, payload: Any) -> ReconcileOutcome:
        """Apply one delivery. Never raises; every path ends in an outcome."""

        try:
            callback = parse_callback(payload)
        except ValueError as exc:
            logger.error("stk callback ignored: %s", exc)
            self._count("malformed")
            return ReconcileOutcome("malformed")

        with bind_checkout_request_id(callback.checkout_request_id):
            try:
                return self._apply(callback)
            except Exception:
                # Swallowed so the gateway is still acknowledged; logged for operators.
                logger.exception(
                    "stk callback processing failed checkout_request_id=%s", callback.checkout_request_id
                )
                self._count("error")
                return ReconcileOutcome("error")

    def _apply(self, callback: StkCallback) -> ReconcileOutcome:
        payment = self.store.find_by_checkout_id(callback.checkout_request_id)
        if payment is None:
            logger.warning("stk callback for unknown checkout_request_id=%s", callback.checkout_request_id)
            self._count("unknown")
            return ReconcileOutcome("unknown")
        if is_terminal(payment.status):
            logger.info(
                "duplicate stk callback skipped checkout_request_id=%s status=%s",
                callback.checkout_request_id,
                payment.status,
            )
            self._count("duplicate")
            return ReconcileOutcome("duplicate")

        if callback.result_code == 0:
            target = COMPLETED
            applied = self.store.update_status(
                callback.checkout_request_id,
                COMPLETED,
                receipt_number=callback.receipt_number,
                transaction_date=callback.transaction_date,
                result_code=callback.result_code,
                result_desc=callback.result_desc,
            )
        else:
            target = FAILED
            applied = self.store.update_status(
                callback.checkout_request_id,
                FAILED,
                result_code=callback.result_code,
                result_desc=callback.result_desc,
            )
        if not applied:
            # Lost the race against a concurrent delivery of the same result.
            self._count("duplicate")
            return ReconcileOutcome("duplicate")

        logger.info(
            "payment reconciled checkout_request_id=%s status=%s result_code=%s",
            callback.checkout_request_id,
            target,
            callback.result_code,
        )
        self._count(target.lower())
        return ReconcileOutcome(target.lower(), self.store.find_by_checkout_id(callback.checkout_request_id))
