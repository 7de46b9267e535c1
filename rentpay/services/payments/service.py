"""STK push initiation.

Validates a charge, submits it to Daraja with a cached bearer token, and
records a `Pending` row only after the gateway has accepted the push.
"""

import asyncio

from starlette.concurrency import run_in_threadpool

from rentpay.common.config import CommonSettings
from rentpay.common.errors import DuplicateCheckoutId, PaymentError, StorageError
from rentpay.common.logging import bind_checkout_request_id, logger
from rentpay.common.metrics import orphaned_submissions_total, payment_latency_seconds, payment_requests_total
from rentpay.services.payments.daraja import DarajaClient, StkPushResult, gateway_password, gateway_timestamp
from rentpay.services.payments.schemas import ChargeRequest, ChargeResponse
from rentpay.services.payments.store import PaymentRecordStore
from rentpay.services.payments.token_cache import AccessTokenCache


class PaymentInitiationService:
    """Turns a validated charge request into a gateway push + Pending record."""

    def __init__(
        self,
        store: PaymentRecordStore,
        gateway: DarajaClient,
        tokens: AccessTokenCache,
        config: CommonSettings,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.tokens = tokens
        self.config = config

    def build_push_payload(self, req: ChargeRequest, timestamp: str) -> dict:
        short_code = self.config.mpesa_short_code
        return {
            "BusinessShortCode": short_code,
            "Password": gateway_password(short_code, self.config.mpesa_passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": self.config.mpesa_transaction_type,
            "Amount": req.amount,
            "PartyA": req.phone,
            "PartyB": short_code,
            "PhoneNumber": req.phone,
            "CallBackURL": self.config.mpesa_callback_url,
            "AccountReference": self.config.mpesa_account_reference,
            "TransactionDesc": self.config.mpesa_transaction_desc,
        }

    async def initiate(self, req: ChargeRequest, payer_id: str | None = None) -> ChargeResponse:
        """Submit one STK push and persist its Pending record.

        No row is written when the token exchange or the push fails. Once the
        gateway has accepted, persistence (including the reconciliation alert
        on failure) is shielded from caller cancellation, so a disconnecting
        client cannot leave an accepted push unrecorded and unreported.
        """

        service = self.config.service_name
        with payment_latency_seconds.labels(service=service).time():
            try:
                access_token = await self.tokens.get_token()
                payload = self.build_push_payload(req, gateway_timestamp())
                result = await self.gateway.stk_push(access_token, payload)
            except PaymentError as exc:
                payment_requests_total.labels(service=service, outcome=exc.code).inc()
                raise

        with bind_checkout_request_id(result.checkout_request_id):
            await asyncio.shield(self._persist(req, result, payer_id))
        return ChargeResponse(
            checkoutRequestId=result.checkout_request_id,
            responseCode=result.response_code,
            message=result.message,
        )

    async def _persist(self, req: ChargeRequest, result: StkPushResult, payer_id: str | None) -> None:
        service = self.config.service_name
        try:
            await run_in_threadpool(
                self.store.insert_pending,
                phone=req.phone,
                amount=req.amount,
                checkout_request_id=result.checkout_request_id,
                merchant_request_id=result.merchant_request_id,
                payer_id=payer_id,
            )
        except (StorageError, DuplicateCheckoutId) as exc:
            # Money may be in flight upstream with no local row; Daraja stays
            # the source of truth until an operator reconciles.
            orphaned_submissions_total.labels(service=service).inc()
            payment_requests_total.labels(service=service, outcome=exc.code).inc()
            logger.critical(
                "MANUAL RECONCILIATION REQUIRED: gateway accepted push but record not persisted "
                "checkout_request_id=%s phone=%s amount=%s error=%s",
                result.checkout_request_id,
                req.phone,
                req.amount,
                exc,
            )
            raise

        payment_requests_total.labels(service=service, outcome="accepted").inc()
        logger.info(
            "stk push accepted checkout_request_id=%s amount=%s",
            result.checkout_request_id,
            req.amount,
        )
