"""Thin async client for the Safaricom Daraja (M-Pesa) API.

Only the two calls the payment flow needs: the OAuth client-credentials
exchange and the STK push `processrequest`. Transport failures are mapped to
the upstream error taxonomy here so callers never see raw httpx exceptions.
"""

import base64
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from rentpay.common.errors import GatewaySubmissionError, UpstreamAuthError, UpstreamTimeoutError
from rentpay.common.logging import logger

TOKEN_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


@dataclass(frozen=True)
class StkPushResult:
    """Gateway acknowledgement of an accepted push request."""

    checkout_request_id: str
    merchant_request_id: str | None
    response_code: str
    message: str


def gateway_timestamp(now: datetime | None = None) -> str:
    """Timestamp in the `YYYYMMDDHHmmss` form Daraja expects."""

    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


def gateway_password(short_code: str, passkey: str, timestamp: str) -> str:
    """Base64(ShortCode + Passkey + Timestamp), per the Daraja docs."""

    return base64.b64encode(f"{short_code}{passkey}{timestamp}".encode()).decode("utf-8")


class DarajaClient:
    """Issues token and STK push requests against one Daraja environment."""

    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def fetch_access_token(self) -> tuple[str, int]:
        """Run the client-credentials exchange; returns `(token, expires_in)`."""

        try:
            async with self._client() as client:
                resp = await client.get(
                    TOKEN_PATH,
                    params={"grant_type": "client_credentials"},
                    auth=(self.consumer_key, self.consumer_secret),
                )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError("M-Pesa token request timed out") from exc
        except httpx.HTTPError as exc:
            raise UpstreamAuthError("M-Pesa service unavailable") from exc

        if resp.status_code >= 300:
            raise UpstreamAuthError("M-Pesa service unavailable", detail=resp.text)
        try:
            body = resp.json()
            token = body["access_token"]
            expires_in = int(body.get("expires_in", DEFAULT_TOKEN_LIFETIME_SECONDS))
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamAuthError("M-Pesa token response malformed", detail=resp.text) from exc
        if not isinstance(token, str) or not token:
            raise UpstreamAuthError("M-Pesa token response malformed", detail=resp.text)
        return token, expires_in

    async def stk_push(self, access_token: str, payload: dict[str, Any]) -> StkPushResult:
        """Submit one push request; raise unless the gateway accepted it."""

        try:
            async with self._client() as client:
                resp = await client.post(
                    STK_PUSH_PATH,
                    json=payload,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError("M-Pesa STK push timed out") from exc
        except httpx.HTTPError as exc:
            raise GatewaySubmissionError("M-Pesa STK push request failed") from exc

        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            raise GatewaySubmissionError("M-Pesa STK push request failed", detail=resp.text)

        response_code = str(body.get("ResponseCode", ""))
        checkout_request_id = body.get("CheckoutRequestID")
        if resp.status_code >= 400 or response_code != "0" or not checkout_request_id:
            # Daraja reports HTTP-level rejections as {errorCode, errorMessage}.
            description = (
                body.get("errorMessage") or body.get("ResponseDescription") or "M-Pesa STK push request failed"
            )
            logger.error(
                "stk push rejected http_status=%s response_code=%s description=%s",
                resp.status_code,
                response_code or body.get("errorCode"),
                description,
            )
            raise GatewaySubmissionError(description, detail=body)

        return StkPushResult(
            checkout_request_id=checkout_request_id,
            merchant_request_id=body.get("MerchantRequestID"),
            response_code=response_code,
            message=body.get("CustomerMessage") or body.get("ResponseDescription") or "Success",
        )
