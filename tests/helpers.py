"""Fakes for the Daraja API, Redis and the clock, plus callback builders."""

import httpx
import redis


class FakeDaraja:
    """MockTransport handler standing in for the Daraja endpoints."""

    def __init__(self) -> None:
        self.token_calls = 0
        self.push_requests: list[httpx.Request] = []
        self.token_reply: tuple[int, dict] | Exception = (200, {"access_token": "tok-1", "expires_in": "3599"})
        self.push_reply: tuple[int, dict] | Exception = (200, self.accepted("ws_CO_1"))

    @staticmethod
    def accepted(checkout_request_id: str) -> dict:
        return {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": checkout_request_id,
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/v1/generate":
            self.token_calls += 1
            reply = self.token_reply
        elif request.url.path == "/mpesa/stkpush/v1/processrequest":
            self.push_requests.append(request)
            reply = self.push_reply
        else:
            return httpx.Response(404)
        if isinstance(reply, Exception):
            raise reply
        status, body = reply
        return httpx.Response(status, json=body)


class FakeRedis:
    """Just enough of the Redis API for the fixed-window limiter."""

    def __init__(self) -> None:
        self.counters: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    def incr(self, key: str) -> int:
        self.counters[key] = self.counters.get(key, 0) + 1
        return self.counters[key]

    def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True


class BrokenRedis:
    def incr(self, key: str) -> int:
        raise redis.ConnectionError("redis down")

    def expire(self, key: str, seconds: int) -> bool:
        raise redis.ConnectionError("redis down")


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def stk_callback(checkout_request_id: str, result_code: int = 0, receipt: str = "ABC123") -> dict:
    """Daraja callback envelope as delivered to the webhook."""

    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0 else "Request cancelled by user",
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": 500},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "TransactionDate", "Value": 20191219102115},
                {"Name": "PhoneNumber", "Value": 254712345678},
            ]
        }
    return {"Body": {"stkCallback": callback}}
