"""Error taxonomy shared by the payment components.

Every error carries the HTTP status it maps to and a stable machine code, so
the HTTP layer can render one consistent envelope without inspecting types.
"""


class PaymentError(Exception):
    """Base class for expected, operational failures."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, detail=None) -> None:
        super().__init__(message)
        self.message = message
        # Raw upstream payload; only rendered outside production.
        self.detail = detail


class ValidationError(PaymentError):
    status_code = 400
    code = "validation_error"


class Unauthorized(PaymentError):
    status_code = 401
    code = "unauthorized"


class CallbackAuthError(PaymentError):
    status_code = 403
    code = "callback_auth_failed"


class NotFound(PaymentError):
    status_code = 404
    code = "not_found"


class RateLimited(PaymentError):
    status_code = 429
    code = "rate_limited"


class GatewaySubmissionError(PaymentError):
    """The gateway rejected the push request or answered with an HTTP error."""

    status_code = 502
    code = "gateway_rejected"


class UpstreamAuthError(PaymentError):
    """The client-credentials exchange with the gateway failed."""

    status_code = 503
    code = "gateway_auth_failed"


class UpstreamTimeoutError(PaymentError):
    status_code = 503
    code = "gateway_timeout"


class StorageError(PaymentError):
    """Retryable persistence failure."""

    status_code = 503
    code = "storage_error"


class StorageTimeoutError(StorageError):
    code = "storage_timeout"


class DuplicateCheckoutId(PaymentError):
    status_code = 500
    code = "duplicate_checkout_id"
