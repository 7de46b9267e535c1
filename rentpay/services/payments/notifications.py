"""Hook for payment-outcome notifications (email/SMS live elsewhere)."""

from rentpay.common.logging import logger
from rentpay.common.state_machine import COMPLETED, FAILED
from rentpay.services.payments.models import Payment


class PaymentNotifier:
    """Default notifier: records the outcome in the service log.

    Deployments that send receipts subclass this and override the two
    methods. They run as background tasks after the status change is
    committed, never inline with it.
    """

    def payment_completed(self, payment: Payment) -> None:
        logger.info(
            "payment completed checkout_request_id=%s receipt=%s amount=%s",
            payment.checkout_request_id,
            payment.mpesa_receipt_number,
            payment.amount,
        )

    def payment_failed(self, payment: Payment) -> None:
        logger.info(
            "payment failed checkout_request_id=%s result_desc=%s",
            payment.checkout_request_id,
            payment.result_desc,
        )

    def notify(self, payment: Payment) -> None:
        """Dispatch on final status; errors are logged, not raised."""

        try:
            if payment.status == COMPLETED:
                self.payment_completed(payment)
            elif payment.status == FAILED:
                self.payment_failed(payment)
        except Exception:
            logger.exception("payment notification failed checkout_request_id=%s", payment.checkout_request_id)
