"""Paginated read side: payer history and the admin listing."""

import math

from rentpay.common.errors import ValidationError
from rentpay.common.state_machine import STATUSES
from rentpay.services.payments.schemas import PaymentOut, PaymentPage, validate_phone
from rentpay.services.payments.store import PaymentRecordStore

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
# Largest OFFSET a signed 64-bit database integer can hold.
MAX_OFFSET = 2**63 - 1


def validate_pagination(page: int, limit: int) -> None:
    """Out-of-range values are rejected, never clamped."""

    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= limit <= MAX_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIMIT}")
    if (page - 1) * limit > MAX_OFFSET:
        raise ValidationError("page is out of range")


def _page(rows, total: int, page: int, limit: int) -> PaymentPage:
    return PaymentPage(
        data=[PaymentOut.model_validate(row) for row in rows],
        total=total,
        page=page,
        limit=limit,
        totalPages=math.ceil(total / limit),
    )


class PaymentHistoryQuery:
    def __init__(self, store: PaymentRecordStore) -> None:
        self.store = store

    def history(self, phone: str | None, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT) -> PaymentPage:
        """One page of a payer's records, newest first, plus totals.

        A page past the end is an empty page, not an error.
        """

        phone = validate_phone(phone)
        validate_pagination(page, limit)
        total = self.store.count_by_phone(phone)
        rows = self.store.find_by_phone(phone, page, limit) if total else []
        return _page(rows, total, page, limit)

    def admin_listing(
        self, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT, status: str | None = None
    ) -> PaymentPage:
        validate_pagination(page, limit)
        if status is not None and status not in STATUSES:
            raise ValidationError(f"status must be one of {', '.join(STATUSES)}")
        rows, total = self.store.list_all(page, limit, status)
        return _page(rows, total, page, limit)
