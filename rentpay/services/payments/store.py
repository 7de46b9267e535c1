"""Persistence for payment records.

Uniqueness of `checkout_request_id` and the single Pending -> terminal
transition are enforced in the database (unique constraint + conditional
UPDATE), so concurrent callback deliveries cannot both win.
"""

from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from rentpay.common.errors import DuplicateCheckoutId, StorageError, StorageTimeoutError
from rentpay.common.logging import logger
from rentpay.common.state_machine import PENDING, validate_transition
from rentpay.services.payments.models import Payment


@contextmanager
def _storage_errors(operation: str):
    """Translate SQLAlchemy failures into the storage error taxonomy."""

    try:
        yield
    except (DuplicateCheckoutId, StorageError):
        raise
    except PoolTimeoutError as exc:
        raise StorageTimeoutError(f"{operation} timed out waiting for a connection") from exc
    except OperationalError as exc:
        if "timeout" in str(exc).lower() or "canceling statement" in str(exc).lower():
            raise StorageTimeoutError(f"{operation} timed out") from exc
        raise StorageError(f"{operation} failed") from exc
    except SQLAlchemyError as exc:
        raise StorageError(f"{operation} failed") from exc


class PaymentRecordStore:
    """Ledger of STK push attempts keyed by gateway checkout id."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def insert_pending(
        self,
        phone: str,
        amount: int,
        checkout_request_id: str,
        merchant_request_id: str | None = None,
        payer_id: str | None = None,
    ) -> Payment:
        """Insert a new `Pending` record; duplicate checkout ids are rejected."""

        with _storage_errors("insert_pending"), self.session_factory() as db:
            payment = Payment(
                phone=phone,
                amount=amount,
                checkout_request_id=checkout_request_id,
                merchant_request_id=merchant_request_id,
                payer_id=payer_id,
                status=PENDING,
            )
            db.add(payment)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateCheckoutId(
                    f"payment with checkout id {checkout_request_id} already exists"
                ) from exc
            return payment

    def find_by_checkout_id(self, checkout_request_id: str) -> Payment | None:
        with _storage_errors("find_by_checkout_id"), self.session_factory() as db:
            return db.execute(
                select(Payment).where(Payment.checkout_request_id == checkout_request_id)
            ).scalar_one_or_none()

    def update_status(
        self,
        checkout_request_id: str,
        status: str,
        receipt_number: str | None = None,
        transaction_date: datetime | None = None,
        result_code: int | None = None,
        result_desc: str | None = None,
    ) -> bool:
        """Move a `Pending` record to `status`.

        Returns False without writing when the record is missing or already
        terminal. The `status == Pending` predicate is part of the UPDATE
        itself, so of two racing deliveries exactly one sees rowcount 1.
        """

        validate_transition(PENDING, status)
        with _storage_errors("update_status"), self.session_factory() as db:
            result = db.execute(
                update(Payment)
                .where(
                    Payment.checkout_request_id == checkout_request_id,
                    Payment.status == PENDING,
                )
                .values(
                    status=status,
                    mpesa_receipt_number=receipt_number,
                    transaction_date=transaction_date,
                    result_code=result_code,
                    result_desc=result_desc,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            db.commit()
            if result.rowcount != 1:
                logger.info(
                    "status update skipped checkout_request_id=%s target=%s (missing or terminal)",
                    checkout_request_id,
                    status,
                )
                return False
            return True

    def find_by_phone(self, phone: str, page: int, limit: int) -> list[Payment]:
        """Records for `phone`, newest first, one page at a time."""

        with _storage_errors("find_by_phone"), self.session_factory() as db:
            return list(
                db.execute(
                    select(Payment)
                    .where(Payment.phone == phone)
                    .order_by(Payment.created_at.desc(), Payment.id.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                ).scalars()
            )

    def count_by_phone(self, phone: str) -> int:
        with _storage_errors("count_by_phone"), self.session_factory() as db:
            return db.execute(
                select(func.count()).select_from(Payment).where(Payment.phone == phone)
            ).scalar_one()

    def list_all(self, page: int, limit: int, status: str | None = None) -> tuple[list[Payment], int]:
        """Admin listing across all payers with an optional status filter."""

        with _storage_errors("list_all"), self.session_factory() as db:
            query = select(Payment)
            count_query = select(func.count()).select_from(Payment)
            if status is not None:
                query = query.where(Payment.status == status)
                count_query = count_query.where(Payment.status == status)
            total = db.execute(count_query).scalar_one()
            rows = db.execute(
                query.order_by(Payment.created_at.desc(), Payment.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).scalars()
            return list(rows), total

    def ping(self) -> bool:
        """Readiness probe; never raises."""

        try:
            with self.session_factory() as db:
                db.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            logger.warning("database ping failed: %s", exc)
            return False
