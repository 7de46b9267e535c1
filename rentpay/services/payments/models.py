"""Payment ledger database model.

Rows are created only after the gateway accepts a push request and are never
deleted; they are the local audit trail of every charge attempt.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rentpay.common.db import Base
from rentpay.common.state_machine import PENDING


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(Base):
    """One STK push charge attempt keyed by the gateway checkout id."""

    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_phone_created_at", "phone", "created_at"),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint("status IN ('Pending', 'Completed', 'Failed')", name="ck_payments_status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    payer_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    phone: Mapped[str] = mapped_column(String(20))
    # Whole Kenyan shillings; the gateway only accepts integer amounts.
    amount: Mapped[int] = mapped_column(Integer)
    checkout_request_id: Mapped[str] = mapped_column(String, unique=True)
    merchant_request_id: Mapped[str | None] = mapped_column(String, nullable=True)
    mpesa_receipt_number: Mapped[str | None] = mapped_column(String, nullable=True)
    transaction_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    result_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    result_desc: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default=PENDING, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
