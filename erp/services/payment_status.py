from __future__ import annotations

from datetime import date
from decimal import Decimal

from erp.models import DebtStatus, OrderPaymentStatus

ZERO = Decimal('0')


def derive_debt_status(
    paid_amount: Decimal,
    remaining_amount: Decimal,
    due_date: date | None,
    today: date,
) -> DebtStatus:
    if remaining_amount <= ZERO:
        return DebtStatus.PAID
    if due_date is not None and due_date < today:
        return DebtStatus.OVERDUE
    if paid_amount > ZERO:
        return DebtStatus.PARTIAL
    return DebtStatus.PENDING


def derive_order_payment_status(paid_amount: Decimal, amount_due: Decimal) -> OrderPaymentStatus:
    if amount_due - paid_amount <= ZERO:
        return OrderPaymentStatus.PAID
    if paid_amount <= ZERO:
        return OrderPaymentStatus.UNPAID
    return OrderPaymentStatus.PARTIAL
