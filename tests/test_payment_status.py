from __future__ import annotations

import unittest
from datetime import date
from decimal import Decimal

from erp.models import DebtStatus, OrderPaymentStatus
from erp.services.payment_status import derive_debt_status, derive_order_payment_status

TODAY = date(2026, 3, 10)


class DebtStatusTests(unittest.TestCase):
    def test_fully_paid_is_paid_even_when_past_due(self) -> None:
        status = derive_debt_status(Decimal('500'), Decimal('0'), date(2026, 1, 1), TODAY)
        self.assertEqual(status, DebtStatus.PAID)

    def test_past_due_with_balance_is_overdue(self) -> None:
        status = derive_debt_status(Decimal('100'), Decimal('400'), date(2026, 3, 9), TODAY)
        self.assertEqual(status, DebtStatus.OVERDUE)

    def test_due_today_is_not_overdue(self) -> None:
        status = derive_debt_status(Decimal('0'), Decimal('400'), TODAY, TODAY)
        self.assertEqual(status, DebtStatus.PENDING)

    def test_partial_payment(self) -> None:
        status = derive_debt_status(Decimal('100'), Decimal('400'), None, TODAY)
        self.assertEqual(status, DebtStatus.PARTIAL)

    def test_untouched_debt_is_pending(self) -> None:
        status = derive_debt_status(Decimal('0'), Decimal('400'), None, TODAY)
        self.assertEqual(status, DebtStatus.PENDING)

    def test_rederiving_from_stored_amounts_is_stable(self) -> None:
        cases = [
            (Decimal('0'), Decimal('500'), None),
            (Decimal('200'), Decimal('300'), date(2026, 4, 1)),
            (Decimal('500'), Decimal('0'), date(2026, 2, 1)),
            (Decimal('10'), Decimal('90'), date(2026, 2, 1)),
        ]
        for paid, remaining, due in cases:
            first = derive_debt_status(paid, remaining, due, TODAY)
            self.assertEqual(derive_debt_status(paid, remaining, due, TODAY), first)


class OrderPaymentStatusTests(unittest.TestCase):
    def test_unpaid(self) -> None:
        self.assertEqual(derive_order_payment_status(Decimal('0'), Decimal('1000')), OrderPaymentStatus.UNPAID)

    def test_partial(self) -> None:
        self.assertEqual(derive_order_payment_status(Decimal('200'), Decimal('500')), OrderPaymentStatus.PARTIAL)

    def test_paid_when_nothing_remains(self) -> None:
        self.assertEqual(derive_order_payment_status(Decimal('1000'), Decimal('1000')), OrderPaymentStatus.PAID)


if __name__ == '__main__':
    unittest.main()
