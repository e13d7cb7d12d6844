from __future__ import annotations

import unittest
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import patch

from erp.auth import CallerContext
from erp.errors import NotFound, NothingToAllocate, PermissionDenied, ValidationError
from erp.models import OrderPaymentStatus, OrderStatus, PaymentMethod, PurchaseOrder, SalesOrder
from erp.services.partner_payment_service import (
    OutstandingOrder,
    PartnerType,
    allocate_partner_payment,
    plan_allocation,
)
from tests.support import (
    add_bank_account,
    add_customer,
    add_purchase_order,
    add_sales_order,
    add_supplier,
    make_session,
    seed_org,
)

JAN_1 = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
JAN_5 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
JAN_9 = datetime(2026, 1, 9, 9, 0, tzinfo=timezone.utc)


class PlanAllocationTests(unittest.TestCase):
    def test_oldest_order_is_settled_first(self) -> None:
        orders = [
            OutstandingOrder(id=1, amount=Decimal('1000'), paid_amount=Decimal('0')),
            OutstandingOrder(id=2, amount=Decimal('500'), paid_amount=Decimal('0')),
        ]

        result = plan_allocation(orders, Decimal('1200'))

        self.assertEqual(result.orders_updated, 2)
        self.assertEqual([row.applied_amount for row in result.details], [Decimal('1000'), Decimal('200')])
        self.assertEqual(
            [row.new_payment_status for row in result.details],
            [OrderPaymentStatus.PAID, OrderPaymentStatus.PARTIAL],
        )
        self.assertEqual(result.unallocated_amount, Decimal('0'))

    def test_payment_never_exceeds_what_is_owed(self) -> None:
        orders = [OutstandingOrder(id=1, amount=Decimal('300'), paid_amount=Decimal('100'))]

        result = plan_allocation(orders, Decimal('500'))

        self.assertEqual(result.allocated_amount, Decimal('200'))
        self.assertEqual(result.unallocated_amount, Decimal('300'))
        self.assertEqual(result.details[0].new_paid_amount, Decimal('300'))

    def test_small_payment_touches_only_the_first_order(self) -> None:
        orders = [
            OutstandingOrder(id=1, amount=Decimal('100'), paid_amount=Decimal('0')),
            OutstandingOrder(id=2, amount=Decimal('100'), paid_amount=Decimal('0')),
        ]

        result = plan_allocation(orders, Decimal('40'))

        self.assertEqual([row.order_id for row in result.details], [1])
        self.assertLessEqual(result.allocated_amount, Decimal('40'))


class AllocatePartnerPaymentTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.org = seed_org(self.db)
        self.customer = add_customer(self.db, 'KH001')
        self.supplier = add_supplier(self.db, 'NCC001')
        self.account = add_bank_account(self.db, '001100', balance='5000')

    def tearDown(self) -> None:
        self.db.close()

    def _order(self, order_id: int, model=SalesOrder):
        self.db.expire_all()
        return self.db.get(model, order_id)

    def _allocate(self, amount: str, partner_type=PartnerType.CUSTOMER, partner_id=None, **kwargs):
        if partner_id is None:
            partner_id = self.customer.id if partner_type == PartnerType.CUSTOMER else self.supplier.id
        return allocate_partner_payment(
            self.db,
            self.org.admin,
            partner_id=partner_id,
            partner_type=partner_type,
            payment_amount=Decimal(amount),
            **kwargs,
        )

    def test_lump_sum_is_applied_oldest_first(self) -> None:
        later = add_sales_order(self.db, self.customer, 'DH002', '500', created_at=JAN_5)
        earlier = add_sales_order(self.db, self.customer, 'DH001', '1000', created_at=JAN_1)

        result = self._allocate('1200')

        self.assertEqual(result.orders_updated, 2)
        first, second = self._order(earlier.id), self._order(later.id)
        self.assertEqual((first.paid_amount, first.payment_status), (Decimal('1000'), OrderPaymentStatus.PAID))
        self.assertEqual((second.paid_amount, second.payment_status), (Decimal('200'), OrderPaymentStatus.PARTIAL))

    def test_applied_total_equals_payment_while_orders_remain(self) -> None:
        add_sales_order(self.db, self.customer, 'DH001', '1000', created_at=JAN_1)
        add_sales_order(self.db, self.customer, 'DH002', '500', created_at=JAN_5)

        result = self._allocate('700')

        self.assertEqual(result.allocated_amount, Decimal('700'))
        self.assertEqual(result.unallocated_amount, Decimal('0'))
        self.assertEqual(result.orders_updated, 1)

    def test_excess_is_reported_as_unallocated(self) -> None:
        order = add_sales_order(self.db, self.customer, 'DH001', '300', created_at=JAN_1)

        with self.assertLogs('erp.services.partner_payment_service', level='WARNING'):
            result = self._allocate('450')

        self.assertEqual(result.allocated_amount, Decimal('300'))
        self.assertEqual(result.unallocated_amount, Decimal('150'))
        self.assertEqual(self._order(order.id).payment_status, OrderPaymentStatus.PAID)

    def test_paid_and_cancelled_orders_are_skipped(self) -> None:
        add_sales_order(self.db, self.customer, 'DH001', '300', created_at=JAN_1, paid_amount='300')
        add_sales_order(self.db, self.customer, 'DH002', '300', created_at=JAN_5, status=OrderStatus.CANCELLED)
        open_order = add_sales_order(self.db, self.customer, 'DH003', '300', created_at=JAN_9)

        result = self._allocate('100')

        self.assertEqual([row.order_id for row in result.details], [open_order.id])

    def test_nothing_outstanding(self) -> None:
        add_sales_order(self.db, self.customer, 'DH001', '300', created_at=JAN_1, paid_amount='300')
        with self.assertRaises(NothingToAllocate):
            self._allocate('100')

    def test_supplier_payment_uses_purchase_orders_and_debits_the_bank(self) -> None:
        order = add_purchase_order(self.db, self.supplier, 'PO001', '800', created_at=JAN_1)

        result = self._allocate(
            '800',
            partner_type=PartnerType.SUPPLIER,
            payment_method=PaymentMethod.BANK,
            bank_account_id=self.account.id,
        )

        self.assertEqual(result.orders_updated, 1)
        self.assertEqual(self._order(order.id, PurchaseOrder).payment_status, OrderPaymentStatus.PAID)
        self.db.expire_all()
        self.assertEqual(self.db.get(type(self.account), self.account.id).balance, Decimal('4200'))

    def test_customer_bank_payment_credits_the_whole_lump_sum_once(self) -> None:
        add_sales_order(self.db, self.customer, 'DH001', '100', created_at=JAN_1)
        add_sales_order(self.db, self.customer, 'DH002', '100', created_at=JAN_5)

        self._allocate('200', payment_method=PaymentMethod.TRANSFER, bank_account_id=self.account.id)

        self.db.expire_all()
        self.assertEqual(self.db.get(type(self.account), self.account.id).balance, Decimal('5200'))

    def test_unknown_partner(self) -> None:
        with self.assertRaises(NotFound):
            self._allocate('100', partner_id=9999)

    def test_non_positive_amount(self) -> None:
        with self.assertRaises(ValidationError):
            self._allocate('0')

    def test_caller_without_grant_changes_nothing(self) -> None:
        order = add_sales_order(self.db, self.customer, 'DH001', '300', created_at=JAN_1)

        with self.assertRaises(PermissionDenied):
            allocate_partner_payment(
                self.db,
                self.org.staff,
                partner_id=self.customer.id,
                partner_type=PartnerType.CUSTOMER,
                payment_amount=Decimal('100'),
            )
        self.assertEqual(self._order(order.id).paid_amount, Decimal('0'))

    def test_cash_payment_cannot_name_a_bank_account(self) -> None:
        order = add_sales_order(self.db, self.customer, 'DH001', '300', created_at=JAN_1)

        with self.assertRaises(ValidationError):
            self._allocate('300', payment_method=PaymentMethod.CASH, bank_account_id=self.account.id)

        self.assertEqual(self._order(order.id).paid_amount, Decimal('0'))
        self.assertEqual(self.db.get(type(self.account), self.account.id).balance, Decimal('5000'))


class BranchScopedAllocationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.org = seed_org(self.db)
        self.customer = add_customer(self.db, 'KH001')
        self.accountant = CallerContext(
            user_id=self.org.staff.user_id,
            username='accountant',
            role_code='ACCOUNTANT',
            role_id=None,
            branch_id=self.org.branch.id,
        )

    def tearDown(self) -> None:
        self.db.close()

    def _allocate(self, amount: str):
        with patch('erp.services.partner_payment_service.require_permission'):
            return allocate_partner_payment(
                self.db,
                self.accountant,
                partner_id=self.customer.id,
                partner_type=PartnerType.CUSTOMER,
                payment_amount=Decimal(amount),
            )

    def test_orders_of_other_branches_are_left_alone(self) -> None:
        foreign = add_sales_order(
            self.db, self.customer, 'DH001', '1000', created_at=JAN_1, branch_id=self.org.other_branch.id
        )
        local = add_sales_order(self.db, self.customer, 'DH002', '400', created_at=JAN_5, branch_id=self.org.branch.id)

        result = self._allocate('1000')

        self.assertEqual([row.order_id for row in result.details], [local.id])
        self.assertEqual(result.unallocated_amount, Decimal('600'))
        self.db.expire_all()
        self.assertEqual(self.db.get(SalesOrder, foreign.id).paid_amount, Decimal('0'))

    def test_only_foreign_orders_means_nothing_to_allocate(self) -> None:
        add_sales_order(self.db, self.customer, 'DH001', '1000', created_at=JAN_1, branch_id=self.org.other_branch.id)

        with self.assertRaises(NothingToAllocate):
            self._allocate('1000')


if __name__ == '__main__':
    unittest.main()
