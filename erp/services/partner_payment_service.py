from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from erp.auth import CallerContext, branch_filter
from erp.db import transactional
from erp.errors import NotFound, NothingToAllocate, ValidationError
from erp.models import (
    Customer,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    PurchaseOrder,
    SalesOrder,
    Supplier,
)
from erp.services.audit_service import log_audit
from erp.services.debt_service import adjust_bank_balance, get_active_bank_account
from erp.services.payment_status import derive_order_payment_status
from erp.services.permission_service import require_permission

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


class PartnerType(str, Enum):
    CUSTOMER = 'customer'
    SUPPLIER = 'supplier'


@dataclass(frozen=True)
class OutstandingOrder:
    id: int
    amount: Decimal
    paid_amount: Decimal

    @property
    def remaining_amount(self) -> Decimal:
        return self.amount - self.paid_amount


@dataclass(frozen=True)
class OrderAllocation:
    order_id: int
    applied_amount: Decimal
    new_paid_amount: Decimal
    new_payment_status: OrderPaymentStatus


@dataclass(frozen=True)
class AllocationResult:
    total_payment: Decimal
    details: list[OrderAllocation] = field(default_factory=list)
    unallocated_amount: Decimal = ZERO

    @property
    def orders_updated(self) -> int:
        return len(self.details)

    @property
    def allocated_amount(self) -> Decimal:
        return sum((row.applied_amount for row in self.details), ZERO)


def plan_allocation(orders: list[OutstandingOrder], total_payment: Decimal) -> AllocationResult:
    """Spread a payment over orders oldest first, fully paying each before moving on.

    ``orders`` must already be in creation order. Whatever is left once every
    order is settled is reported as ``unallocated_amount``.
    """
    remaining = total_payment
    details: list[OrderAllocation] = []
    for order in orders:
        if remaining <= ZERO:
            break
        outstanding = order.remaining_amount
        if outstanding <= ZERO:
            continue
        applied = min(remaining, outstanding)
        new_paid = order.paid_amount + applied
        details.append(
            OrderAllocation(
                order_id=order.id,
                applied_amount=applied,
                new_paid_amount=new_paid,
                new_payment_status=derive_order_payment_status(new_paid, order.amount),
            )
        )
        remaining -= applied
    return AllocationResult(total_payment=total_payment, details=details, unallocated_amount=max(remaining, ZERO))


def _order_columns(partner_type: PartnerType):
    # Sales orders are owed their final (post-discount) amount, purchase orders their total.
    if partner_type == PartnerType.CUSTOMER:
        return SalesOrder, SalesOrder.customer_id, 'final_amount'
    return PurchaseOrder, PurchaseOrder.supplier_id, 'total_amount'


def _load_outstanding(
    db: Session, partner_type: PartnerType, partner_id: int, branch_id: int | None
) -> dict[int, tuple]:
    model, partner_col, amount_attr = _order_columns(partner_type)
    amount_col = getattr(model, amount_attr)
    query = select(model).where(
        partner_col == partner_id,
        model.status != OrderStatus.CANCELLED,
        amount_col > model.paid_amount,
    )
    if branch_id is not None:
        query = query.where(model.branch_id == branch_id)
    orders = db.execute(
        query.order_by(model.created_at.asc(), model.id.asc()).with_for_update()
    ).scalars().all()
    return {
        order.id: (
            order,
            OutstandingOrder(id=order.id, amount=getattr(order, amount_attr), paid_amount=order.paid_amount),
        )
        for order in orders
    }


@transactional
def allocate_partner_payment(
    db: Session,
    caller: CallerContext,
    *,
    partner_id: int,
    partner_type: PartnerType,
    payment_amount: Decimal,
    payment_date: date | None = None,
    payment_method: PaymentMethod = PaymentMethod.CASH,
    bank_account_id: int | None = None,
) -> AllocationResult:
    require_permission(db, caller, 'finance.debts', 'edit')

    if payment_amount <= ZERO:
        raise ValidationError('Payment amount must be greater than zero')
    if payment_method != PaymentMethod.CASH and not bank_account_id:
        raise ValidationError(f'{payment_method.value} payments require a bank account')
    if payment_method == PaymentMethod.CASH and bank_account_id:
        raise ValidationError('Cash payments cannot reference a bank account')

    partner_model = Customer if partner_type == PartnerType.CUSTOMER else Supplier
    if db.get(partner_model, partner_id) is None:
        raise NotFound(f'{partner_type.value.capitalize()} #{partner_id} not found')
    if bank_account_id:
        get_active_bank_account(db, bank_account_id)

    loaded = _load_outstanding(db, partner_type, partner_id, branch_filter(caller))
    if not loaded:
        raise NothingToAllocate(f'{partner_type.value.capitalize()} #{partner_id} has no outstanding orders')

    result = plan_allocation([outstanding for _, outstanding in loaded.values()], payment_amount)
    for row in result.details:
        order, _ = loaded[row.order_id]
        order.paid_amount = row.new_paid_amount
        order.payment_status = row.new_payment_status

    if bank_account_id:
        # One movement for the whole lump sum, inbound for customers, outbound for suppliers.
        delta = payment_amount if partner_type == PartnerType.CUSTOMER else -payment_amount
        adjust_bank_balance(db, bank_account_id, delta)

    if result.unallocated_amount > ZERO:
        logger.warning(
            '%s of a %s payment from %s #%s could not be allocated to any order',
            result.unallocated_amount,
            payment_amount,
            partner_type.value,
            partner_id,
        )

    log_audit(
        db,
        actor_user_id=caller.user_id,
        action='PARTNER_PAYMENT_ALLOCATED',
        metadata={
            'partner_type': partner_type.value,
            'partner_id': partner_id,
            'payment_amount': str(payment_amount),
            'payment_date': payment_date.isoformat() if payment_date else None,
            'payment_method': payment_method.value,
            'orders': [row.order_id for row in result.details],
            'unallocated_amount': str(result.unallocated_amount),
        },
    )
    logger.info(
        'Allocated %s across %d orders for %s #%s',
        result.allocated_amount,
        result.orders_updated,
        partner_type.value,
        partner_id,
    )
    return result
