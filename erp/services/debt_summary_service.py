from __future__ import annotations

from decimal import Decimal

from sqlalchemy import and_, case, func, select
from sqlalchemy.orm import Session

from erp.auth import CallerContext, branch_filter
from erp.errors import ValidationError
from erp.models import Branch, Customer, OrderPaymentStatus, OrderStatus, PurchaseOrder, SalesOrder, Supplier
from erp.services.partner_payment_service import PartnerType
from erp.services.permission_service import require_permission


def _dec(value) -> Decimal:
    return Decimal(str(value or 0))


def _partner_columns(partner_type: PartnerType):
    if partner_type == PartnerType.CUSTOMER:
        return (
            Customer,
            Customer.customer_code,
            Customer.customer_name,
            SalesOrder,
            SalesOrder.customer_id,
            SalesOrder.final_amount,
        )
    return (
        Supplier,
        Supplier.supplier_code,
        Supplier.supplier_name,
        PurchaseOrder,
        PurchaseOrder.supplier_id,
        PurchaseOrder.total_amount,
    )


def get_debt_summary(db: Session, caller: CallerContext, *, partner_type: PartnerType) -> list[dict]:
    """Per-partner order totals, largest outstanding balance first.

    Computed from the orders on every call. Partners without any
    non-cancelled order are left out.
    """
    require_permission(db, caller, 'finance.debts', 'view')
    partner, code_col, name_col, order, partner_fk, amount_col = _partner_columns(partner_type)

    join_on = [partner_fk == partner.id, order.status != OrderStatus.CANCELLED]
    branch_id = branch_filter(caller)
    if branch_id is not None:
        join_on.append(order.branch_id == branch_id)

    rows = db.execute(
        select(
            partner.id,
            code_col,
            name_col,
            partner.phone,
            partner.email,
            partner.address,
            func.count(order.id),
            func.coalesce(func.sum(amount_col), 0),
            func.coalesce(func.sum(order.paid_amount), 0),
            func.sum(case((order.payment_status != OrderPaymentStatus.PAID, 1), else_=0)),
        )
        .join(order, and_(*join_on))
        .where(partner.is_active.is_(True))
        .group_by(partner.id, code_col, name_col, partner.phone, partner.email, partner.address)
    ).all()

    result = []
    for partner_id, code, name, phone, email, address, total_orders, total_amount, paid_amount, unpaid in rows:
        total_amount = _dec(total_amount)
        paid_amount = _dec(paid_amount)
        result.append(
            {
                'id': partner_id,
                'code': code,
                'name': name,
                'phone': phone,
                'email': email,
                'address': address,
                'total_orders': int(total_orders),
                'total_amount': total_amount,
                'paid_amount': paid_amount,
                'remaining_amount': total_amount - paid_amount,
                'unpaid_orders': int(unpaid or 0),
            }
        )
    result.sort(key=lambda row: (-row['remaining_amount'], row['code']))
    return result


def list_partner_orders(
    db: Session,
    caller: CallerContext,
    *,
    customer_id: int | None = None,
    supplier_id: int | None = None,
) -> list[dict]:
    require_permission(db, caller, 'finance.debts', 'view')
    if bool(customer_id) == bool(supplier_id):
        raise ValidationError('Provide exactly one of customer_id or supplier_id')

    if customer_id:
        partner_type, partner_id = PartnerType.CUSTOMER, customer_id
    else:
        partner_type, partner_id = PartnerType.SUPPLIER, supplier_id
    partner, code_col, name_col, order, partner_fk, amount_col = _partner_columns(partner_type)
    order_code_col = SalesOrder.order_code if partner_type == PartnerType.CUSTOMER else PurchaseOrder.po_code

    query = (
        select(order, order_code_col, amount_col, code_col, name_col, Branch.branch_name)
        .join(partner, partner.id == partner_fk)
        .outerjoin(Branch, Branch.id == order.branch_id)
        .where(partner_fk == partner_id, order.status != OrderStatus.CANCELLED)
        .order_by(order.order_date.desc().nulls_last(), order.created_at.desc(), order.id.desc())
    )
    branch_id = branch_filter(caller)
    if branch_id is not None:
        query = query.where(order.branch_id == branch_id)

    return [
        {
            'id': row.id,
            'order_code': order_code,
            'order_date': row.order_date,
            'amount': _dec(amount),
            'paid_amount': _dec(row.paid_amount),
            'remaining_amount': _dec(amount) - _dec(row.paid_amount),
            'payment_status': row.payment_status.value,
            'status': row.status.value,
            'notes': row.notes,
            'partner_code': partner_code,
            'partner_name': partner_name,
            'branch_name': branch_name,
            'created_at': row.created_at,
        }
        for row, order_code, amount, partner_code, partner_name, branch_name in db.execute(query).all()
    ]
