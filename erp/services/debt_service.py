from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from erp.auth import CallerContext
from erp.db import transactional
from erp.errors import DuplicateCode, InvalidPartner, NotFound, OverpaymentError, ValidationError
from erp.models import (
    BankAccount,
    Customer,
    Debt,
    DebtPayment,
    DebtStatus,
    DebtType,
    PaymentMethod,
    Supplier,
    User,
)
from erp.services.audit_service import log_audit
from erp.services.payment_status import derive_debt_status
from erp.services.permission_service import require_permission

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


@dataclass(frozen=True)
class PaymentRecorded:
    id: int
    debt_id: int
    payment_amount: Decimal
    payment_date: date
    payment_method: PaymentMethod
    remaining_amount: Decimal
    status: DebtStatus


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _today() -> date:
    return _now().date()


def _debt_dict(debt: Debt) -> dict:
    return {
        'id': debt.id,
        'debt_code': debt.debt_code,
        'debt_type': debt.debt_type.value,
        'customer_id': debt.customer_id,
        'supplier_id': debt.supplier_id,
        'original_amount': debt.original_amount,
        'paid_amount': debt.paid_amount,
        'remaining_amount': debt.remaining_amount,
        'due_date': debt.due_date,
        'status': debt.status.value,
        'reference_id': debt.reference_id,
        'reference_type': debt.reference_type,
        'notes': debt.notes,
        'created_at': debt.created_at,
    }


def _partner_model(debt_type: DebtType):
    return Customer if debt_type == DebtType.RECEIVABLE else Supplier


def _partner_id(debt: Debt) -> int:
    return debt.customer_id if debt.debt_type == DebtType.RECEIVABLE else debt.supplier_id


def _adjust_partner_debt(db: Session, debt_type: DebtType, partner_id: int, delta: Decimal) -> None:
    model = _partner_model(debt_type)
    db.execute(update(model).where(model.id == partner_id).values(debt_amount=model.debt_amount + delta))


def get_active_bank_account(db: Session, bank_account_id: int, *, lock: bool = False) -> BankAccount:
    query = select(BankAccount).where(BankAccount.id == bank_account_id)
    if lock:
        query = query.with_for_update()
    account = db.execute(query).scalar_one_or_none()
    if not account or not account.is_active:
        raise NotFound(f'Bank account #{bank_account_id} not found')
    return account


def adjust_bank_balance(db: Session, bank_account_id: int, delta: Decimal) -> None:
    get_active_bank_account(db, bank_account_id, lock=True)
    db.execute(
        update(BankAccount)
        .where(BankAccount.id == bank_account_id)
        .values(balance=BankAccount.balance + delta)
    )


@transactional
def create_debt(
    db: Session,
    caller: CallerContext,
    *,
    debt_code: str,
    debt_type: DebtType,
    original_amount: Decimal,
    customer_id: int | None = None,
    supplier_id: int | None = None,
    due_date: date | None = None,
    reference_id: int | None = None,
    reference_type: str | None = None,
    notes: str | None = None,
) -> dict:
    require_permission(db, caller, 'finance.debts', 'create')

    debt_code = (debt_code or '').strip()
    if not debt_code:
        raise ValidationError('Debt code is required')
    if original_amount <= ZERO:
        raise ValidationError('Original amount must be greater than zero')
    if debt_type == DebtType.RECEIVABLE and (not customer_id or supplier_id):
        raise InvalidPartner('A receivable must reference a customer and no supplier')
    if debt_type == DebtType.PAYABLE and (not supplier_id or customer_id):
        raise InvalidPartner('A payable must reference a supplier and no customer')

    partner_id = customer_id if debt_type == DebtType.RECEIVABLE else supplier_id
    if db.get(_partner_model(debt_type), partner_id) is None:
        raise NotFound(f'{"Customer" if debt_type == DebtType.RECEIVABLE else "Supplier"} #{partner_id} not found')

    existing = db.execute(select(Debt.id).where(Debt.debt_code == debt_code)).scalar_one_or_none()
    if existing:
        raise DuplicateCode(f'Debt code {debt_code} already exists')

    debt = Debt(
        debt_code=debt_code,
        debt_type=debt_type,
        customer_id=customer_id,
        supplier_id=supplier_id,
        original_amount=original_amount,
        paid_amount=ZERO,
        remaining_amount=original_amount,
        due_date=due_date,
        status=derive_debt_status(ZERO, original_amount, due_date, _today()),
        reference_id=reference_id,
        reference_type=reference_type,
        notes=notes,
    )
    db.add(debt)
    try:
        db.flush()
    except IntegrityError as exc:
        raise DuplicateCode(f'Debt code {debt_code} already exists') from exc

    _adjust_partner_debt(db, debt_type, partner_id, original_amount)
    log_audit(
        db,
        actor_user_id=caller.user_id,
        action='DEBT_CREATED',
        metadata={'debt_id': debt.id, 'debt_code': debt_code, 'original_amount': str(original_amount)},
    )
    logger.info('Debt %s (%s, %s) created by %s', debt_code, debt_type.value, original_amount, caller.username)
    return _debt_dict(debt)


@transactional
def pay_debt(
    db: Session,
    caller: CallerContext,
    *,
    debt_id: int,
    payment_amount: Decimal,
    payment_date: date,
    payment_method: PaymentMethod,
    bank_account_id: int | None = None,
    notes: str | None = None,
) -> PaymentRecorded:
    require_permission(db, caller, 'finance.debts', 'edit')

    if payment_amount <= ZERO:
        raise ValidationError('Payment amount must be greater than zero')
    if payment_method == PaymentMethod.CASH and bank_account_id:
        raise ValidationError('Cash payments cannot reference a bank account')
    if payment_method != PaymentMethod.CASH and not bank_account_id:
        raise ValidationError(f'{payment_method.value} payments require a bank account')

    debt = db.execute(select(Debt).where(Debt.id == debt_id).with_for_update()).scalar_one_or_none()
    if not debt:
        raise NotFound(f'Debt #{debt_id} not found')
    if payment_amount > debt.remaining_amount:
        raise OverpaymentError(
            f'Payment of {payment_amount} exceeds the remaining {debt.remaining_amount} on {debt.debt_code}'
        )
    if bank_account_id:
        get_active_bank_account(db, bank_account_id)

    payment = DebtPayment(
        debt_id=debt.id,
        payment_amount=payment_amount,
        payment_date=payment_date,
        payment_method=payment_method,
        bank_account_id=bank_account_id,
        notes=notes,
        created_by=caller.user_id,
    )
    db.add(payment)

    debt.paid_amount = debt.paid_amount + payment_amount
    debt.remaining_amount = debt.original_amount - debt.paid_amount
    debt.status = derive_debt_status(debt.paid_amount, debt.remaining_amount, debt.due_date, _today())
    debt.updated_at = _now()

    _adjust_partner_debt(db, debt.debt_type, _partner_id(debt), -payment_amount)
    if bank_account_id:
        # Receivables bring money in, payables send it out.
        delta = payment_amount if debt.debt_type == DebtType.RECEIVABLE else -payment_amount
        adjust_bank_balance(db, bank_account_id, delta)

    db.flush()
    log_audit(
        db,
        actor_user_id=caller.user_id,
        action='DEBT_PAYMENT_RECORDED',
        metadata={'debt_id': debt.id, 'payment_id': payment.id, 'amount': str(payment_amount)},
    )
    logger.info(
        'Payment of %s on %s recorded by %s, remaining %s',
        payment_amount,
        debt.debt_code,
        caller.username,
        debt.remaining_amount,
    )
    return PaymentRecorded(
        id=payment.id,
        debt_id=debt.id,
        payment_amount=payment_amount,
        payment_date=payment_date,
        payment_method=payment_method,
        remaining_amount=debt.remaining_amount,
        status=debt.status,
    )


def list_debts(
    db: Session,
    caller: CallerContext,
    *,
    debt_type: DebtType | None = None,
    status: DebtStatus | None = None,
    customer_id: int | None = None,
    supplier_id: int | None = None,
    today: date | None = None,
) -> list[dict]:
    require_permission(db, caller, 'finance.debts', 'view')
    today = today or _today()

    query = select(Debt, Customer, Supplier).outerjoin(Customer, Customer.id == Debt.customer_id).outerjoin(
        Supplier, Supplier.id == Debt.supplier_id
    )
    if debt_type is not None:
        query = query.where(Debt.debt_type == debt_type)
    if customer_id is not None:
        query = query.where(Debt.customer_id == customer_id)
    if supplier_id is not None:
        query = query.where(Debt.supplier_id == supplier_id)
    query = query.order_by(Debt.due_date.asc().nulls_last(), Debt.created_at.desc(), Debt.id.desc())

    rows = []
    for debt, customer, supplier in db.execute(query).all():
        row = _debt_dict(debt)
        # Stored status can lag behind the calendar, OVERDUE is decided on read.
        current = derive_debt_status(debt.paid_amount, debt.remaining_amount, debt.due_date, today)
        if status is not None and current != status:
            continue
        row['status'] = current.value
        row['customer_name'] = customer.customer_name if customer else None
        row['customer_code'] = customer.customer_code if customer else None
        row['supplier_name'] = supplier.supplier_name if supplier else None
        row['supplier_code'] = supplier.supplier_code if supplier else None
        rows.append(row)
    return rows


def list_debt_payments(db: Session, caller: CallerContext, *, debt_id: int) -> list[dict]:
    require_permission(db, caller, 'finance.debts', 'view')
    if db.get(Debt, debt_id) is None:
        raise NotFound(f'Debt #{debt_id} not found')

    rows = db.execute(
        select(DebtPayment, BankAccount, User.full_name)
        .outerjoin(BankAccount, BankAccount.id == DebtPayment.bank_account_id)
        .outerjoin(User, User.id == DebtPayment.created_by)
        .where(DebtPayment.debt_id == debt_id)
        .order_by(DebtPayment.payment_date.desc(), DebtPayment.created_at.desc(), DebtPayment.id.desc())
    ).all()
    return [
        {
            'id': payment.id,
            'payment_amount': payment.payment_amount,
            'payment_date': payment.payment_date,
            'payment_method': payment.payment_method.value,
            'notes': payment.notes,
            'bank_account_number': account.account_number if account else None,
            'bank_name': account.bank_name if account else None,
            'created_by_name': created_by_name,
            'created_at': payment.created_at,
        }
        for payment, account, created_by_name in rows
    ]


def refresh_debt_statuses(db: Session, *, today: date) -> int:
    """Recompute every stored debt status from its amounts and due date; returns how many changed."""
    changed = 0
    for debt in db.execute(select(Debt).order_by(Debt.id.asc())).scalars():
        remaining = debt.original_amount - debt.paid_amount
        status = derive_debt_status(debt.paid_amount, remaining, debt.due_date, today)
        if debt.remaining_amount != remaining or debt.status != status:
            debt.remaining_amount = remaining
            debt.status = status
            changed += 1
    return changed
