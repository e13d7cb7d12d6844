from __future__ import annotations

from dataclasses import asdict
from enum import Enum

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from erp.auth import CallerContext, get_current_caller
from erp.db import get_db
from erp.models import DebtStatus, DebtType
from erp.schemas import BankAccountCreate, DebtCreate, DebtPaymentCreate, PartnerPaymentCreate, camelize
from erp.security.csrf import verify_csrf
from erp.services import bank_account_service, debt_service, debt_summary_service
from erp.services.partner_payment_service import PartnerType, allocate_partner_payment

router = APIRouter(prefix='/rpc/finance', tags=['finance'])


class SummaryKind(str, Enum):
    CUSTOMERS = 'customers'
    SUPPLIERS = 'suppliers'


SUMMARY_PARTNER_TYPES = {
    SummaryKind.CUSTOMERS: PartnerType.CUSTOMER,
    SummaryKind.SUPPLIERS: PartnerType.SUPPLIER,
}


@router.post('/debts.create')
def debts_create(
    payload: DebtCreate,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    return camelize(debt_service.create_debt(db, caller, **payload.model_dump()))


@router.post('/debts.createPayment')
def debts_create_payment(
    payload: DebtPaymentCreate,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    recorded = debt_service.pay_debt(db, caller, **payload.model_dump())
    return camelize(asdict(recorded))


@router.get('/debts.list')
def debts_list(
    debt_type: DebtType | None = Query(None, alias='debtType'),
    status: DebtStatus | None = None,
    customer_id: int | None = Query(None, alias='customerId'),
    supplier_id: int | None = Query(None, alias='supplierId'),
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    rows = debt_service.list_debts(
        db,
        caller,
        debt_type=debt_type,
        status=status,
        customer_id=customer_id,
        supplier_id=supplier_id,
    )
    return camelize(rows)


@router.get('/debts.getPayments')
def debts_get_payments(
    debt_id: int = Query(alias='debtId'),
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return camelize(debt_service.list_debt_payments(db, caller, debt_id=debt_id))


@router.post('/debtPartners.createPayment')
def debt_partners_create_payment(
    payload: PartnerPaymentCreate,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    result = allocate_partner_payment(db, caller, **payload.model_dump())
    return camelize(
        {
            'total_payment': result.total_payment,
            'orders_updated': result.orders_updated,
            'details': [asdict(row) for row in result.details],
            'unallocated_amount': result.unallocated_amount,
        }
    )


@router.get('/debtSummary.getSummary')
def debt_summary_get_summary(
    type: SummaryKind,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    rows = debt_summary_service.get_debt_summary(db, caller, partner_type=SUMMARY_PARTNER_TYPES[type])
    return camelize(rows)


@router.get('/debtOrders.getOrders')
def debt_orders_get_orders(
    customer_id: int | None = Query(None, alias='customerId'),
    supplier_id: int | None = Query(None, alias='supplierId'),
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    rows = debt_summary_service.list_partner_orders(db, caller, customer_id=customer_id, supplier_id=supplier_id)
    return camelize(rows)


@router.post('/bankAccounts.create')
def bank_accounts_create(
    payload: BankAccountCreate,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    return camelize(bank_account_service.create_bank_account(db, caller, **payload.model_dump()))


@router.get('/bankAccounts.list')
def bank_accounts_list(
    is_active: bool | None = Query(None, alias='isActive'),
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return camelize(bank_account_service.list_bank_accounts(db, caller, is_active=is_active))
