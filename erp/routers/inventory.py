from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from erp.auth import CallerContext, get_current_caller
from erp.db import get_db
from erp.models import TransactionStatus, TransactionType
from erp.schemas import ExportCreate, ImportCreate, TransactionRef, TransferCreate, camelize
from erp.security.csrf import verify_csrf
from erp.services import inventory_service

router = APIRouter(prefix='/rpc/inventory', tags=['inventory'])


@router.post('/export.create')
def export_create(
    payload: ExportCreate,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    created = inventory_service.create_export(
        db,
        caller,
        from_warehouse_id=payload.from_warehouse_id,
        lines=[line.to_line() for line in payload.items],
        notes=payload.notes,
    )
    return camelize(asdict(created))


@router.post('/import.create')
def import_create(
    payload: ImportCreate,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    created = inventory_service.create_import(
        db,
        caller,
        to_warehouse_id=payload.to_warehouse_id,
        lines=[line.to_line() for line in payload.items],
        notes=payload.notes,
    )
    return camelize(asdict(created))


@router.post('/transfer.create')
def transfer_create(
    payload: TransferCreate,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    created = inventory_service.create_transfer(
        db,
        caller,
        from_warehouse_id=payload.from_warehouse_id,
        to_warehouse_id=payload.to_warehouse_id,
        lines=[line.to_line() for line in payload.items],
        notes=payload.notes,
    )
    return camelize(asdict(created))


def _list(db: Session, caller: CallerContext, transaction_type: TransactionType, status, warehouse_id):
    rows = inventory_service.list_transactions(
        db,
        caller,
        transaction_type=transaction_type,
        status=status,
        warehouse_id=warehouse_id,
    )
    return camelize(rows)


@router.get('/export.list')
def export_list(
    status: TransactionStatus | None = None,
    warehouse_id: int | None = Query(None, alias='warehouseId'),
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return _list(db, caller, TransactionType.XUAT, status, warehouse_id)


@router.get('/import.list')
def import_list(
    status: TransactionStatus | None = None,
    warehouse_id: int | None = Query(None, alias='warehouseId'),
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return _list(db, caller, TransactionType.NHAP, status, warehouse_id)


@router.get('/transfer.list')
def transfer_list(
    status: TransactionStatus | None = None,
    warehouse_id: int | None = Query(None, alias='warehouseId'),
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return _list(db, caller, TransactionType.CHUYEN, status, warehouse_id)


@router.get('/transaction.get')
def transaction_get(
    id: int,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return camelize(inventory_service.get_transaction(db, caller, transaction_id=id))


@router.post('/transaction.approve')
def transaction_approve(
    payload: TransactionRef,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    return camelize(inventory_service.approve_transaction(db, caller, transaction_id=payload.id))


@router.post('/transaction.cancel')
def transaction_cancel(
    payload: TransactionRef,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    return camelize(inventory_service.cancel_transaction(db, caller, transaction_id=payload.id))


@router.get('/balance.get')
def balance_get(
    warehouse_id: int = Query(alias='warehouseId'),
    show_all: bool = Query(True, alias='showAll'),
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return camelize(inventory_service.get_balance(db, caller, warehouse_id=warehouse_id, show_all=show_all))


@router.get('/history.get')
def history_get(
    warehouse_id: int = Query(alias='warehouseId'),
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return camelize(inventory_service.get_history(db, caller, warehouse_id=warehouse_id))
