from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from erp.auth import CallerContext, get_current_caller
from erp.db import get_db
from erp.schemas import WarehouseCreate, camelize
from erp.security.csrf import verify_csrf
from erp.services import warehouse_service

router = APIRouter(prefix='/rpc/admin', tags=['admin'])


@router.post('/warehouses.create')
def warehouses_create(
    payload: WarehouseCreate,
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    return camelize(warehouse_service.create_warehouse(db, caller, **payload.model_dump()))


@router.get('/warehouses.list')
def warehouses_list(
    active_only: bool = Query(True, alias='activeOnly'),
    caller: CallerContext = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    return camelize(warehouse_service.list_warehouses(db, caller, active_only=active_only))
