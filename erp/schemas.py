from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, model_validator
from pydantic.alias_generators import to_camel

from erp.models import DebtType, PaymentMethod, WarehouseType
from erp.services.inventory_service import StockLine
from erp.services.item_ref import item_ref_from
from erp.services.partner_payment_service import PartnerType


class RpcInput(BaseModel):
    """Procedure input; accepts snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='forbid')


class StockLineIn(RpcInput):
    product_id: PositiveInt | None = None
    material_id: PositiveInt | None = None
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(default=Decimal('0'), ge=0)
    notes: str | None = None

    @model_validator(mode='after')
    def _exactly_one_item(self) -> StockLineIn:
        if (self.product_id is None) == (self.material_id is None):
            raise ValueError('Set exactly one of productId or materialId')
        return self

    def to_line(self) -> StockLine:
        return StockLine(
            item=item_ref_from(self.product_id, self.material_id),
            quantity=self.quantity,
            unit_price=self.unit_price,
            notes=self.notes,
        )


class ExportCreate(RpcInput):
    from_warehouse_id: PositiveInt
    items: list[StockLineIn] = Field(min_length=1)
    notes: str | None = None


class ImportCreate(RpcInput):
    to_warehouse_id: PositiveInt
    items: list[StockLineIn] = Field(min_length=1)
    notes: str | None = None


class TransferCreate(RpcInput):
    from_warehouse_id: PositiveInt
    to_warehouse_id: PositiveInt
    items: list[StockLineIn] = Field(min_length=1)
    notes: str | None = None


class TransactionRef(RpcInput):
    id: PositiveInt


class DebtCreate(RpcInput):
    debt_code: str = Field(min_length=1, max_length=50)
    debt_type: DebtType
    customer_id: PositiveInt | None = None
    supplier_id: PositiveInt | None = None
    original_amount: Decimal = Field(gt=0)
    due_date: date | None = None
    reference_id: PositiveInt | None = None
    reference_type: str | None = None
    notes: str | None = None


class DebtPaymentCreate(RpcInput):
    debt_id: PositiveInt
    payment_amount: Decimal = Field(gt=0)
    payment_date: date
    payment_method: PaymentMethod
    bank_account_id: PositiveInt | None = None
    notes: str | None = None


class PartnerPaymentCreate(RpcInput):
    partner_id: PositiveInt
    partner_type: PartnerType
    payment_amount: Decimal = Field(gt=0)
    payment_date: date | None = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    bank_account_id: PositiveInt | None = None


class BankAccountCreate(RpcInput):
    account_number: str = Field(min_length=1)
    account_holder: str = Field(min_length=1)
    bank_name: str = Field(min_length=1)
    branch_name: str | None = None
    balance: Decimal = Decimal('0')
    branch_id: PositiveInt | None = None


class WarehouseCreate(RpcInput):
    warehouse_code: str = Field(min_length=1, max_length=50)
    warehouse_name: str = Field(min_length=1)
    warehouse_type: WarehouseType
    branch_id: PositiveInt


class LoginRequest(RpcInput):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


def camelize(value):
    """Rename dict keys to camelCase, recursively, for JSON responses.

    Decimals are rendered as strings; the default encoder would turn them into floats.
    """
    if isinstance(value, dict):
        return {to_camel(key) if isinstance(key, str) else key: camelize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [camelize(item) for item in value]
    if isinstance(value, Decimal):
        return str(value)
    return value
