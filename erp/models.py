from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
PrimaryKey = BigInteger().with_variant(Integer(), 'sqlite')

MONEY = Numeric(18, 2)
QUANTITY = Numeric(18, 3)


class Base(DeclarativeBase):
    pass


class WarehouseType(str, Enum):
    MATERIAL = 'MATERIAL'
    FINISHED_GOOD = 'FINISHED_GOOD'


class TransactionType(str, Enum):
    NHAP = 'NHAP'
    XUAT = 'XUAT'
    CHUYEN = 'CHUYEN'


class TransactionStatus(str, Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    CANCELLED = 'CANCELLED'


class DebtType(str, Enum):
    RECEIVABLE = 'RECEIVABLE'
    PAYABLE = 'PAYABLE'


class DebtStatus(str, Enum):
    PENDING = 'PENDING'
    PARTIAL = 'PARTIAL'
    PAID = 'PAID'
    OVERDUE = 'OVERDUE'


class PaymentMethod(str, Enum):
    CASH = 'CASH'
    BANK = 'BANK'
    TRANSFER = 'TRANSFER'


class OrderPaymentStatus(str, Enum):
    UNPAID = 'UNPAID'
    PARTIAL = 'PARTIAL'
    PAID = 'PAID'


class OrderStatus(str, Enum):
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'


class Branch(Base):
    __tablename__ = 'branches'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    branch_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    branch_name: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Role(Base):
    __tablename__ = 'roles'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    role_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    role_name: Mapped[str] = mapped_column(Text, nullable=False)


class Permission(Base):
    __tablename__ = 'permissions'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    permission_code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    module: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)


class RolePermission(Base):
    __tablename__ = 'role_permissions'
    __table_args__ = (
        UniqueConstraint('role_id', 'permission_id', name='role_permissions_role_permission_key'),
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    role_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('roles.id', ondelete='CASCADE'), nullable=False)
    permission_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('permissions.id', ondelete='CASCADE'), nullable=False)
    can_view: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    can_create: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    can_edit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    can_delete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    role_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('roles.id'), nullable=False)
    branch_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('branches.id'))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    role: Mapped[Role] = relationship()


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    attempted_username: Mapped[str] = mapped_column(String(100), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Warehouse(Base):
    __tablename__ = 'warehouses'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    warehouse_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    warehouse_name: Mapped[str] = mapped_column(Text, nullable=False)
    warehouse_type: Mapped[WarehouseType] = mapped_column(SQLEnum(WarehouseType, name='warehouse_type'), nullable=False)
    branch_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('branches.id'), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Product(Base):
    __tablename__ = 'products'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    product_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    product_name: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str] = mapped_column(String(30), nullable=False, default='pcs', server_default='pcs')
    branch_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('branches.id'), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')


class Material(Base):
    __tablename__ = 'materials'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    material_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    material_name: Mapped[str] = mapped_column(Text, nullable=False)
    unit: Mapped[str] = mapped_column(String(30), nullable=False, default='kg', server_default='kg')
    branch_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('branches.id'), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')


class InventoryBalance(Base):
    __tablename__ = 'inventory_balances'
    __table_args__ = (
        CheckConstraint('quantity >= 0', name='inventory_balances_non_negative_ck'),
        CheckConstraint(
            '(product_id IS NULL) <> (material_id IS NULL)',
            name='inventory_balances_single_item_ck',
        ),
        UniqueConstraint('warehouse_id', 'product_id', name='inventory_balances_warehouse_product_key'),
        UniqueConstraint('warehouse_id', 'material_id', name='inventory_balances_warehouse_material_key'),
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    warehouse_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('warehouses.id'), nullable=False)
    product_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('products.id'))
    material_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('materials.id'))
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=Decimal('0.000'), server_default='0')
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InventoryTransaction(Base):
    __tablename__ = 'inventory_transactions'
    __table_args__ = (
        UniqueConstraint('transaction_code', name='inventory_transactions_code_key'),
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    transaction_code: Mapped[str] = mapped_column(String(30), nullable=False)
    transaction_type: Mapped[TransactionType] = mapped_column(
        SQLEnum(TransactionType, name='inventory_transaction_type'), nullable=False
    )
    from_warehouse_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('warehouses.id'))
    to_warehouse_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('warehouses.id'))
    status: Mapped[TransactionStatus] = mapped_column(
        SQLEnum(TransactionStatus, name='inventory_transaction_status'),
        nullable=False,
        default=TransactionStatus.PENDING,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    approved_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('users.id'))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    details: Mapped[list[InventoryTransactionDetail]] = relationship(
        back_populates='transaction',
        cascade='all, delete-orphan',
        order_by='InventoryTransactionDetail.id',
    )


class InventoryTransactionDetail(Base):
    __tablename__ = 'inventory_transaction_details'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='inventory_transaction_details_positive_qty_ck'),
        CheckConstraint('unit_price >= 0', name='inventory_transaction_details_price_ck'),
        CheckConstraint(
            '(product_id IS NULL) <> (material_id IS NULL)',
            name='inventory_transaction_details_single_item_ck',
        ),
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    transaction_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('inventory_transactions.id', ondelete='CASCADE'), nullable=False
    )
    product_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('products.id'))
    material_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('materials.id'))
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0.00'), server_default='0')
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0.00'), server_default='0')
    notes: Mapped[str | None] = mapped_column(Text)

    transaction: Mapped[InventoryTransaction] = relationship(back_populates='details')


class CodeSequence(Base):
    __tablename__ = 'code_sequences'
    __table_args__ = (
        UniqueConstraint('prefix', 'date_key', name='code_sequences_prefix_date_key'),
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    prefix: Mapped[str] = mapped_column(String(10), nullable=False)
    date_key: Mapped[str] = mapped_column(String(6), nullable=False)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Customer(Base):
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    customer_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    customer_name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30))
    email: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    debt_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0.00'), server_default='0')
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Supplier(Base):
    __tablename__ = 'suppliers'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    supplier_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    supplier_name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30))
    email: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    debt_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0.00'), server_default='0')
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SalesOrder(Base):
    __tablename__ = 'orders'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    order_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    customer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('customers.id'), nullable=False)
    branch_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('branches.id'))
    order_date: Mapped[date | None] = mapped_column(Date)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0.00'), server_default='0')
    discount_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0.00'), server_default='0')
    final_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0.00'), server_default='0')
    paid_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0.00'), server_default='0')
    payment_status: Mapped[OrderPaymentStatus] = mapped_column(
        SQLEnum(OrderPaymentStatus, name='order_payment_status'),
        nullable=False,
        default=OrderPaymentStatus.UNPAID,
    )
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name='order_status'), nullable=False, default=OrderStatus.PENDING
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PurchaseOrder(Base):
    __tablename__ = 'purchase_orders'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    po_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    supplier_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('suppliers.id'), nullable=False)
    branch_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('branches.id'))
    order_date: Mapped[date | None] = mapped_column(Date)
    expected_date: Mapped[date | None] = mapped_column(Date)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0.00'), server_default='0')
    paid_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0.00'), server_default='0')
    payment_status: Mapped[OrderPaymentStatus] = mapped_column(
        SQLEnum(OrderPaymentStatus, name='order_payment_status'),
        nullable=False,
        default=OrderPaymentStatus.UNPAID,
    )
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name='order_status'), nullable=False, default=OrderStatus.PENDING
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BankAccount(Base):
    __tablename__ = 'bank_accounts'

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    account_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    account_holder: Mapped[str] = mapped_column(Text, nullable=False)
    bank_name: Mapped[str] = mapped_column(Text, nullable=False)
    branch_name: Mapped[str | None] = mapped_column(Text)
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0.00'), server_default='0')
    branch_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('branches.id'))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Debt(Base):
    __tablename__ = 'debt_management'
    __table_args__ = (
        UniqueConstraint('debt_code', name='debt_management_debt_code_key'),
        CheckConstraint('original_amount > 0', name='debt_management_original_positive_ck'),
        CheckConstraint('paid_amount >= 0', name='debt_management_paid_non_negative_ck'),
        CheckConstraint('remaining_amount >= 0', name='debt_management_remaining_non_negative_ck'),
        CheckConstraint(
            "(debt_type = 'RECEIVABLE' AND customer_id IS NOT NULL AND supplier_id IS NULL)"
            " OR (debt_type = 'PAYABLE' AND supplier_id IS NOT NULL AND customer_id IS NULL)",
            name='debt_management_partner_ck',
        ),
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    debt_code: Mapped[str] = mapped_column(String(50), nullable=False)
    debt_type: Mapped[DebtType] = mapped_column(SQLEnum(DebtType, name='debt_type'), nullable=False)
    customer_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('customers.id'))
    supplier_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('suppliers.id'))
    original_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal('0.00'), server_default='0')
    remaining_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[DebtStatus] = mapped_column(
        SQLEnum(DebtStatus, name='debt_status'), nullable=False, default=DebtStatus.PENDING
    )
    reference_id: Mapped[int | None] = mapped_column(BigInteger)
    reference_type: Mapped[str | None] = mapped_column(String(30))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DebtPayment(Base):
    __tablename__ = 'debt_payments'
    __table_args__ = (
        CheckConstraint('payment_amount > 0', name='debt_payments_positive_amount_ck'),
    )

    id: Mapped[int] = mapped_column(PrimaryKey, primary_key=True)
    debt_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('debt_management.id'), nullable=False)
    payment_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(SQLEnum(PaymentMethod, name='payment_method'), nullable=False)
    bank_account_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('bank_accounts.id'))
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[int] = mapped_column(BigInteger, ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
