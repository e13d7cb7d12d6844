from __future__ import annotations

import unittest
from decimal import Decimal

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from erp.db import get_db
from erp.error_handlers import install_error_handlers
from erp.models import DebtType, WarehouseType
from erp.routers import admin, finance, inventory
from erp.services import debt_service
from erp.services.item_ref import MaterialRef
from tests.support import add_customer, add_material, add_warehouse, make_session, seed_org, set_balance

CSRF_HEADERS = {'Cookie': 'csrf_token=test-token', 'X-CSRF-Token': 'test-token'}


class RpcApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.org = seed_org(self.db)
        self.warehouse = add_warehouse(self.db, self.org.branch.id, 'MAT-1', WarehouseType.MATERIAL)
        self.leaf = MaterialRef(add_material(self.db, self.org.branch.id, 'NL001', 'Leaf').id)
        add_material(self.db, self.org.branch.id, 'NL002', 'Bag')
        set_balance(self.db, self.warehouse.id, self.leaf, 10)
        self.caller = self.org.admin

        app = FastAPI()
        install_error_handlers(app)

        @app.middleware('http')
        async def attach_caller(request: Request, call_next):
            request.state.caller = self.caller
            return await call_next(request)

        app.include_router(inventory.router)
        app.include_router(finance.router)
        app.include_router(admin.router)
        app.dependency_overrides[get_db] = lambda: self.db
        self.client = TestClient(app)

    def tearDown(self) -> None:
        self.client.close()
        self.db.close()

    def _export(self, quantity):
        return self.client.post(
            '/rpc/inventory/export.create',
            json={'fromWarehouseId': self.warehouse.id, 'items': [{'materialId': self.leaf.id, 'quantity': quantity}]},
            headers=CSRF_HEADERS,
        )

    def test_export_returns_id_and_code(self) -> None:
        response = self._export(4)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertRegex(body['transactionCode'], r'^PX\d{6}\d{4}$')
        self.assertIn('id', body)

    def test_insufficient_stock_maps_to_conflict(self) -> None:
        response = self._export(12)

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['error'], 'INSUFFICIENT_STOCK')
        self.assertIn('material #', response.json()['message'])

    def test_mutation_without_csrf_token_is_refused(self) -> None:
        response = self.client.post(
            '/rpc/inventory/export.create',
            json={'fromWarehouseId': self.warehouse.id, 'items': [{'materialId': self.leaf.id, 'quantity': 1}]},
        )
        self.assertEqual(response.status_code, 403)

    def test_line_with_two_item_ids_is_a_validation_error(self) -> None:
        response = self.client.post(
            '/rpc/inventory/export.create',
            json={
                'fromWarehouseId': self.warehouse.id,
                'items': [{'materialId': self.leaf.id, 'productId': 1, 'quantity': 1}],
            },
            headers=CSRF_HEADERS,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'VALIDATION_ERROR')

    def test_permission_denied_maps_to_forbidden(self) -> None:
        self.caller = self.org.staff
        response = self.client.get('/rpc/finance/debtSummary.getSummary', params={'type': 'customers'})

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['error'], 'PERMISSION_DENIED')

    def test_balance_uses_camel_case_keys(self) -> None:
        response = self.client.get(
            '/rpc/inventory/balance.get',
            params={'warehouseId': self.warehouse.id, 'showAll': 'false'},
        )

        self.assertEqual(response.status_code, 200)
        details = response.json()['details']
        self.assertEqual([row['itemCode'] for row in details], ['NL001'])
        self.assertEqual(Decimal(details[0]['quantity']), Decimal('10'))
        self.assertIsInstance(details[0]['quantity'], str)
        self.assertEqual(len(response.json()['summary']), 2)

    def test_unknown_warehouse_is_not_found(self) -> None:
        response = self.client.get('/rpc/inventory/balance.get', params={'warehouseId': 9999})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'NOT_FOUND')

    def test_overpayment_maps_to_conflict(self) -> None:
        customer = add_customer(self.db, 'KH001')
        debt = debt_service.create_debt(
            self.db,
            self.org.admin,
            debt_code='CN001',
            debt_type=DebtType.RECEIVABLE,
            original_amount=Decimal('500'),
            customer_id=customer.id,
        )
        payment = {'debtId': debt['id'], 'paymentDate': '2026-02-01', 'paymentMethod': 'CASH'}

        paid = self.client.post(
            '/rpc/finance/debts.createPayment',
            json={**payment, 'paymentAmount': '500'},
            headers=CSRF_HEADERS,
        )
        self.assertEqual(paid.status_code, 200)
        self.assertEqual(paid.json()['status'], 'PAID')
        self.assertIsInstance(paid.json()['paymentAmount'], str)
        self.assertEqual(Decimal(paid.json()['remainingAmount']), Decimal('0'))

        again = self.client.post(
            '/rpc/finance/debts.createPayment',
            json={**payment, 'paymentAmount': '1'},
            headers=CSRF_HEADERS,
        )
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()['error'], 'OVERPAYMENT')

    def test_partner_payment_without_orders(self) -> None:
        customer = add_customer(self.db, 'KH001')
        response = self.client.post(
            '/rpc/finance/debtPartners.createPayment',
            json={'partnerId': customer.id, 'partnerType': 'customer', 'paymentAmount': '100'},
            headers=CSRF_HEADERS,
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['error'], 'NOTHING_TO_ALLOCATE')

    def test_warehouse_listing(self) -> None:
        response = self.client.get('/rpc/admin/warehouses.list')
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row['warehouseCode'] for row in response.json()], ['MAT-1'])


if __name__ == '__main__':
    unittest.main()
