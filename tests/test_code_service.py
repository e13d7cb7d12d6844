from __future__ import annotations

import re
import unittest
from datetime import date

from erp.errors import DuplicateCode
from erp.models import CodeSequence, InventoryTransaction, TransactionStatus, TransactionType
from erp.services.code_service import date_key, format_code, next_transaction_code, parse_sequence
from tests.support import make_session, seed_org

DAY = date(2026, 1, 15)


class CodeFormatTests(unittest.TestCase):
    def test_format_code(self) -> None:
        self.assertEqual(format_code('PX', date_key(DAY), 12), 'PX2601150012')

    def test_parse_sequence(self) -> None:
        self.assertEqual(parse_sequence('PX2601150012', 'PX260115'), 12)
        self.assertEqual(parse_sequence('PN2601150012', 'PX260115'), 0)
        self.assertEqual(parse_sequence(None, 'PX260115'), 0)


class NextTransactionCodeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.org = seed_org(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def test_first_code_of_the_day(self) -> None:
        code = next_transaction_code(self.db, TransactionType.XUAT, DAY)
        self.assertEqual(code, 'PX2601150001')
        self.assertRegex(code, re.compile(r'^PX\d{6}\d{4}$'))

    def test_sequence_increments_per_prefix(self) -> None:
        first = next_transaction_code(self.db, TransactionType.NHAP, DAY)
        second = next_transaction_code(self.db, TransactionType.NHAP, DAY)
        other = next_transaction_code(self.db, TransactionType.CHUYEN, DAY)
        self.assertEqual((first, second, other), ('PN2601150001', 'PN2601150002', 'PC2601150001'))

    def test_counter_continues_after_existing_codes(self) -> None:
        self.db.add(
            InventoryTransaction(
                transaction_code='PX2601150007',
                transaction_type=TransactionType.XUAT,
                status=TransactionStatus.PENDING,
                created_by=self.org.admin_user.id,
            )
        )
        self.db.commit()

        self.assertEqual(next_transaction_code(self.db, TransactionType.XUAT, DAY), 'PX2601150008')
        self.assertEqual(next_transaction_code(self.db, TransactionType.XUAT, date(2026, 1, 16)), 'PX2601160001')

    def test_exhausted_sequence_raises(self) -> None:
        self.db.add(CodeSequence(prefix='PX', date_key='260115', last_value=9999))
        self.db.commit()

        with self.assertRaises(DuplicateCode):
            next_transaction_code(self.db, TransactionType.XUAT, DAY)


if __name__ == '__main__':
    unittest.main()
