import importlib
import os
import sys
import unittest
from datetime import date
from decimal import Decimal
from unittest import mock

import pytest
from sqlalchemy.orm import Session

from finance.sales import compute_paid, compute_total


class SaleLedgerTestCase(unittest.TestCase):
    def setUp(self):
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        if "app" in sys.modules:
            self.app_module = importlib.reload(sys.modules["app"])
        else:
            self.app_module = importlib.import_module("app")

        self.app = self.app_module.create_app()
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.db = self.app_module.db
        self.db.create_all()

        import finance
        import models

        self.finance = finance
        self.models = models

        user = models.User(name="Cashier", email="cashier@example.com", role=models.RoleEnum.STAFF)
        user.set_password("Password!1")
        client = models.Client(company_name="Acme Ltd")
        router = models.Product(name="Router", sku="RT-1", unit_price=Decimal("500.00"))
        cable = models.Product(name="Cable", sku="CB-1", unit_price=Decimal("20.00"))
        self.db.session.add_all([user, client, router, cable])
        self.db.session.commit()

        self.actor = finance.Actor(id=user.id, role=models.RoleEnum.STAFF)
        self.client_id = client.id
        self.router_id = router.id
        self.cable_id = cable.id

    def tearDown(self):
        self.db.session.remove()
        self.db.drop_all()
        self.ctx.pop()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def _create_sale(self, **overrides):
        payload = {
            "client_id": self.client_id,
            "items": [{"product_id": self.router_id, "quantity": 2, "unit_price": "500.00"}],
        }
        payload.update(overrides)
        return self.finance.create_sale(payload, actor=self.actor)

    def _reload(self, sale_id):
        return self.db.session.get(self.models.Sale, sale_id)

    def test_installments_cannot_exceed_remaining_balance(self):
        sale = self._create_sale()
        self.assertEqual(sale.total_amount, Decimal("1000.00"))
        self.assertEqual(sale.status, self.models.SaleStatus.PENDING)
        self.assertTrue(sale.sale_number.startswith("SAL-"))

        self.finance.record_installment(sale.id, {"amount": "600.00"}, actor=self.actor)
        sale = self._reload(sale.id)
        self.assertEqual(sale.paid_amount, Decimal("600.00"))
        self.assertEqual(sale.remaining_amount, Decimal("400.00"))

        with self.assertRaises(self.finance.FinanceValidationError) as ctx:
            self.finance.record_installment(sale.id, {"amount": "500.00"}, actor=self.actor)
        self.assertIn("amount", ctx.exception.errors)
        self.assertEqual(self._reload(sale.id).paid_amount, Decimal("600.00"))

        self.finance.record_installment(sale.id, {"amount": "400.00"}, actor=self.actor)
        sale = self._reload(sale.id)
        self.assertEqual(sale.remaining_amount, Decimal("0.00"))
        self.assertEqual(len(sale.installments), 2)

    def test_caller_supplied_total_is_ignored(self):
        sale = self._create_sale(total_amount="5", paid_amount="5")
        self.assertEqual(sale.total_amount, Decimal("1000.00"))
        self.assertEqual(sale.paid_amount, Decimal("0.00"))

    def test_first_installment_is_recorded_as_paid(self):
        sale = self._create_sale(first_installment={"amount": "250.00", "notes": "Deposit"})
        self.assertEqual(sale.paid_amount, Decimal("250.00"))
        self.assertEqual(len(sale.installments), 1)
        self.assertEqual(sale.installments[0].status, self.models.InstallmentStatus.PAID)
        self.assertEqual(sale.installments[0].notes, "Deposit")

    def test_first_installment_above_total_is_rejected(self):
        with self.assertRaises(self.finance.FinanceValidationError) as ctx:
            self._create_sale(first_installment={"amount": "1000.01"})
        self.assertEqual(ctx.exception.message, "amount exceeds total")
        self.assertEqual(self.models.Sale.query.count(), 0)

    def test_create_sale_requires_valid_items(self):
        with self.assertRaises(self.finance.FinanceValidationError) as ctx:
            self._create_sale(items=[])
        self.assertIn("items", ctx.exception.errors)

        with self.assertRaises(self.finance.FinanceValidationError) as ctx:
            self._create_sale(
                items=[
                    {"product_id": 999, "quantity": 0, "unit_price": "-1"},
                    {"product_id": self.cable_id, "quantity": "1.5", "unit_price": "2.001"},
                ]
            )
        errors = ctx.exception.errors
        self.assertEqual(
            set(errors),
            {
                "items[0].product_id",
                "items[0].quantity",
                "items[0].unit_price",
                "items[1].quantity",
                "items[1].unit_price",
            },
        )

    def test_item_mutations_recompute_totals(self):
        sale = self._create_sale()
        sale = self.finance.add_sale_item(
            sale.id, {"product_id": self.cable_id, "quantity": 5, "unit_price": "20.00"}
        )
        self.assertEqual(sale.total_amount, Decimal("1100.00"))

        cable_item = [item for item in sale.items if item.product_id == self.cable_id][0]
        sale = self.finance.update_sale_item(sale.id, cable_item.id, {"quantity": 10})
        self.assertEqual(sale.total_amount, Decimal("1200.00"))

        sale = self.finance.remove_sale_item(sale.id, cable_item.id)
        self.assertEqual(sale.total_amount, Decimal("1000.00"))
        self.assertEqual(len(sale.items), 1)

        sale.recalculate_totals()
        sale.recalculate_totals()
        self.assertEqual(sale.total_amount, Decimal("1000.00"))

    def test_item_mutation_cannot_drop_total_below_paid(self):
        sale = self._create_sale()
        self.finance.add_sale_item(
            sale.id, {"product_id": self.cable_id, "quantity": 5, "unit_price": "20.00"}
        )
        self.finance.record_installment(sale.id, {"amount": "1050.00"}, actor=self.actor)
        sale = self._reload(sale.id)
        router_item = [item for item in sale.items if item.product_id == self.router_id][0]
        cable_item = [item for item in sale.items if item.product_id == self.cable_id][0]

        with self.assertRaises(self.finance.InvariantViolation):
            self.finance.update_sale_item(sale.id, router_item.id, {"quantity": 1})
        with self.assertRaises(self.finance.InvariantViolation):
            self.finance.remove_sale_item(sale.id, cable_item.id)

        sale = self._reload(sale.id)
        self.assertEqual(sale.total_amount, Decimal("1100.00"))
        self.assertEqual(sale.paid_amount, Decimal("1050.00"))
        self.assertEqual(len(sale.items), 2)

    def test_last_item_cannot_be_removed(self):
        sale = self._create_sale()
        with self.assertRaises(self.finance.FinanceValidationError):
            self.finance.remove_sale_item(sale.id, sale.items[0].id)

    def test_pending_installment_counts_once_settled(self):
        sale = self._create_sale()
        installment = self.finance.record_installment(
            sale.id, {"amount": "300.00", "status": "PENDING"}, actor=self.actor
        )
        self.assertEqual(self._reload(sale.id).paid_amount, Decimal("0.00"))

        self.finance.settle_installment(sale.id, installment.id, actor=self.actor)
        self.assertEqual(self._reload(sale.id).paid_amount, Decimal("300.00"))

        with self.assertRaises(self.finance.InvalidStateError):
            self.finance.settle_installment(sale.id, installment.id, actor=self.actor)

    def test_payment_extension_is_informational(self):
        sale = self._create_sale(sale_date="2024-07-01")
        sale = self.finance.request_payment_extension(sale.id, "2024-09-30")
        self.assertTrue(sale.requested_payment_date_extension)
        self.assertEqual(sale.payment_extension_due_date, date(2024, 9, 30))
        self.assertEqual(sale.status, self.models.SaleStatus.PENDING)

        with self.assertRaises(self.finance.FinanceValidationError):
            self.finance.request_payment_extension(sale.id, "2024-06-01")

        sale = self.finance.clear_payment_extension(sale.id)
        self.assertFalse(sale.requested_payment_date_extension)
        self.assertIsNone(sale.payment_extension_due_date)

    def test_cancelled_sale_is_terminal(self):
        sale = self._create_sale()
        sale = self.finance.cancel_sale(sale.id, actor=self.actor)
        self.assertEqual(sale.status, self.models.SaleStatus.CANCELLED)
        self.assertIsNotNone(sale.cancelled_at)

        with self.assertRaises(self.finance.InvalidStateError):
            self.finance.record_installment(sale.id, {"amount": "1.00"}, actor=self.actor)
        with self.assertRaises(self.finance.InvalidStateError):
            self.finance.add_sale_item(
                sale.id, {"product_id": self.cable_id, "quantity": 1, "unit_price": "20.00"}
            )
        with self.assertRaises(self.finance.InvalidStateError):
            self.finance.cancel_sale(sale.id, actor=self.actor)

    def test_completed_sale_cannot_be_cancelled_or_reopened(self):
        sale = self._create_sale()
        sale = self.finance.update_sale(sale.id, {"status": "COMPLETED"}, actor=self.actor)
        self.assertEqual(sale.status, self.models.SaleStatus.COMPLETED)

        with self.assertRaises(self.finance.InvalidStateError):
            self.finance.cancel_sale(sale.id, actor=self.actor)
        with self.assertRaises(self.finance.InvalidStateError):
            self.finance.update_sale(sale.id, {"status": "PENDING"}, actor=self.actor)
        with self.assertRaises(self.finance.FinanceValidationError):
            self.finance.update_sale(sale.id, {"status": "CANCELLED"}, actor=self.actor)

    def test_concurrent_installment_cannot_overpay(self):
        sale_id = self._create_sale().id

        def pay_elsewhere(*args, **kwargs):
            with Session(self.db.engine) as other:
                row = other.get(self.models.Sale, sale_id)
                row.installments.append(
                    self.models.SaleInstallment(
                        amount=Decimal("900.00"),
                        paid_at=self.models.utcnow(),
                        status=self.models.InstallmentStatus.PAID,
                        recorded_by_id=self.actor.id,
                    )
                )
                row.recalculate_totals()
                other.commit()

        with mock.patch("finance.sales._check_remaining", side_effect=pay_elsewhere):
            with self.assertRaises(self.finance.InvalidStateError):
                self.finance.record_installment(sale_id, {"amount": "600.00"}, actor=self.actor)

        sale = self._reload(sale_id)
        self.assertEqual(sale.paid_amount, Decimal("900.00"))
        self.assertEqual(sale.total_amount, Decimal("1000.00"))
        self.assertEqual(len(sale.installments), 1)

    def test_sale_balance_and_lookup(self):
        sale = self._create_sale()
        self.finance.record_installment(sale.id, {"amount": "100.00"}, actor=self.actor)
        balance = self.finance.sale_balance(self._reload(sale.id))
        self.assertEqual(balance["remaining_amount"], Decimal("900.00"))

        found = self.finance.get_sale_by_number(sale.sale_number.lower())
        self.assertEqual(found.id, sale.id)
        with self.assertRaises(self.finance.NotFoundError):
            self.finance.get_sale(12345)


def test_compute_total_is_exact_and_idempotent():
    items = [
        {"quantity": 3, "unit_price": "0.10"},
        {"quantity": 1, "unit_price": Decimal("19.99")},
    ]
    assert compute_total(items) == Decimal("20.29")
    assert compute_total(items) == compute_total(items)


@pytest.mark.parametrize(
    "installments, expected",
    [
        ([], Decimal("0")),
        ([{"amount": "100.00", "status": "PAID"}, {"amount": "50.00", "status": "PENDING"}], Decimal("100.00")),
        ([{"amount": "0.10", "status": "paid"}, {"amount": "0.20", "status": "PAID"}], Decimal("0.30")),
    ],
)
def test_compute_paid_counts_only_paid_installments(installments, expected):
    assert compute_paid(installments) == expected


if __name__ == "__main__":
    unittest.main()
