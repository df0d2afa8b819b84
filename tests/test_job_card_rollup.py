import importlib
import os
import sys
import unittest
from types import SimpleNamespace
from unittest import mock

import pytest

from finance.job_cards import should_auto_complete


def _record(status):
    return SimpleNamespace(status=status)


@pytest.mark.parametrize(
    "card_status, expense_statuses, expected",
    [
        ("IN_PROGRESS", ["PAID", "CANCELLED"], True),
        ("DRAFT", ["PAID"], True),
        ("IN_PROGRESS", ["PAID", "PENDING"], False),
        ("IN_PROGRESS", ["APPROVED"], False),
        ("IN_PROGRESS", ["REJECTED"], False),
        ("IN_PROGRESS", [], False),
        ("COMPLETED", ["PAID"], False),
        ("CANCELLED", ["PAID"], False),
    ],
)
def test_should_auto_complete(card_status, expense_statuses, expected):
    card = _record(card_status)
    expenses = [_record(status) for status in expense_statuses]
    assert should_auto_complete(card, expenses) is expected


class JobCardRollupTestCase(unittest.TestCase):
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

        director = models.User(name="Director", email="director@example.com", role=models.RoleEnum.DIRECTOR)
        director.set_password("Password!1")
        staff = models.User(name="Technician", email="tech@example.com", role=models.RoleEnum.STAFF)
        staff.set_password("Password!1")
        client = models.Client(company_name="Acme Ltd")
        self.db.session.add_all([director, staff, client])
        self.db.session.commit()
        finance.seed_expense_categories()

        self.director = finance.Actor(id=director.id, role=models.RoleEnum.DIRECTOR)
        self.staff = finance.Actor(id=staff.id, role=models.RoleEnum.STAFF)
        self.job_card = finance.create_job_card(
            {"client_id": client.id, "status": "IN_PROGRESS", "location": "Nairobi"},
            actor=self.staff,
        )

    def tearDown(self):
        self.db.session.remove()
        self.db.drop_all()
        self.ctx.pop()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def _linked_expense(self, description):
        return self.finance.submit_expense(
            {
                "category_id": "transport",
                "description": description,
                "amount": "750.00",
                "status": "PENDING",
                "job_card_id": self.job_card.id,
            },
            actor=self.staff,
        )

    def _card_status(self):
        return self.db.session.get(self.models.JobCard, self.job_card.id).status

    def test_card_completes_once_every_linked_expense_is_resolved(self):
        first = self._linked_expense("Fuel to site")
        second = self._linked_expense("Cable ties")

        self.finance.approve_expense(first.id, actor=self.director)
        result = self.finance.mark_expense_paid(first.id, actor=self.director)
        self.assertIsNotNone(result.rollup)
        self.assertFalse(result.rollup.completed)
        self.assertIsNone(result.rollup.error)
        self.assertEqual(self._card_status(), self.models.JobCardStatus.IN_PROGRESS)

        result = self.finance.cancel_expense(second.id, actor=self.staff)
        self.assertTrue(result.rollup.completed)
        self.assertEqual(result.rollup.status, "COMPLETED")
        card = self.db.session.get(self.models.JobCard, self.job_card.id)
        self.assertEqual(card.status, self.models.JobCardStatus.COMPLETED)
        self.assertIsNotNone(card.completed_at)

    def test_rollup_is_idempotent(self):
        expense = self._linked_expense("Fuel to site")
        self.finance.cancel_expense(expense.id, actor=self.staff)

        again = self.finance.evaluate_job_card(self.job_card.id)
        self.assertFalse(again.completed)
        self.assertIsNone(again.error)
        self.assertEqual(again.status, "COMPLETED")

    def test_rejected_expense_keeps_card_open(self):
        expense = self._linked_expense("Meals")
        self.finance.reject_expense(expense.id, "No receipt", actor=self.director)

        result = self.finance.evaluate_job_card(self.job_card.id)
        self.assertFalse(result.completed)
        self.assertEqual(self._card_status(), self.models.JobCardStatus.IN_PROGRESS)

    def test_rollup_failure_does_not_undo_expense_transition(self):
        expense = self._linked_expense("Fuel to site")
        self.finance.approve_expense(expense.id, actor=self.director)

        with mock.patch(
            "finance.job_cards.should_auto_complete",
            side_effect=RuntimeError("rollup exploded"),
        ), self.assertLogs(self.app.logger, level="ERROR"):
            result = self.finance.mark_expense_paid(expense.id, actor=self.director)

        self.assertEqual(result.rollup.error, "rollup exploded")
        self.assertFalse(result.rollup.completed)
        reloaded = self.db.session.get(self.models.Expense, expense.id)
        self.assertEqual(reloaded.status, self.models.ExpenseStatus.PAID)
        self.assertEqual(self._card_status(), self.models.JobCardStatus.IN_PROGRESS)

        # A later manual re-check applies the rule once the fault is gone.
        retry = self.finance.evaluate_job_card(self.job_card.id)
        self.assertTrue(retry.completed)

    def test_expenses_cannot_link_to_cancelled_card(self):
        self.finance.update_job_card(self.job_card.id, {"status": "CANCELLED"}, actor=self.director)
        with self.assertRaises(self.finance.FinanceValidationError) as ctx:
            self._linked_expense("Late claim")
        self.assertIn("job_card_id", ctx.exception.errors)

    def test_expenses_cannot_link_to_completed_card(self):
        unlinked = self.finance.submit_expense(
            {"category_id": "meals", "description": "Lunch", "amount": "300"},
            actor=self.staff,
        )
        self.finance.update_job_card(self.job_card.id, {"status": "COMPLETED"}, actor=self.director)

        with self.assertRaises(self.finance.FinanceValidationError) as ctx:
            self._linked_expense("Late claim")
        self.assertEqual(
            ctx.exception.errors["job_card_id"],
            "Expenses cannot be linked to a completed job card.",
        )

        with self.assertRaises(self.finance.FinanceValidationError):
            self.finance.edit_expense(unlinked.id, {"job_card_id": self.job_card.id}, actor=self.staff)
        reloaded = self.db.session.get(self.models.Expense, unlinked.id)
        self.assertIsNone(reloaded.job_card_id)

    def test_failed_job_card_update_leaves_no_partial_changes(self):
        original_visit_date = self.db.session.get(self.models.JobCard, self.job_card.id).visit_date

        with self.assertRaises(self.finance.FinanceValidationError) as ctx:
            self.finance.update_job_card(
                self.job_card.id,
                {"visit_date": "2030-12-31", "location": "Kisumu", "client_id": 99999},
                actor=self.director,
            )
        self.assertIn("client_id", ctx.exception.errors)

        self.finance.evaluate_job_card(self.job_card.id)
        self.db.session.commit()
        card = self.db.session.get(self.models.JobCard, self.job_card.id)
        self.assertEqual(card.visit_date, original_visit_date)
        self.assertEqual(card.location, "Nairobi")

    def test_failed_task_update_leaves_no_partial_changes(self):
        task = self.finance.add_job_task(
            self.job_card.id,
            {
                "description": "Replace router",
                "start_time": "2024-07-02T09:00:00",
                "end_time": "2024-07-02T11:00:00",
            },
        )

        with self.assertRaises(self.finance.FinanceValidationError) as ctx:
            self.finance.update_job_task(
                self.job_card.id,
                task.id,
                {"description": "Replace switch", "end_time": "2024-07-02T08:00:00"},
            )
        self.assertIn("end_time", ctx.exception.errors)

        self.db.session.commit()
        reloaded = self.db.session.get(self.models.JobTask, task.id)
        self.assertEqual(reloaded.description, "Replace router")
        self.assertEqual(reloaded.end_time.hour, 11)

    def test_financials_summarise_linked_expenses(self):
        self.finance.add_job_expense(self.job_card.id, {"category": "Parking", "amount": "150.00"})
        paid = self._linked_expense("Fuel to site")
        self._linked_expense("Cable ties")
        self.finance.approve_expense(paid.id, actor=self.director)
        self.finance.mark_expense_paid(paid.id, actor=self.director)

        card = self.db.session.get(self.models.JobCard, self.job_card.id)
        summary = self.finance.job_card_financials(card)
        self.assertEqual(str(summary["job_expense_total"]), "150.00")
        self.assertEqual(summary["linked_status_counts"]["PAID"], 1)
        self.assertEqual(summary["linked_status_counts"]["PENDING"], 1)
        self.assertEqual(str(summary["linked_paid_total"]), "750.00")
        self.assertEqual(str(summary["linked_outstanding_total"]), "750.00")
        self.assertEqual(summary["unresolved_expense_count"], 1)
        self.assertFalse(summary["would_auto_complete"])


if __name__ == "__main__":
    unittest.main()
