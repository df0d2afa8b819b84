import importlib
import os
import sys
import unittest
from decimal import Decimal
from unittest import mock

from sqlalchemy.orm import Session


class ExpenseLifecycleTestCase(unittest.TestCase):
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
        staff = models.User(name="Staff", email="staff@example.com", role=models.RoleEnum.STAFF)
        staff.set_password("Password!1")
        other = models.User(name="Other", email="other@example.com", role=models.RoleEnum.STAFF)
        other.set_password("Password!1")
        self.db.session.add_all([director, staff, other])
        self.db.session.commit()
        finance.seed_expense_categories()

        self.director = finance.Actor(id=director.id, role=models.RoleEnum.DIRECTOR)
        self.staff = finance.Actor(id=staff.id, role=models.RoleEnum.STAFF)
        self.other = finance.Actor(id=other.id, role=models.RoleEnum.STAFF)

    def tearDown(self):
        self.db.session.remove()
        self.db.drop_all()
        self.ctx.pop()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def _submit(self, **overrides):
        payload = {
            "category_id": "transport",
            "description": "Taxi to client site",
            "amount": "1500",
        }
        payload.update(overrides)
        return self.finance.submit_expense(payload, actor=self.staff)

    def _status(self, expense_id):
        return self.db.session.get(self.models.Expense, expense_id).status

    def test_draft_expense_cannot_be_approved(self):
        expense = self._submit()
        self.assertEqual(expense.status, self.models.ExpenseStatus.DRAFT)
        self.assertEqual(expense.amount, Decimal("1500"))
        self.assertTrue(expense.expense_number.startswith("EXP-"))

        with self.assertRaises(self.finance.InvalidStateError):
            self.finance.approve_expense(expense.id, actor=self.director)
        self.assertEqual(self._status(expense.id), self.models.ExpenseStatus.DRAFT)

    def test_full_happy_path_records_audit_fields(self):
        expense = self._submit()
        self.finance.request_approval(expense.id, actor=self.staff)
        self.assertEqual(self._status(expense.id), self.models.ExpenseStatus.PENDING)

        approved = self.finance.approve_expense(expense.id, actor=self.director)
        self.assertEqual(approved.status, self.models.ExpenseStatus.APPROVED)
        self.assertEqual(approved.approved_by_id, self.director.id)
        self.assertIsNotNone(approved.approved_at)

        result = self.finance.mark_expense_paid(expense.id, actor=self.director)
        self.assertEqual(result.expense.status, self.models.ExpenseStatus.PAID)
        self.assertEqual(result.expense.paid_by_id, self.director.id)
        self.assertIsNotNone(result.expense.paid_at)
        self.assertIsNone(result.rollup)

    def test_paid_expense_rejects_every_further_transition(self):
        expense = self._submit(status="PENDING")
        self.finance.approve_expense(expense.id, actor=self.director)
        self.finance.mark_expense_paid(expense.id, actor=self.director)

        with self.assertRaises(self.finance.InvalidStateError):
            self.finance.cancel_expense(expense.id, actor=self.director)
        with self.assertRaises(self.finance.InvalidStateError):
            self.finance.mark_expense_paid(expense.id, actor=self.director)
        with self.assertRaises(self.finance.InvalidStateError):
            self.finance.reject_expense(expense.id, "Duplicate", actor=self.director)
        with self.assertRaises(self.finance.InvalidStateError):
            self.finance.edit_expense(expense.id, {"amount": "10"}, actor=self.director)
        self.assertEqual(self._status(expense.id), self.models.ExpenseStatus.PAID)

    def test_non_director_gets_permission_error_before_state_check(self):
        draft = self._submit()
        pending = self._submit(status="PENDING")

        for expense in (draft, pending):
            with self.assertRaises(self.finance.FinancePermissionError):
                self.finance.approve_expense(expense.id, actor=self.staff)
            with self.assertRaises(self.finance.FinancePermissionError):
                self.finance.mark_expense_paid(expense.id, actor=self.staff)
            with self.assertRaises(self.finance.FinancePermissionError):
                self.finance.reject_expense(expense.id, "Not allowed", actor=self.staff)

        self.assertEqual(self._status(draft.id), self.models.ExpenseStatus.DRAFT)
        self.assertEqual(self._status(pending.id), self.models.ExpenseStatus.PENDING)

    def test_reject_requires_reason_and_stores_it(self):
        expense = self._submit(status="PENDING")

        with self.assertRaises(self.finance.FinanceValidationError) as ctx:
            self.finance.reject_expense(expense.id, "   ", actor=self.director)
        self.assertIn("rejection_reason", ctx.exception.errors)
        self.assertEqual(self._status(expense.id), self.models.ExpenseStatus.PENDING)

        rejected = self.finance.reject_expense(expense.id, "  Missing receipt ", actor=self.director)
        self.assertEqual(rejected.status, self.models.ExpenseStatus.REJECTED)
        self.assertEqual(rejected.rejection_reason, "Missing receipt")
        self.assertEqual(rejected.rejected_by_id, self.director.id)

    def test_approved_expense_can_be_rejected_but_not_cancelled(self):
        expense = self._submit(status="PENDING")
        self.finance.approve_expense(expense.id, actor=self.director)

        with self.assertRaises(self.finance.InvalidStateError):
            self.finance.cancel_expense(expense.id, actor=self.staff)

        rejected = self.finance.reject_expense(expense.id, "Over budget", actor=self.director)
        self.assertEqual(rejected.status, self.models.ExpenseStatus.REJECTED)

    def test_rejection_reason_only_present_on_rejected_expenses(self):
        rejected = self._submit(status="PENDING")
        self.finance.reject_expense(rejected.id, "Duplicate", actor=self.director)
        cancelled = self._submit()
        self.finance.cancel_expense(cancelled.id, actor=self.staff)
        self._submit()

        for expense in self.models.Expense.query.all():
            if expense.status == self.models.ExpenseStatus.REJECTED:
                self.assertTrue(expense.rejection_reason)
            else:
                self.assertIsNone(expense.rejection_reason)

    def test_owner_or_director_may_cancel(self):
        mine = self._submit()
        with self.assertRaises(self.finance.FinancePermissionError):
            self.finance.cancel_expense(mine.id, actor=self.other)

        result = self.finance.cancel_expense(mine.id, actor=self.staff)
        self.assertEqual(result.expense.status, self.models.ExpenseStatus.CANCELLED)
        self.assertEqual(result.expense.cancelled_by_id, self.staff.id)

        pending = self._submit(status="PENDING")
        result = self.finance.cancel_expense(pending.id, actor=self.director)
        self.assertEqual(result.expense.status, self.models.ExpenseStatus.CANCELLED)

    def test_submit_validates_payload(self):
        with self.assertRaises(self.finance.FinanceValidationError) as ctx:
            self.finance.submit_expense(
                {"category_id": "yachts", "description": "", "amount": "-1", "status": "PAID"},
                actor=self.staff,
            )
        self.assertEqual(
            set(ctx.exception.errors),
            {"category_id", "description", "amount", "status"},
        )
        self.assertEqual(self.models.Expense.query.count(), 0)

    def test_submit_rejects_inactive_category_and_unknown_job_card(self):
        category = self.db.session.get(self.models.ExpenseCategory, "meals")
        category.is_active = False
        self.db.session.commit()

        with self.assertRaises(self.finance.FinanceValidationError) as ctx:
            self._submit(category_id="meals", job_card_id=999)
        self.assertEqual(ctx.exception.errors["category_id"], "Expense category is inactive.")
        self.assertEqual(ctx.exception.errors["job_card_id"], "Job card not found.")

    def test_edit_changes_details_but_never_status(self):
        expense = self._submit()

        with self.assertRaises(self.finance.FinanceValidationError) as ctx:
            self.finance.edit_expense(expense.id, {"status": "PAID", "amount": "99"}, actor=self.staff)
        self.assertIn("status", ctx.exception.errors)
        reloaded = self.db.session.get(self.models.Expense, expense.id)
        self.assertEqual(reloaded.amount, Decimal("1500"))
        self.assertEqual(reloaded.status, self.models.ExpenseStatus.DRAFT)

        with self.assertRaises(self.finance.FinancePermissionError):
            self.finance.edit_expense(expense.id, {"amount": "99"}, actor=self.other)

        edited = self.finance.edit_expense(
            expense.id,
            {"amount": "1750.50", "vendor": " Metro Cabs ", "payment_method": "mpesa"},
            actor=self.staff,
        )
        self.assertEqual(edited.amount, Decimal("1750.50"))
        self.assertEqual(edited.vendor, "Metro Cabs")
        self.assertEqual(edited.payment_method, self.models.PaymentMethod.MPESA)

    def test_allowed_actions_follow_role_and_status(self):
        expense = self._submit(status="PENDING")

        self.assertEqual(self.finance.allowed_actions(expense, self.staff), ["edit", "cancel"])
        self.assertEqual(
            self.finance.allowed_actions(expense, self.director),
            ["edit", "approve", "reject", "cancel"],
        )
        self.assertEqual(self.finance.allowed_actions(expense, self.other), [])

    def test_concurrent_approval_is_detected(self):
        expense_id = self._submit(status="PENDING").id

        def approve_elsewhere(*args, **kwargs):
            with Session(self.db.engine) as other:
                row = other.get(self.models.Expense, expense_id)
                row.status = self.models.ExpenseStatus.APPROVED
                row.approved_by_id = self.director.id
                other.commit()

        with mock.patch("finance.expenses.require_director", side_effect=approve_elsewhere):
            with self.assertRaises(self.finance.InvalidStateError):
                self.finance.approve_expense(expense_id, actor=self.director)

        reloaded = self.db.session.get(self.models.Expense, expense_id)
        self.assertEqual(reloaded.status, self.models.ExpenseStatus.APPROVED)
        self.assertIsNone(reloaded.approved_at)

    def test_missing_expense_is_not_found(self):
        with self.assertRaises(self.finance.NotFoundError):
            self.finance.approve_expense(404, actor=self.director)

    def test_list_expenses_filters_and_paginates(self):
        for index in range(3):
            self._submit(description=f"Fuel run {index}", category_id="fuel", status="PENDING")
        self._submit(description="Lunch meeting", category_id="meals")

        page = self.finance.list_expenses(status="pending", page=1, limit=2)
        self.assertEqual(page.total, 3)
        self.assertEqual(len(page.items), 2)

        page = self.finance.list_expenses(search="lunch")
        self.assertEqual([expense.description for expense in page.items], ["Lunch meeting"])

        with self.assertRaises(self.finance.FinanceValidationError):
            self.finance.list_expenses(start_date="2024-02-01", end_date="2024-01-01")


if __name__ == "__main__":
    unittest.main()
