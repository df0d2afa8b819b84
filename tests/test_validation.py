from datetime import date, datetime
from decimal import Decimal

import pytest

from finance.errors import FinancePermissionError, FinanceValidationError
from finance.validation import (
    Actor,
    date_field,
    datetime_field,
    enum_field,
    money_field,
    page_args,
    quantity_field,
    raise_if_errors,
    require_director,
    require_owner_or_director,
    require_text,
)
from models import ExpenseStatus, RoleEnum


def test_money_field_accepts_positive_two_place_amounts():
    errors = {}
    assert money_field("500.25", "amount", errors) == Decimal("500.25")
    assert errors == {}


@pytest.mark.parametrize(
    "raw, message",
    [
        (None, "Amount is required."),
        ("0", "Amount must be greater than 0."),
        ("-5", "Amount must be greater than 0."),
        ("1.005", "Amount cannot have more than two decimal places."),
        ("ten", "Enter a valid number."),
    ],
)
def test_money_field_records_errors(raw, message):
    errors = {}
    assert money_field(raw, "amount", errors) is None
    assert errors == {"amount": message}


def test_optional_money_field_allows_blank():
    errors = {}
    assert money_field("", "agreed", errors, required=False) is None
    assert errors == {}


@pytest.mark.parametrize("raw", ["0", "-1", "1.5", "abc", True, None])
def test_quantity_field_rejects_non_positive_or_fractional(raw):
    errors = {}
    assert quantity_field(raw, "quantity", errors) is None
    assert "quantity" in errors


def test_quantity_field_accepts_whole_numbers():
    errors = {}
    assert quantity_field("2", "quantity", errors) == 2
    assert quantity_field(3.0, "quantity", errors) == 3
    assert errors == {}


def test_date_and_datetime_parsing():
    errors = {}
    assert date_field("2024-07-01", "d", errors) == date(2024, 7, 1)
    assert date_field("2024-07-01T10:00:00", "d", errors) == date(2024, 7, 1)
    assert datetime_field("2024-07-01T12:00:00+03:00", "dt", errors) == datetime(2024, 7, 1, 9, 0)
    assert datetime_field("2024-07-01T12:00:00Z", "dt", errors) == datetime(2024, 7, 1, 12, 0)
    assert errors == {}

    assert date_field("07/01/2024", "d", errors) is None
    assert datetime_field("yesterday", "dt", errors) is None
    assert set(errors) == {"d", "dt"}


def test_enum_field_is_case_insensitive_and_reports_choices():
    errors = {}
    assert enum_field(ExpenseStatus, "pending", "status", errors) is ExpenseStatus.PENDING
    assert enum_field(ExpenseStatus, None, "status", errors, default=ExpenseStatus.DRAFT) is ExpenseStatus.DRAFT
    assert enum_field(ExpenseStatus, "archived", "status", errors) is None
    assert "DRAFT" in errors["status"]


def test_require_text_and_raise_if_errors():
    errors = {}
    assert require_text("  ", "description", errors, label="Description") is None
    with pytest.raises(FinanceValidationError) as excinfo:
        raise_if_errors(errors)
    assert excinfo.value.errors == {"description": "Description is required."}
    assert excinfo.value.to_dict()["errors"] == {"description": "Description is required."}


def test_actor_from_claims():
    actor = Actor.from_claims("7", "director")
    assert actor.id == 7
    assert actor.role is RoleEnum.DIRECTOR
    assert actor.is_director

    unknown = Actor.from_claims("not-a-number", "janitor")
    assert unknown.id is None
    assert unknown.role is None
    assert not unknown.is_director


def test_role_guards():
    director = Actor(id=1, role=RoleEnum.DIRECTOR)
    owner = Actor(id=2, role=RoleEnum.STAFF)
    other = Actor(id=3, role=RoleEnum.STAFF)

    require_director(director, "approve expenses")
    require_owner_or_director(director, 2, "cancel this expense")
    require_owner_or_director(owner, 2, "cancel this expense")

    with pytest.raises(FinancePermissionError):
        require_director(owner, "approve expenses")
    with pytest.raises(FinancePermissionError):
        require_owner_or_director(other, 2, "cancel this expense")


@pytest.mark.parametrize(
    "page, limit, expected",
    [
        (None, None, (1, 20)),
        ("3", "10", (3, 10)),
        ("0", "-4", (1, 20)),
        ("x", "500", (1, 100)),
    ],
)
def test_page_args(page, limit, expected):
    assert page_args(page, limit, default_limit=20, max_limit=100) == expected
