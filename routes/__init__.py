from . import (
    auth,
    expenses,
    job_cards,
    sales,
)

__all__ = [
    "auth",
    "expenses",
    "job_cards",
    "sales",
]
