"""Overdue fine policy.

A loan accrues one daily rate for every whole day between its due date and
the day it came back (or now, while it is still out). Partial days are not
charged.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from ..db.models import Loan
from .schemas import FineAssessment

ONE_DAY = timedelta(days=1)
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class FinePolicy:
    """Flat per-day fine."""

    daily_rate: Decimal

    def __post_init__(self) -> None:
        if self.daily_rate < 0:
            raise ValueError("daily_rate cannot be negative")

    @staticmethod
    def overdue_days(due: datetime, end: datetime) -> int:
        """Whole days from due to end, never negative."""
        return max(0, (end - due) // ONE_DAY)

    def amount_for(self, overdue_days: int) -> Decimal:
        """Fine for a number of overdue days."""
        if overdue_days <= 0:
            return Decimal("0.00")
        return (self.daily_rate * overdue_days).quantize(CENTS, rounding=ROUND_HALF_UP)

    def assess(self, loan: Loan, now: datetime) -> FineAssessment:
        """Fine owed on a loan, measured up to its return date or now."""
        returned_at = loan.returned_at
        end = returned_at if returned_at is not None else now
        days = self.overdue_days(loan.due_at, end)
        return FineAssessment(
            loan_id=loan.id,
            due_date=loan.due_at,
            effective_end=end,
            overdue_days=days,
            daily_rate=self.daily_rate,
            amount=self.amount_for(days),
            is_returned=returned_at is not None,
        )
