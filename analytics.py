"""Aggregate financial views over a user's records.

The engine is stateless: it receives the user id on every call and reads
through a :class:`repository.FinanceRepository`. All money arithmetic stays
in :class:`~decimal.Decimal`; values become floats only in ``to_dict``.
"""
import calendar
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple

from errors import NotFoundError, ValidationError
from models import utcnow

ZERO = Decimal('0.00')
HUNDRED = Decimal(100)
ALERT_THRESHOLD = Decimal(80)


def month_window(year: int, month: int) -> Tuple[datetime, datetime]:
    """Return the first and last instants of a calendar month.

    The end is 23:59:59 on the last day and is meant to be used as an
    inclusive upper bound.
    """
    if isinstance(year, bool) or not isinstance(year, int) or not 1 <= year <= 9999:
        raise ValidationError('year', 'Year must be an integer between 1 and 9999')
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise ValidationError('month', 'Month must be an integer between 1 and 12')
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, 1), datetime(year, month, last_day, 23, 59, 59)


@dataclass(frozen=True)
class CategoryTotal:
    category_id: str
    category_name: str
    total: Decimal

    def to_dict(self):
        return {'categoryId': self.category_id, 'categoryName': self.category_name, 'total': float(self.total)}


@dataclass(frozen=True)
class MonthTotals:
    total_expenses: Decimal = ZERO
    total_income: Decimal = ZERO

    @property
    def net_savings(self) -> Decimal:
        return self.total_income - self.total_expenses

    def to_dict(self):
        return {
            'totalExpenses': float(self.total_expenses),
            'totalIncome': float(self.total_income),
            'netSavings': float(self.net_savings),
        }


@dataclass(frozen=True)
class BudgetProgress:
    budget: Any
    category: Any
    spent: Decimal = ZERO

    @property
    def amount(self) -> Decimal:
        return self.budget.amount

    @property
    def percentage(self) -> Optional[Decimal]:
        """Share of the limit already spent, or None for a zero limit."""
        if self.amount == 0:
            return None
        return self.spent / self.amount * HUNDRED

    @property
    def remaining(self) -> Decimal:
        # Negative once the budget is overspent.
        return self.amount - self.spent

    @property
    def alert(self) -> bool:
        pct = self.percentage
        return pct is not None and pct >= ALERT_THRESHOLD

    @property
    def exceeded(self) -> bool:
        pct = self.percentage
        return pct is not None and pct >= HUNDRED

    def to_dict(self):
        budget = self.budget.to_dict()
        budget['category'] = self.category.to_dict()
        pct = self.percentage
        return {
            'budget': budget,
            'spent': float(self.spent),
            'percentage': None if pct is None else round(float(pct), 2),
            'remaining': float(self.remaining),
            'alert': self.alert,
            'exceeded': self.exceeded,
        }


@dataclass(frozen=True)
class MonthPoint:
    year: int
    month: int
    expenses: Decimal = ZERO
    income: Decimal = ZERO

    def to_dict(self):
        return {'month': f'{self.year:04d}-{self.month:02d}', 'expenses': float(self.expenses), 'income': float(self.income)}


class AnalyticsEngine:

    def __init__(self, repository, clock: Callable[[], datetime] = utcnow):
        self.repository = repository
        self.clock = clock

    def current_month_window(self) -> Tuple[datetime, datetime]:
        now = self.clock()
        return month_window(now.year, now.month)

    def monthly_breakdown(self, user_id, year: int, month: int) -> List[CategoryTotal]:
        """Spend per category for one month, only for categories with expenses."""
        start, end = month_window(year, month)
        names, totals = {}, {}
        for row in self.repository.find_expenses_in_range(user_id, start, end):
            # Keyed by id: two categories may share a name.
            names.setdefault(row.category_id, row.category_name)
            totals[row.category_id] = totals.get(row.category_id, ZERO) + row.amount
        return [CategoryTotal(cid, names[cid], total) for cid, total in totals.items()]

    def totals_for_current_month(self, user_id) -> MonthTotals:
        start, end = self.current_month_window()
        return MonthTotals(
            total_expenses=self.repository.sum_expenses(user_id, start, end) or ZERO,
            total_income=self.repository.sum_income(user_id, start, end) or ZERO,
        )

    def budget_progress(self, user_id) -> List[BudgetProgress]:
        """Current-month spend for every budget the user owns.

        The budget's own period and start date do not affect the window.
        """
        start, end = self.current_month_window()
        progress = []
        for budget, category in self.repository.list_budgets_with_category(user_id):
            if category is None:
                raise NotFoundError('Category not found for budget')
            spent = self.repository.sum_expenses(user_id, start, end, budget.category_id) or ZERO
            progress.append(BudgetProgress(budget=budget, category=category, spent=spent))
        return progress

    def monthly_trend(self, user_id, year: int) -> List[MonthPoint]:
        points = []
        for month in range(1, 13):
            start, end = month_window(year, month)
            points.append(MonthPoint(
                year=year,
                month=month,
                expenses=self.repository.sum_expenses(user_id, start, end) or ZERO,
                income=self.repository.sum_income(user_id, start, end) or ZERO,
            ))
        return points
