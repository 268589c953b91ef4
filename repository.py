"""Persistence for finance records.

Every read and write is scoped by the owning user id inside the query
itself. Records that are missing and records owned by another user both
surface as :class:`errors.NotFoundError`.
"""
import functools
import logging
from collections import namedtuple
from decimal import Decimal
from typing import Protocol

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from errors import NotFoundError, StorageError, ValidationError
from models import db, User, Category, Expense, Income, Budget, utcnow

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

ExpenseRow = namedtuple('ExpenseRow', 'category_id category_name amount date')


class FinanceRepository(Protocol):
    """Query capability consumed by the analytics engine. Range bounds are inclusive."""

    def find_expenses_in_range(self, user_id, start, end) -> list:
        ...

    def sum_expenses(self, user_id, start, end, category_id=None) -> Decimal:
        ...

    def sum_income(self, user_id, start, end) -> Decimal:
        ...

    def list_budgets_with_category(self, user_id) -> list:
        ...


def _to_decimal(value):
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(ZERO)


def storage_guard(fn):
    """Turn driver/ORM failures into StorageError after rolling back."""
    @functools.wraps(fn)
    def wrapped(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception('Storage failure in %s', fn.__name__)
            raise StorageError() from exc
    return wrapped


class SqlAlchemyRepository:

    def __init__(self, session=None):
        self.session = session or db.session

    # ---------------------- Helpers ----------------------
    def _owned(self, model, user_id, record_id, label):
        record = self.session.query(model).filter_by(id=record_id, user_id=user_id).first()
        if record is None:
            raise NotFoundError(f'{label} not found')
        return record

    def _check_category(self, user_id, category_id):
        exists = self.session.query(Category.id).filter_by(id=category_id, user_id=user_id).first()
        if exists is None:
            raise NotFoundError('Category not found', errors=[{'path': 'categoryId', 'message': 'Unknown category'}])

    def _save(self, record):
        self.session.add(record)
        self.session.commit()
        return record

    def _update(self, record, data):
        for attr, value in data.items():
            setattr(record, attr, value)
        self.session.commit()
        return record

    def _delete(self, record):
        self.session.delete(record)
        self.session.commit()

    # ---------------------- Users ----------------------
    @storage_guard
    def get_user(self, user_id):
        return self.session.get(User, user_id)

    @storage_guard
    def create_user(self, user_id, password_hash, email=None, first_name=None, last_name=None):
        if self.session.get(User, user_id) is not None:
            raise ValidationError('email', 'Email already registered')
        return self._save(User(id=user_id, email=email, first_name=first_name,
                               last_name=last_name, password_hash=password_hash))

    @storage_guard
    def upsert_user(self, user_id, email=None, first_name=None, last_name=None, profile_image_url=None):
        user = self.session.get(User, user_id)
        if user is None:
            user = User(id=user_id)
            self.session.add(user)
        user.email = email
        user.first_name = first_name
        user.last_name = last_name
        user.profile_image_url = profile_image_url
        user.updated_at = utcnow()
        self.session.commit()
        return user

    # ---------------------- Categories ----------------------
    @storage_guard
    def list_categories(self, user_id):
        return self.session.query(Category).filter_by(user_id=user_id).order_by(Category.name).all()

    @storage_guard
    def create_category(self, user_id, data):
        return self._save(Category(user_id=user_id, **data))

    @storage_guard
    def update_category(self, user_id, category_id, data):
        return self._update(self._owned(Category, user_id, category_id, 'Category'), data)

    @storage_guard
    def delete_category(self, user_id, category_id):
        # ORM cascade removes the category's expenses and budgets.
        self._delete(self._owned(Category, user_id, category_id, 'Category'))

    # ---------------------- Expenses ----------------------
    @storage_guard
    def list_expenses(self, user_id, limit=50):
        q = (self.session.query(Expense)
             .join(Category, Expense.category_id == Category.id)
             .filter(Expense.user_id == user_id)
             .order_by(Expense.date.desc()))
        if limit:
            q = q.limit(limit)
        return q.all()

    @storage_guard
    def create_expense(self, user_id, data):
        self._check_category(user_id, data['category_id'])
        return self._save(Expense(user_id=user_id, **data))

    @storage_guard
    def update_expense(self, user_id, expense_id, data):
        expense = self._owned(Expense, user_id, expense_id, 'Expense')
        if 'category_id' in data:
            self._check_category(user_id, data['category_id'])
        return self._update(expense, data)

    @storage_guard
    def delete_expense(self, user_id, expense_id):
        self._delete(self._owned(Expense, user_id, expense_id, 'Expense'))

    # ---------------------- Income ----------------------
    @storage_guard
    def list_income(self, user_id, limit=50):
        q = self.session.query(Income).filter_by(user_id=user_id).order_by(Income.date.desc())
        if limit:
            q = q.limit(limit)
        return q.all()

    @storage_guard
    def create_income(self, user_id, data):
        return self._save(Income(user_id=user_id, **data))

    @storage_guard
    def update_income(self, user_id, income_id, data):
        return self._update(self._owned(Income, user_id, income_id, 'Income'), data)

    @storage_guard
    def delete_income(self, user_id, income_id):
        self._delete(self._owned(Income, user_id, income_id, 'Income'))

    # ---------------------- Budgets ----------------------
    @storage_guard
    def list_budgets(self, user_id):
        return (self.session.query(Budget)
                .join(Category, Budget.category_id == Category.id)
                .filter(Budget.user_id == user_id)
                .all())

    @storage_guard
    def create_budget(self, user_id, data):
        self._check_category(user_id, data['category_id'])
        return self._save(Budget(user_id=user_id, **data))

    @storage_guard
    def update_budget(self, user_id, budget_id, data):
        budget = self._owned(Budget, user_id, budget_id, 'Budget')
        if 'category_id' in data:
            self._check_category(user_id, data['category_id'])
        return self._update(budget, data)

    @storage_guard
    def delete_budget(self, user_id, budget_id):
        self._delete(self._owned(Budget, user_id, budget_id, 'Budget'))

    # ---------------------- Aggregates ----------------------
    @storage_guard
    def find_expenses_in_range(self, user_id, start, end):
        rows = (self.session.query(Expense.category_id, Category.name, Expense.amount, Expense.date)
                .join(Category, Expense.category_id == Category.id)
                .filter(Expense.user_id == user_id, Expense.date >= start, Expense.date <= end)
                .order_by(Expense.date)
                .all())
        return [ExpenseRow(r[0], r[1], _to_decimal(r[2]), r[3]) for r in rows]

    @storage_guard
    def sum_expenses(self, user_id, start, end, category_id=None):
        q = self.session.query(func.sum(Expense.amount)).filter(
            Expense.user_id == user_id, Expense.date >= start, Expense.date <= end)
        if category_id is not None:
            q = q.filter(Expense.category_id == category_id)
        return _to_decimal(q.scalar())

    @storage_guard
    def sum_income(self, user_id, start, end):
        total = self.session.query(func.sum(Income.amount)).filter(
            Income.user_id == user_id, Income.date >= start, Income.date <= end).scalar()
        return _to_decimal(total)

    @storage_guard
    def list_budgets_with_category(self, user_id):
        # Outer join so a budget whose category vanished shows up with None.
        rows = (self.session.query(Budget, Category)
                .outerjoin(Category, Budget.category_id == Category.id)
                .filter(Budget.user_id == user_id)
                .all())
        return [(budget, category) for budget, category in rows]
