from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from analytics import AnalyticsEngine
from errors import NotFoundError, StorageError
from models import Budget, Expense, PaymentMethod, BudgetPeriod
from repository import SqlAlchemyRepository

ANA = 'ana@example.com'
BOB = 'bob@example.com'


@pytest.fixture
def repo(app):
    with app.app_context():
        repository = SqlAlchemyRepository()
        repository.upsert_user(ANA, email=ANA)
        repository.upsert_user(BOB, email=BOB)
        yield repository


def _expense(repo, user, category, amount, date, description='item'):
    return repo.create_expense(user, {
        'category_id': category.id,
        'amount': Decimal(amount),
        'description': description,
        'payment_method': PaymentMethod.CASH,
        'date': date,
    })


def test_upsert_user_updates_existing_row(repo) -> None:
    repo.upsert_user(ANA, email=ANA, first_name='Ana')
    user = repo.get_user(ANA)
    assert user.first_name == 'Ana'
    assert user.email == ANA


def test_categories_are_owner_scoped(repo) -> None:
    repo.create_category(ANA, {'name': 'Food'})
    bobs = repo.create_category(BOB, {'name': 'Food'})

    assert [c.name for c in repo.list_categories(ANA)] == ['Food']
    with pytest.raises(NotFoundError):
        repo.update_category(ANA, bobs.id, {'name': 'Stolen'})
    with pytest.raises(NotFoundError):
        repo.delete_category(ANA, bobs.id)
    assert repo.list_categories(BOB)[0].name == 'Food'


def test_expense_rejects_foreign_category(repo) -> None:
    bobs = repo.create_category(BOB, {'name': 'Food'})
    with pytest.raises(NotFoundError):
        _expense(repo, ANA, bobs, '5', datetime(2024, 3, 1))


def test_list_expenses_newest_first_with_limit(repo) -> None:
    food = repo.create_category(ANA, {'name': 'Food'})
    for day in (3, 1, 2):
        _expense(repo, ANA, food, '1', datetime(2024, 3, day), description=f'day {day}')

    expenses = repo.list_expenses(ANA, limit=2)

    assert [e.description for e in expenses] == ['day 3', 'day 2']
    assert expenses[0].category.name == 'Food'


def test_update_and_delete_expense(repo) -> None:
    food = repo.create_category(ANA, {'name': 'Food'})
    expense = _expense(repo, ANA, food, '5', datetime(2024, 3, 1))

    updated = repo.update_expense(ANA, expense.id, {'amount': Decimal('7.25')})
    assert updated.amount == Decimal('7.25')
    with pytest.raises(NotFoundError):
        repo.delete_expense(BOB, expense.id)

    repo.delete_expense(ANA, expense.id)
    assert repo.list_expenses(ANA) == []


def test_deleting_category_cascades(repo) -> None:
    food = repo.create_category(ANA, {'name': 'Food'})
    _expense(repo, ANA, food, '5', datetime(2024, 3, 1))
    repo.create_budget(ANA, {
        'category_id': food.id,
        'amount': Decimal('40'),
        'period': BudgetPeriod.MONTHLY,
        'start_date': datetime(2024, 3, 1),
    })

    repo.delete_category(ANA, food.id)

    assert repo.session.query(Expense).count() == 0
    assert repo.session.query(Budget).count() == 0
    assert repo.list_budgets_with_category(ANA) == []
    assert AnalyticsEngine(repo).monthly_breakdown(ANA, 2024, 3) == []


def test_sums_use_inclusive_month_bounds(repo) -> None:
    food = repo.create_category(ANA, {'name': 'Food'})
    _expense(repo, ANA, food, '10.10', datetime(2024, 3, 31, 23, 59, 59))
    _expense(repo, ANA, food, '20.20', datetime(2024, 3, 1, 0, 0, 0))
    _expense(repo, ANA, food, '99.00', datetime(2024, 4, 1, 0, 0, 0))
    start, end = datetime(2024, 3, 1), datetime(2024, 3, 31, 23, 59, 59)

    assert repo.sum_expenses(ANA, start, end) == Decimal('30.30')
    assert repo.sum_expenses(ANA, start, end, category_id='missing') == Decimal('0')
    assert repo.sum_income(ANA, start, end) == Decimal('0')
    assert len(repo.find_expenses_in_range(ANA, start, end)) == 2
    assert repo.sum_expenses(BOB, start, end) == Decimal('0')


def test_income_crud_is_owner_scoped(repo) -> None:
    income = repo.create_income(ANA, {
        'amount': Decimal('1000'), 'source': 'Salary', 'description': None, 'date': datetime(2024, 3, 1),
    })
    with pytest.raises(NotFoundError):
        repo.update_income(BOB, income.id, {'source': 'Theft'})

    repo.update_income(ANA, income.id, {'source': 'Bonus'})
    assert repo.list_income(ANA)[0].source == 'Bonus'

    repo.delete_income(ANA, income.id)
    assert repo.list_income(ANA) == []


class BrokenSession:
    rolled_back = False

    def query(self, *args, **kwargs):
        raise OperationalError('SELECT 1', {}, Exception('disk I/O error'))

    def rollback(self):
        self.rolled_back = True


def test_storage_failure_becomes_storage_error() -> None:
    session = BrokenSession()
    broken = SqlAlchemyRepository(session=session)

    with pytest.raises(StorageError):
        broken.list_categories(ANA)
    with pytest.raises(StorageError):
        broken.sum_expenses(ANA, datetime(2024, 3, 1), datetime(2024, 3, 31, 23, 59, 59))
    assert session.rolled_back
