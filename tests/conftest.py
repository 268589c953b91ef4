from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app import create_app
from models import db
from repository import ExpenseRow


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SECRET_KEY': 'test-secret',
        'LOG_LEVEL': 'WARNING',
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


PASSWORD = 'correct horse battery'


def signup(client, email='ana@example.com', password=PASSWORD, **extra):
    return client.post('/api/auth/signup', json={'email': email, 'password': password, **extra})


def login(client, email='ana@example.com', password=PASSWORD, **extra):
    """Log in, registering the account first if it does not exist yet."""
    response = client.post('/api/auth/login', json={'email': email, 'password': password, **extra})
    if response.status_code == 401:
        response = signup(client, email, password, **extra)
    return response


@pytest.fixture
def logged_in(client):
    assert login(client).status_code == 200
    return client


class FakeRepository:
    """In-memory stand-in for the query capability."""

    def __init__(self):
        self.expenses = []
        self.income = []
        self.budgets = []

    def category(self, name, category_id=None):
        return SimpleNamespace(id=category_id or name.lower(), name=name)

    def add_expense(self, user_id, category, amount, date):
        self.expenses.append((user_id, category, Decimal(amount), date))

    def add_income(self, user_id, amount, date):
        self.income.append((user_id, Decimal(amount), date))

    def add_budget(self, user_id, category, amount):
        budget = SimpleNamespace(user_id=user_id, category_id=category.id, amount=Decimal(amount))
        self.budgets.append((budget, category))
        return budget

    def find_expenses_in_range(self, user_id, start, end):
        return [ExpenseRow(c.id, c.name, amount, d)
                for uid, c, amount, d in self.expenses
                if uid == user_id and start <= d <= end]

    def sum_expenses(self, user_id, start, end, category_id=None):
        return sum((amount for uid, c, amount, d in self.expenses
                    if uid == user_id and start <= d <= end
                    and (category_id is None or c.id == category_id)), Decimal('0.00'))

    def sum_income(self, user_id, start, end):
        return sum((amount for uid, amount, d in self.income
                    if uid == user_id and start <= d <= end), Decimal('0.00'))

    def list_budgets_with_category(self, user_id):
        return [(b, c) for b, c in self.budgets if b.user_id == user_id]


@pytest.fixture
def fake_repo():
    return FakeRepository()


@pytest.fixture
def now():
    return datetime(2024, 3, 15, 12, 0, 0)
