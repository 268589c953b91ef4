import enum
import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

db = SQLAlchemy()

MONEY = db.Numeric(12, 2, asdecimal=True)


def utcnow():
    # Timestamps are stored naive, in UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id():
    return str(uuid.uuid4())


@event.listens_for(Engine, 'connect')
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection.
    if type(dbapi_connection).__module__.startswith('sqlite3'):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


class PaymentMethod(enum.Enum):
    CASH = 'cash'
    CREDIT_CARD = 'creditCard'
    DEBIT_CARD = 'debitCard'
    DIGITAL_WALLET = 'digitalWallet'
    BANK_TRANSFER = 'bankTransfer'


class BudgetPeriod(enum.Enum):
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'
    QUARTERLY = 'quarterly'
    YEARLY = 'yearly'


def _enum_column(enum_cls, length):
    return db.Enum(enum_cls, native_enum=False, length=length, validate_strings=True,
                   values_callable=lambda members: [m.value for m in members])


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return None if value is None else f'{value:.2f}'


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(255), primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=True)
    first_name = db.Column(db.String(255), nullable=True)
    last_name = db.Column(db.String(255), nullable=True)
    profile_image_url = db.Column(db.String(255), nullable=True)
    # A user without a password hash cannot log in.
    password_hash = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    categories = db.relationship('Category', backref='user', lazy=True, cascade='all, delete-orphan')
    expenses = db.relationship('Expense', backref='user', lazy=True, cascade='all, delete-orphan')
    income = db.relationship('Income', backref='user', lazy=True, cascade='all, delete-orphan')
    budgets = db.relationship('Budget', backref='user', lazy=True, cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'profileImageUrl': self.profile_image_url,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }


class Category(db.Model):
    """A user's spending bucket. Names are not unique; analytics group by id."""
    __tablename__ = 'categories'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(255), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    icon = db.Column(db.String(50), nullable=False, default='fas fa-tag')
    color = db.Column(db.String(7), nullable=False, default='#3B82F6')
    is_default = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)

    # Deleting a category removes its expenses and budgets.
    expenses = db.relationship('Expense', backref='category', lazy=True, cascade='all, delete-orphan')
    budgets = db.relationship('Budget', backref='category', lazy=True, cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'name': self.name,
            'icon': self.icon,
            'color': self.color,
            'isDefault': self.is_default,
            'createdAt': _iso(self.created_at),
        }


class Expense(db.Model):
    __tablename__ = 'expenses'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(255), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    category_id = db.Column(db.String(36), db.ForeignKey('categories.id', ondelete='CASCADE'), nullable=False, index=True)
    amount = db.Column(MONEY, nullable=False)
    description = db.Column(db.Text, nullable=False)
    payment_method = db.Column(_enum_column(PaymentMethod, 50), nullable=False, default=PaymentMethod.CASH)
    date = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self, with_category=False):
        data = {
            'id': self.id,
            'userId': self.user_id,
            'categoryId': self.category_id,
            'amount': _money(self.amount),
            'description': self.description,
            'paymentMethod': self.payment_method.value,
            'date': _iso(self.date),
            'createdAt': _iso(self.created_at),
        }
        if with_category:
            data['category'] = self.category.to_dict()
        return data


class Income(db.Model):
    __tablename__ = 'income'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(255), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    amount = db.Column(MONEY, nullable=False)
    source = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    date = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'amount': _money(self.amount),
            'source': self.source,
            'description': self.description,
            'date': _iso(self.date),
            'createdAt': _iso(self.created_at),
        }


class Budget(db.Model):
    """Spending ceiling for one category.

    ``period`` and ``start_date`` are stored and returned but progress is
    always measured against the current calendar month.
    """
    __tablename__ = 'budgets'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(255), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    category_id = db.Column(db.String(36), db.ForeignKey('categories.id', ondelete='CASCADE'), nullable=False, index=True)
    amount = db.Column(MONEY, nullable=False)
    period = db.Column(_enum_column(BudgetPeriod, 20), nullable=False, default=BudgetPeriod.MONTHLY)
    start_date = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self, with_category=False):
        data = {
            'id': self.id,
            'userId': self.user_id,
            'categoryId': self.category_id,
            'amount': _money(self.amount),
            'period': self.period.value,
            'startDate': _iso(self.start_date),
            'createdAt': _iso(self.created_at),
        }
        if with_category:
            data['category'] = self.category.to_dict() if self.category else None
        return data


class Session(db.Model):
    __tablename__ = 'sessions'

    sid = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.String(255), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    expire = db.Column(db.DateTime, nullable=False, index=True)
