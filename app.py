import csv
import io
import logging
import os
from datetime import timedelta

from flask import Flask, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from analytics import AnalyticsEngine
from auth import SqlSessionStore, auth_bp, login_required
from errors import FinanceError, StorageError, ValidationError
from ml.recommender import generate_recommendations, predict_next_month_expense
from models import db, utcnow
from repository import SqlAlchemyRepository
from validation import validate_budget, validate_category, validate_expense, validate_income

logger = logging.getLogger(__name__)


def create_app(test_config=None, session_store=None, repository=None):
    app = Flask(__name__)
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///finance.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY') or os.environ.get('SESSION_SECRET', 'dev-secret-key-change-me')
    app.config['SESSION_TTL'] = int(os.environ.get('SESSION_TTL_SECONDS', 7 * 24 * 60 * 60))
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'INFO')
    app.config['DEFAULT_LIST_LIMIT'] = 50
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
    if test_config:
        app.config.update(test_config)
    app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(seconds=app.config['SESSION_TTL'])

    logging.basicConfig(level=app.config['LOG_LEVEL'])

    db.init_app(app)
    with app.app_context():
        db.create_all()

    app.extensions['finance_repository'] = repository or SqlAlchemyRepository()
    app.extensions['session_store'] = session_store or SqlSessionStore(ttl_seconds=app.config['SESSION_TTL'])

    app.register_blueprint(auth_bp)
    register_error_handlers(app)
    register_routes(app)
    return app


# ---------------------- Helpers ----------------------
def repo():
    return current_app.extensions['finance_repository']


def engine():
    return AnalyticsEngine(repo())


def _payload():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('', 'Expected a JSON object')
    return data


def _int_arg(name, default=None):
    raw = request.args.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(name, f'{name} must be an integer')


def _limit():
    limit = _int_arg('limit', current_app.config['DEFAULT_LIST_LIMIT'])
    if limit < 1:
        raise ValidationError('limit', 'limit must be positive')
    return limit


def _deleted(entity):
    return jsonify({'message': f'{entity} deleted successfully'})


# ---------------------- Error Handlers ----------------------
def register_error_handlers(app):

    @app.errorhandler(FinanceError)
    def handle_finance_error(exc):
        if isinstance(exc, StorageError):
            logger.error('Storage error while serving %s %s', request.method, request.path)
        else:
            logger.debug('%s on %s: %s', type(exc).__name__, request.path, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({'message': exc.description}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return jsonify(StorageError().to_dict()), 500


def register_routes(app):

    # ---------------------- Routes: Categories ----------------------
    @app.route('/api/categories')
    @login_required
    def list_categories():
        return jsonify([c.to_dict() for c in repo().list_categories(g.user_id)])

    @app.route('/api/categories', methods=['POST'])
    @login_required
    def create_category():
        category = repo().create_category(g.user_id, validate_category(_payload()))
        return jsonify(category.to_dict())

    @app.route('/api/categories/<category_id>', methods=['PUT'])
    @login_required
    def update_category(category_id):
        category = repo().update_category(g.user_id, category_id, validate_category(_payload(), partial=True))
        return jsonify(category.to_dict())

    @app.route('/api/categories/<category_id>', methods=['DELETE'])
    @login_required
    def delete_category(category_id):
        repo().delete_category(g.user_id, category_id)
        return _deleted('Category')

    # ---------------------- Routes: Expenses ----------------------
    @app.route('/api/expenses')
    @login_required
    def list_expenses():
        expenses = repo().list_expenses(g.user_id, limit=_limit())
        return jsonify([e.to_dict(with_category=True) for e in expenses])

    @app.route('/api/expenses', methods=['POST'])
    @login_required
    def create_expense():
        expense = repo().create_expense(g.user_id, validate_expense(_payload()))
        return jsonify(expense.to_dict())

    @app.route('/api/expenses/<expense_id>', methods=['PUT'])
    @login_required
    def update_expense(expense_id):
        expense = repo().update_expense(g.user_id, expense_id, validate_expense(_payload(), partial=True))
        return jsonify(expense.to_dict())

    @app.route('/api/expenses/<expense_id>', methods=['DELETE'])
    @login_required
    def delete_expense(expense_id):
        repo().delete_expense(g.user_id, expense_id)
        return _deleted('Expense')

    @app.route('/api/expenses/export.csv')
    @login_required
    def export_csv():
        expenses = repo().list_expenses(g.user_id, limit=None)
        si = io.StringIO()
        writer = csv.writer(si)
        writer.writerow(['date', 'amount', 'category', 'paymentMethod', 'description'])
        for e in expenses:
            writer.writerow([e.date.isoformat(), f'{e.amount:.2f}', e.category.name, e.payment_method.value, e.description])
        output = si.getvalue().encode('utf-8')
        return (output, 200, {'Content-Type': 'text/csv; charset=utf-8', 'Content-Disposition': 'attachment; filename=expenses.csv'})

    # ---------------------- Routes: Income ----------------------
    @app.route('/api/income')
    @login_required
    def list_income():
        return jsonify([i.to_dict() for i in repo().list_income(g.user_id, limit=_limit())])

    @app.route('/api/income', methods=['POST'])
    @login_required
    def create_income():
        income = repo().create_income(g.user_id, validate_income(_payload()))
        return jsonify(income.to_dict())

    @app.route('/api/income/<income_id>', methods=['PUT'])
    @login_required
    def update_income(income_id):
        income = repo().update_income(g.user_id, income_id, validate_income(_payload(), partial=True))
        return jsonify(income.to_dict())

    @app.route('/api/income/<income_id>', methods=['DELETE'])
    @login_required
    def delete_income(income_id):
        repo().delete_income(g.user_id, income_id)
        return _deleted('Income')

    # ---------------------- Routes: Budgets ----------------------
    @app.route('/api/budgets')
    @login_required
    def list_budgets():
        return jsonify([b.to_dict(with_category=True) for b in repo().list_budgets(g.user_id)])

    @app.route('/api/budgets', methods=['POST'])
    @login_required
    def create_budget():
        budget = repo().create_budget(g.user_id, validate_budget(_payload()))
        return jsonify(budget.to_dict())

    @app.route('/api/budgets/<budget_id>', methods=['PUT'])
    @login_required
    def update_budget(budget_id):
        budget = repo().update_budget(g.user_id, budget_id, validate_budget(_payload(), partial=True))
        return jsonify(budget.to_dict())

    @app.route('/api/budgets/<budget_id>', methods=['DELETE'])
    @login_required
    def delete_budget(budget_id):
        repo().delete_budget(g.user_id, budget_id)
        return _deleted('Budget')

    # ---------------------- Routes: Analytics ----------------------
    @app.route('/api/analytics/monthly-expenses')
    @login_required
    def api_monthly_expenses():
        now = utcnow()
        year = _int_arg('year', now.year)
        month = _int_arg('month', now.month)
        rows = engine().monthly_breakdown(g.user_id, year, month)
        return jsonify([r.to_dict() for r in rows])

    @app.route('/api/analytics/totals')
    @login_required
    def api_totals():
        return jsonify(engine().totals_for_current_month(g.user_id).to_dict())

    @app.route('/api/analytics/budget-progress')
    @login_required
    def api_budget_progress():
        return jsonify([p.to_dict() for p in engine().budget_progress(g.user_id)])

    @app.route('/api/analytics/monthly-trend')
    @login_required
    def api_monthly_trend():
        """Return monthly income/expense for a given year. Fill 0 for months with no records."""
        year = _int_arg('year', utcnow().year)
        return jsonify([p.to_dict() for p in engine().monthly_trend(g.user_id, year)])

    @app.route('/api/analytics/insights')
    @login_required
    def api_insights():
        progress = engine().budget_progress(g.user_id)
        recs = generate_recommendations(repo(), g.user_id, progress)
        pred = predict_next_month_expense(repo(), g.user_id)
        return jsonify({'recommendations': recs, 'nextMonthExpensePrediction': pred})


# ---------------------- Run App ----------------------
if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)), debug=True)
