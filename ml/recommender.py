from datetime import datetime

import pandas as pd
from sklearn.linear_model import LinearRegression

from analytics import month_window
from models import utcnow

TRAILING_MONTHS = 12


def _trailing_window(today, months=TRAILING_MONTHS):
    first = today.year * 12 + (today.month - 1) - (months - 1)
    year, month = divmod(first, 12)
    return datetime(year, month + 1, 1), month_window(today.year, today.month)[1]


def _query_user_df(repository, user_id, start, end):
    # Build a DataFrame of the user's expenses in the window
    rows = repository.find_expenses_in_range(user_id, start, end)
    if not rows:
        return pd.DataFrame(columns=['date', 'amount', 'category_id', 'category'])
    df = pd.DataFrame([{
        'date': r.date,
        'amount': float(r.amount),
        'category_id': r.category_id,
        'category': r.category_name,
    } for r in rows])
    df['date'] = pd.to_datetime(df['date'])
    return df


def _monthly_totals(df):
    expenses = df.copy()
    expenses['ym'] = expenses['date'].dt.to_period('M').astype(str)
    return expenses.groupby('ym')['amount'].sum().sort_index()


def predict_next_month_expense(repository, user_id, today=None):
    today = today or utcnow()
    df = _query_user_df(repository, user_id, *_trailing_window(today))
    if df.empty:
        return 0.0
    m = _monthly_totals(df).reset_index()
    if len(m) < 2:
        # Not enough data to fit
        return round(float(m['amount'].iloc[-1]), 2)
    # Turn months into an integer index; months without expenses leave gaps
    months = m['ym'].str[:4].astype(int) * 12 + m['ym'].str[5:7].astype(int)
    m['idx'] = months - months.min() + 1
    X = m[['idx']].values
    y = m['amount'].values
    model = LinearRegression().fit(X, y)
    next_idx = m['idx'].max() + 1
    pred = float(model.predict([[next_idx]])[0])
    return round(max(pred, 0.0), 2)


def generate_recommendations(repository, user_id, progress=(), today=None):
    """Plain-language savings hints from the trailing year of activity.

    ``progress`` is the current month's budget progress from the analytics
    engine; budgets at or past the alert threshold get their own hint.
    """
    today = today or utcnow()
    start, end = _trailing_window(today)
    df = _query_user_df(repository, user_id, start, end)
    recs = []
    if df.empty:
        recs.append('Add at least 2 months of data to get personalized savings insights.')
        return recs
    # Basic ratios
    total_income = float(repository.sum_income(user_id, start, end))
    total_expense = float(df['amount'].sum())
    if total_income > 0:
        savings_rate = max((total_income - total_expense) / total_income, 0)
        recs.append(f'Your savings rate over the last year is {savings_rate * 100:.1f}%. Aim for 20%+ as a baseline.')
    else:
        recs.append('Add income entries to compute your savings rate.')
    # Category suggestions (top 3 spend categories), grouped by id since names can repeat
    cat = df.groupby(['category_id', 'category'])['amount'].sum().sort_values(ascending=False)
    for (_, name), v in cat.head(3).items():
        recs.append(f'High spend in "{name}" category: ${v:,.0f}. Consider setting a monthly cap or finding cheaper alternatives.')
    # Budgets close to or over their limit this month
    for item in progress:
        if item.exceeded:
            recs.append(f'You are over your "{item.category.name}" budget by ${-item.remaining:,.2f} this month.')
        elif item.alert:
            recs.append(f'Your "{item.category.name}" budget is {item.percentage:.0f}% used this month.')
    # Volatility check: if this month is higher than the prior average
    monthly = _monthly_totals(df)
    if len(monthly) >= 2:
        last = monthly.iloc[-1]
        prev_avg = monthly.iloc[:-1].mean()
        if last > 1.2 * prev_avg:
            recs.append("Your latest month's expenses exceeded your previous average by 20%+. Review discretionary categories.")
    # Prediction informed suggestion
    pred = predict_next_month_expense(repository, user_id, today)
    if total_income > 0:
        monthly_income = total_income / max(len(monthly), 1)
        target_save = max(monthly_income * 0.2, 0)
        recs.append(f'Predicted next month expense: ${pred:,.0f}. Set a savings target of at least ${target_save:,.0f}.')
    else:
        recs.append(f'Predicted next month expense: ${pred:,.0f}. Add income to compute a savings target.')
    return recs
