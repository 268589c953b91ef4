from datetime import datetime, timedelta

from auth import SqlSessionStore
from conftest import PASSWORD, login, signup
from models import Session


def test_routes_require_a_session(client) -> None:
    for path in ('/api/categories', '/api/expenses', '/api/analytics/totals', '/api/auth/user'):
        response = client.get(path)
        assert response.status_code == 401
        assert response.get_json() == {'message': 'Unauthorized'}


def test_login_upserts_user_and_opens_session(client) -> None:
    response = login(client, 'Ana@Example.com ', firstName='Ana')
    assert response.status_code == 200
    assert response.get_json()['id'] == 'ana@example.com'

    me = client.get('/api/auth/user').get_json()
    assert me['email'] == 'ana@example.com'
    assert me['firstName'] == 'Ana'

    # Repeat login updates the same user.
    login(client, 'ana@example.com', firstName='Anna')
    assert client.get('/api/auth/user').get_json()['firstName'] == 'Anna'


def test_signup_requires_email_and_password(client) -> None:
    response = client.post('/api/auth/signup', json={'firstName': 'Nobody'})
    assert response.status_code == 400
    assert [e['path'] for e in response.get_json()['errors']] == ['email', 'password']


def test_signup_rejects_registered_email(client) -> None:
    assert signup(client, 'bob@example.com').status_code == 200

    response = client.application.test_client().post(
        '/api/auth/signup', json={'email': 'BOB@example.com', 'password': 'another one'})

    assert response.status_code == 400
    assert response.get_json()['errors'][0] == {'path': 'email', 'message': 'Email already registered'}


def test_login_rejects_wrong_password(client) -> None:
    signup(client, 'bob@example.com')
    client.post('/api/income', json={'amount': '5000', 'source': 'Salary', 'date': '2024-03-01'})

    other = client.application.test_client()
    response = other.post('/api/auth/login', json={'email': 'bob@example.com', 'password': 'guess'})

    assert response.status_code == 401
    assert response.get_json() == {'message': 'Invalid credentials'}
    assert other.get('/api/income').status_code == 401


def test_email_alone_does_not_open_another_users_session(client) -> None:
    signup(client, 'bob@example.com')
    client.post('/api/income', json={'amount': '5000', 'source': 'Salary', 'date': '2024-03-01'})

    other = client.application.test_client()
    response = other.post('/api/auth/login', json={'email': 'bob@example.com'})

    assert response.status_code == 400
    assert other.get('/api/income').status_code == 401


def test_login_unknown_user_is_unauthorized(client) -> None:
    response = client.post('/api/auth/login', json={'email': 'ghost@example.com', 'password': PASSWORD})
    assert response.status_code == 401


def test_password_is_stored_hashed(app, client) -> None:
    signup(client, 'bob@example.com')
    with app.app_context():
        user = app.extensions['finance_repository'].get_user('bob@example.com')
        assert user.password_hash and PASSWORD not in user.password_hash
        assert 'password' not in user.to_dict()


def test_logout_closes_session(client) -> None:
    login(client)
    assert client.post('/api/logout').status_code == 200
    assert client.get('/api/categories').status_code == 401


def test_logout_only_accepts_post(client) -> None:
    login(client)
    assert client.get('/api/logout').status_code == 405
    assert client.get('/api/categories').status_code == 200


def test_session_store_expires_sessions(app) -> None:
    clock = {'now': datetime(2024, 3, 1)}
    store = SqlSessionStore(ttl_seconds=60, clock=lambda: clock['now'])
    with app.app_context():
        app.extensions['finance_repository'].upsert_user('ana@example.com', email='ana@example.com')
        sid = store.create('ana@example.com')
        assert store.resolve(sid) == 'ana@example.com'

        clock['now'] += timedelta(seconds=61)
        assert store.resolve(sid) is None
        assert store.resolve('unknown') is None


def test_session_store_destroy(app) -> None:
    store = SqlSessionStore()
    with app.app_context():
        app.extensions['finance_repository'].upsert_user('ana@example.com', email='ana@example.com')
        sid = store.create('ana@example.com')
        store.destroy(sid)
        assert store.resolve(sid) is None


def test_creating_a_session_prunes_abandoned_ones(app) -> None:
    clock = {'now': datetime(2024, 3, 1)}
    store = SqlSessionStore(ttl_seconds=60, clock=lambda: clock['now'])
    with app.app_context():
        repository = app.extensions['finance_repository']
        repository.upsert_user('ana@example.com', email='ana@example.com')
        repository.upsert_user('bob@example.com', email='bob@example.com')
        abandoned = store.create('ana@example.com')

        clock['now'] += timedelta(seconds=61)
        fresh = store.create('bob@example.com')

        sids = {row.sid for row in Session.query.all()}
        assert abandoned not in sids
        assert fresh in sids
