import logging
import secrets
from datetime import timedelta
from functools import wraps
from typing import Optional, Protocol

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import generate_password_hash, check_password_hash

from errors import UnauthorizedError, ValidationError
from models import db, Session, utcnow
from repository import storage_guard

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)


# ---------------------- Session Store ----------------------
class SessionStore(Protocol):
    def create(self, user_id) -> str:
        ...

    def resolve(self, sid) -> Optional[str]:
        ...

    def destroy(self, sid) -> None:
        ...


class SqlSessionStore:
    """Server-side sessions kept in the ``sessions`` table.

    The browser cookie only carries the session id.
    """

    def __init__(self, ttl_seconds=7 * 24 * 60 * 60, clock=utcnow, session=None):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self.session = session or db.session

    @storage_guard
    def create(self, user_id):
        now = self.clock()
        # Abandoned sessions are never resolved again, so prune them here.
        self.session.query(Session).filter(Session.expire <= now).delete()
        sid = secrets.token_urlsafe(32)
        self.session.add(Session(sid=sid, user_id=user_id, expire=now + self.ttl))
        self.session.commit()
        return sid

    @storage_guard
    def resolve(self, sid):
        row = self.session.get(Session, sid)
        if row is None:
            return None
        user_id = row.user_id
        if row.expire <= self.clock():
            self.session.delete(row)
            self.session.commit()
            logger.debug('Expired session for %s purged', user_id)
            return None
        return user_id

    @storage_guard
    def destroy(self, sid):
        self.session.query(Session).filter_by(sid=sid).delete()
        self.session.commit()


# ---------------------- Helpers ----------------------
def session_store():
    return current_app.extensions['session_store']


def _repository():
    return current_app.extensions['finance_repository']


def current_user_id():
    if 'user_id' not in g:
        sid = session.get('sid')
        g.user_id = session_store().resolve(sid) if sid else None
    return g.user_id


def login_required(view_func):
    @wraps(view_func)
    def wrapped(*args, **kwargs):
        if not current_user_id():
            logger.debug('Rejected unauthenticated request to %s', request.path)
            raise UnauthorizedError()
        return view_func(*args, **kwargs)
    return wrapped


def _credentials():
    payload = request.get_json(silent=True) or {}
    email = payload.get('email')
    password = payload.get('password')
    errors = []
    if not isinstance(email, str) or not email.strip():
        errors.append({'path': 'email', 'message': 'Email is required'})
    if not isinstance(password, str) or not password:
        errors.append({'path': 'password', 'message': 'Password is required'})
    if errors:
        raise ValidationError(errors=errors)
    return email.strip().lower(), password, payload


def _open_session(user):
    old_sid = session.get('sid')
    if old_sid:
        session_store().destroy(old_sid)
    session.clear()
    session['sid'] = session_store().create(user.id)
    session.permanent = True
    g.user_id = user.id
    logger.info('User %s signed in', user.id)
    return jsonify(user.to_dict())


# ---------------------- Routes ----------------------
@auth_bp.route('/api/auth/signup', methods=['POST'])
def signup():
    email, password, payload = _credentials()
    user = _repository().create_user(
        email,
        generate_password_hash(password),
        email=email,
        first_name=payload.get('firstName') or None,
        last_name=payload.get('lastName') or None,
    )
    return _open_session(user)


@auth_bp.route('/api/auth/login', methods=['POST'])
def login():
    email, password, payload = _credentials()
    repository = _repository()
    user = repository.get_user(email)
    if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
        logger.info('Failed login for %s', email)
        raise UnauthorizedError('Invalid credentials')
    # Repeat logins refresh whichever profile fields were sent.
    if payload.get('firstName') or payload.get('lastName'):
        user = repository.upsert_user(
            user.id,
            email=user.email,
            first_name=payload.get('firstName') or user.first_name,
            last_name=payload.get('lastName') or user.last_name,
            profile_image_url=user.profile_image_url,
        )
    return _open_session(user)


@auth_bp.route('/api/logout', methods=['POST'])
def logout():
    sid = session.pop('sid', None)
    if sid:
        session_store().destroy(sid)
        logger.info('Session closed')
    session.clear()
    return jsonify({'message': 'Logged out'})


@auth_bp.route('/api/auth/user')
@login_required
def auth_user():
    user = _repository().get_user(current_user_id())
    if user is None:
        raise UnauthorizedError()
    return jsonify(user.to_dict())
