# services/auth.py
"""
Bearer token handling and the single vendor-scope policy used by every
order operation.

Tokens are issued elsewhere; this module only signs them for tooling and
tests and verifies them on incoming requests.
"""

from functools import wraps

from flask import current_app, g, request
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

from db.extensions import db
from models.user import User
from services.errors import Unauthorized, Forbidden

TOKEN_SALT = 'qr-order-auth'


def _serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=TOKEN_SALT)


def issue_token(user):
    return _serializer().dumps({'uid': user.id, 'role': user.role})


def load_user_from_token(token):
    max_age = current_app.config.get('AUTH_TOKEN_MAX_AGE')
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        raise Unauthorized("Token expired")
    except BadSignature:
        raise Unauthorized("Invalid token")

    user = db.session.get(User, payload.get('uid'))
    if not user:
        raise Unauthorized("User not found")
    if not user.is_active:
        raise Unauthorized("Account is inactive")
    return user


def get_bearer_token():
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None
    token = auth_header[7:].strip()
    return token or None


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        token = get_bearer_token()
        if not token:
            raise Unauthorized("No token provided. Authorization header must start with 'Bearer '")
        g.current_user = load_user_from_token(token)
        return fn(*args, **kwargs)
    return wrapper


def optional_auth(fn):
    """Attach the user when a valid token is present; carry on anonymously otherwise."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        g.current_user = None
        token = get_bearer_token()
        if token:
            try:
                g.current_user = load_user_from_token(token)
            except Unauthorized as e:
                current_app.logger.info(f"[optional_auth] Continuing without user: {e.message}")
        return fn(*args, **kwargs)
    return wrapper


def current_user():
    return g.get('current_user')


def effective_vendor_id(user):
    if user is None:
        return None
    return user.effective_vendor_id


def can_access_vendor(user, vendor_id):
    if user is None:
        return False
    if user.role == User.ROLE_ADMIN:
        return True
    effective = effective_vendor_id(user)
    if effective is None:
        return False
    try:
        return effective == int(vendor_id)
    except (TypeError, ValueError):
        return False


def ensure_vendor_access(user, vendor_id):
    if user is None:
        raise Unauthorized("Authentication required")
    if user.role == User.ROLE_STAFF and user.vendor_id is None:
        raise Forbidden("Staff user not properly configured - missing vendorId")
    if not can_access_vendor(user, vendor_id):
        raise Forbidden("Unauthorized")
