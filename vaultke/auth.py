"""
Authentication and Principal Resolution

Every request is attributed to a caller id by a *principal resolver*: a
zero-argument callable run inside the request context. Production wiring
uses bearer_principal (JWT validated through Flask-Login's request loader);
test wiring supplies fixed_principal or token_principal instead.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import current_app, g, request
from flask_login import LoginManager, current_user

from vaultke.errors import UnauthorizedError, ForbiddenError
from vaultke.models import User, RevokedToken

logger = logging.getLogger(__name__)

login_manager = LoginManager()

JWT_ALGORITHM = 'HS256'


class TokenError(Exception):
    """Raised when a bearer token cannot be trusted"""


# ============================================================
# TOKENS
# ============================================================

def create_token(user_id, role='user', secret=None, expires_in=None, token_type='access'):
    """
    Sign a JWT for a user

    Args:
        user_id: Subject of the token
        role: Role claim copied from the user row
        secret: HMAC key; defaults to the app's JWT_SECRET
        expires_in: timedelta or seconds; defaults to the app's JWT_EXPIRATION
        token_type: 'access' or 'refresh'

    Returns:
        str: Encoded token
    """
    if secret is None:
        secret = current_app.config['JWT_SECRET']
    if expires_in is None:
        expires_in = current_app.config.get('JWT_EXPIRATION', timedelta(hours=24))
    if not isinstance(expires_in, timedelta):
        expires_in = timedelta(seconds=int(expires_in))

    now = datetime.now(timezone.utc)
    payload = {
        'sub': user_id,
        'userID': user_id,
        'role': role,
        'type': token_type,
        'jti': uuid.uuid4().hex,
        'iat': now,
        'exp': now + expires_in,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_token(token, secret=None, token_type=None):
    """Verify signature, expiry and (optionally) token type; return the claims"""
    if secret is None:
        secret = current_app.config['JWT_SECRET']
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenError('Token has expired')
    except jwt.InvalidTokenError:
        raise TokenError('Invalid token')
    if token_type and claims.get('type') != token_type:
        raise TokenError('Invalid token type')
    return claims


def bearer_token(req=None):
    """Extract the token from an 'Authorization: Bearer <token>' header"""
    req = req or request
    header = req.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def is_revoked(session, claims):
    return session.query(RevokedToken).filter_by(jti=claims.get('jti')).first() is not None


@login_manager.request_loader
def load_user_from_request(req):
    """Resolve the bearer token on the request to an active user row"""
    token = bearer_token(req)
    if not token:
        return None
    try:
        claims = decode_token(token, token_type='access')
    except TokenError as e:
        logger.debug(f"Rejected bearer token: {e}")
        return None

    store = getattr(g, 'db', None)
    if store is None:
        return None
    with store.session_scope() as session:
        if is_revoked(session, claims):
            return None
        user = session.get(User, claims['sub'])
    if user is None or not user.is_active:
        return None
    return user


@login_manager.user_loader
def load_user(user_id):
    """Load user by ID for Flask-Login sessions"""
    store = getattr(g, 'db', None)
    if store is None:
        return None
    with store.session_scope() as session:
        return session.get(User, user_id)


# ============================================================
# PRINCIPAL RESOLVERS
# ============================================================

def bearer_principal():
    """Production resolver: the authenticated Flask-Login user, if any"""
    if current_user.is_authenticated:
        return current_user.id
    return None


def fixed_principal(user_id):
    """Resolver that attributes every request to the same caller"""
    def resolve():
        return user_id
    resolve.user_id = user_id
    return resolve


def token_principal(tokens, default=None):
    """
    Resolver that maps known bearer strings to callers without verifying them

    Args:
        tokens: dict of token -> user id
        default: caller for requests with no (or an unknown) token
    """
    def resolve():
        token = bearer_token()
        if token and token in tokens:
            return tokens[token]
        return default
    resolve.user_id = default
    return resolve


# ============================================================
# DECORATORS
# ============================================================

def current_user_id():
    """Caller id set by the principal resolver, or raise 401"""
    user_id = getattr(g, 'user_id', None)
    if not user_id:
        raise UnauthorizedError()
    return user_id


def login_required(f):
    """
    Decorator to require an identified caller

    Usage:
        @bp.route('/cart')
        @login_required
        def get_cart():
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        current_user_id()
        return f(*args, **kwargs)
    return decorated_function


def admin_required(message='Only admins can access this endpoint'):
    """
    Decorator to require the caller's user row to have the admin role

    Usage:
        @admin_required('Only admins can delete users')
        def delete_user(user_id):
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user_id = current_user_id()
            with g.db.session_scope() as session:
                caller = session.get(User, user_id)
                is_admin = caller is not None and caller.is_admin
            if not is_admin:
                raise ForbiddenError(message)
            return f(*args, **kwargs)
        return decorated_function
    return decorator
