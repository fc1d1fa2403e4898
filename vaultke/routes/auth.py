"""
Authentication Routes
Registration, login, token refresh, password reset and verification
"""

import logging
import secrets
from datetime import timedelta
from flask import Blueprint, current_app, g
from sqlalchemy import or_

from vaultke.auth import (
    create_token, decode_token, bearer_token, is_revoked, TokenError, login_required
)
from vaultke.errors import ValidationError, BusinessRuleError, UnauthorizedError, ForbiddenError
from vaultke.models import User, VerificationToken, RevokedToken
from vaultke.routes.users import PROFILE_FIELDS, read_profile, update_profile
from vaultke.utils.helpers import utcnow
from vaultke.utils.responses import success_response
from vaultke.utils.validation import (
    get_json_body, require_text, optional_text, is_valid_email, is_valid_phone
)

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__)

MIN_PASSWORD_LENGTH = 8
RESET_TOKEN_TTL = timedelta(hours=1)
VERIFICATION_TOKEN_TTL = timedelta(hours=24)


def _issue_tokens(user):
    """Access and refresh token pair for a user row"""
    return {
        'token': create_token(user.id, user.role),
        'refreshToken': create_token(
            user.id, user.role,
            expires_in=current_app.config['REFRESH_TOKEN_EXPIRATION'],
            token_type='refresh',
        ),
        'expiresIn': int(current_app.config['JWT_EXPIRATION'].total_seconds()),
    }


def _validate_password(data, key='password'):
    password = data.get(key)
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    return password


def _new_verification_token(session, user_id, purpose, ttl):
    token = VerificationToken(
        user_id=user_id,
        token=secrets.token_urlsafe(32),
        purpose=purpose,
        expires_at=utcnow() + ttl,
    )
    session.add(token)
    return token


def _consume_token(session, token, purpose, message):
    """Return the user for a valid one-time token and mark it used"""
    row = session.query(VerificationToken).filter_by(token=token, purpose=purpose).first()
    if row is None or not row.is_valid:
        raise BusinessRuleError(message)
    user = session.get(User, row.user_id)
    if user is None:
        raise BusinessRuleError(message)
    row.used = True
    return user


# ============================================================
# REGISTRATION & LOGIN
# ============================================================

@bp.route('/register', methods=['POST'])
def register():
    """Create an account and return a token pair"""
    data = get_json_body()

    email = data.get('email')
    if not is_valid_email(email):
        raise ValidationError('Valid email is required')
    phone = data.get('phone')
    if not is_valid_phone(phone):
        raise ValidationError('Valid phone number is required')
    password = _validate_password(data)
    first_name = require_text(data, 'firstName', 'First name is required')
    last_name = require_text(data, 'lastName', 'Last name is required')
    county, town, language = (optional_text(data, key, max_length=PROFILE_FIELDS[key][1])
                               for key in ('county', 'town', 'language'))

    email = email.strip().lower()
    phone = phone.replace(' ', '')

    with g.db.session_scope() as session:
        existing = session.query(User).filter(or_(User.email == email, User.phone == phone)).first()
        if existing is not None:
            raise BusinessRuleError('User with this email or phone already exists')

        user = User(
            email=email,
            phone=phone,
            first_name=first_name,
            last_name=last_name,
            role='user',
            status='pending',
            county=county,
            town=town,
            language=language or 'en',
        )
        user.set_password(password)
        session.add(user)
        session.flush()

        verification = _new_verification_token(session, user.id, 'email', VERIFICATION_TOKEN_TTL)
        payload = {'user': user.to_dict(), **_issue_tokens(user)}

    logger.info(f"Registered user {payload['user']['id']}")
    logger.debug(f"Email verification token for {email}: {verification.token}")
    return success_response(payload, 201, 'Registration successful')


@bp.route('/login', methods=['POST'])
def login():
    """Log in with an email or phone number plus password"""
    data = get_json_body()

    identifier = data.get('identifier') or data.get('email') or data.get('phone')
    password = data.get('password')
    if not isinstance(identifier, str) or not identifier.strip() \
            or not isinstance(password, str) or not password:
        raise ValidationError('Identifier and password are required')
    identifier = identifier.strip()

    with g.db.session_scope() as session:
        user = session.query(User).filter(
            or_(User.email == identifier.lower(), User.phone == identifier.replace(' ', ''))
        ).first()

        if user is None or not user.check_password(password):
            logger.warning(f"Failed login attempt for {identifier}")
            raise UnauthorizedError('Invalid credentials')
        if not user.is_active:
            raise ForbiddenError('Account is suspended')

        payload = {'user': user.to_dict(), **_issue_tokens(user)}

    logger.info(f"User {payload['user']['id']} logged in")
    return success_response(payload, message='Login successful')


@bp.route('/logout', methods=['POST'])
def logout():
    """Revoke the bearer token presented with the request"""
    token = bearer_token()
    if not token:
        raise UnauthorizedError('Authorization token is required')
    try:
        claims = decode_token(token)
    except TokenError as e:
        raise UnauthorizedError(str(e))

    with g.db.session_scope() as session:
        if not is_revoked(session, claims):
            session.add(RevokedToken(jti=claims['jti']))

    logger.info(f"User {claims.get('sub')} logged out")
    return success_response({'loggedOut': True}, message='Logged out successfully')


@bp.route('/refresh', methods=['POST'])
def refresh():
    """Exchange a bearer token (or a refreshToken in the body) for a new pair"""
    data = get_json_body()
    token = data.get('refreshToken') or bearer_token()
    if not token:
        raise UnauthorizedError('Refresh token is required')
    try:
        claims = decode_token(token)
    except TokenError:
        raise UnauthorizedError('Invalid or expired token')

    with g.db.session_scope() as session:
        if is_revoked(session, claims):
            raise UnauthorizedError('Token has been revoked')
        user = session.get(User, claims.get('sub'))
        if user is None or not user.is_active:
            raise UnauthorizedError('Invalid or expired token')
        payload = _issue_tokens(user)

    return success_response(payload, message='Token refreshed')


# ============================================================
# PASSWORD RESET & VERIFICATION
# ============================================================

@bp.route('/forgot-password', methods=['POST'])
def forgot_password():
    """Issue a reset token; the response never reveals whether the email exists"""
    data = get_json_body()
    email = data.get('email')
    if not isinstance(email, str) or not email.strip():
        raise ValidationError('Email is required')
    email = email.strip().lower()

    with g.db.session_scope() as session:
        user = session.query(User).filter_by(email=email).first()
        if user is not None:
            reset = _new_verification_token(session, user.id, 'password_reset', RESET_TOKEN_TTL)
            logger.info(f"Password reset requested for user {user.id}")
            logger.debug(f"Password reset token for {email}: {reset.token}")

    return success_response({'email': email},
                            message='If the email exists, a reset link has been sent')


@bp.route('/reset-password', methods=['POST'])
def reset_password():
    data = get_json_body()
    token = data.get('token')
    if not isinstance(token, str) or not token:
        raise ValidationError('Reset token is required')
    password = _validate_password(data)

    with g.db.session_scope() as session:
        user = _consume_token(session, token, 'password_reset', 'Invalid or expired reset token')
        user.set_password(password)
        user_id = user.id

    logger.info(f"Password reset for user {user_id}")
    return success_response({'reset': True}, message='Password reset successfully')


@bp.route('/verify-email', methods=['POST'])
def verify_email():
    data = get_json_body()
    token = data.get('token')
    if not isinstance(token, str) or not token:
        raise ValidationError('Verification token is required')

    with g.db.session_scope() as session:
        user = _consume_token(session, token, 'email', 'Invalid or expired verification token')
        user.is_email_verified = True
        if user.status == 'pending':
            user.status = 'active'
        payload = user.to_dict()

    return success_response({'user': payload}, message='Email verified successfully')


@bp.route('/verify-phone', methods=['POST'])
def verify_phone():
    data = get_json_body()
    token = data.get('token') or data.get('code')
    if not isinstance(token, str) or not token:
        raise ValidationError('Verification code is required')

    with g.db.session_scope() as session:
        user = _consume_token(session, token, 'phone', 'Invalid or expired verification code')
        user.is_phone_verified = True
        payload = user.to_dict()

    return success_response({'user': payload}, message='Phone verified successfully')


@bp.route('/test-email', methods=['POST'])
def test_email():
    """Check the mail configuration; the message is logged, never delivered"""
    data = get_json_body()
    email = data.get('email')
    if not is_valid_email(email):
        raise ValidationError('Valid email is required')

    logger.info(f"Test email to {email} (SMTP delivery disabled)")
    return success_response({'email': email, 'delivered': False},
                            message='Test email processed')


# ============================================================
# PROFILE
# ============================================================

@bp.route('/profile', methods=['GET'])
@login_required
def get_profile():
    return read_profile()


@bp.route('/profile', methods=['PUT'])
@login_required
def put_profile():
    return update_profile()
