"""
Admin Routes
User management restricted to administrators
"""

import logging
from flask import Blueprint, g

from vaultke.auth import admin_required, current_user_id
from vaultke.errors import ValidationError, BusinessRuleError, NotFoundError
from vaultke.models import (
    User, CartItem, ProductReview, Notification, NotificationSettings, Reminder,
    VerificationToken
)
from vaultke.utils.responses import success_response
from vaultke.utils.validation import get_json_body

logger = logging.getLogger(__name__)

bp = Blueprint('admin', __name__)

# Rows removed with the user; orders, products and ledger entries are kept
OWNED_ROWS = (CartItem, ProductReview, Notification, NotificationSettings, Reminder,
              VerificationToken)


def _get_user(session, user_id):
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError('User not found')
    return user


@bp.route('/users/<user_id>', methods=['GET'])
@admin_required()
def get_user(user_id):
    with g.db.session_scope() as session:
        user = _get_user(session, user_id)
        return success_response({'user': user.to_dict()})


@bp.route('/users/<user_id>/role', methods=['PUT'])
@admin_required()
def update_user_role(user_id):
    data = get_json_body()
    role = data.get('role')
    if role not in User.ROLES:
        raise ValidationError("Role must be either 'user' or 'admin'")

    with g.db.session_scope() as session:
        user = _get_user(session, user_id)
        user.role = role
        session.flush()
        payload = user.to_dict()

    logger.info(f"Admin {current_user_id()} set role of {user_id} to {role}")
    return success_response({'user': payload}, message='User role updated successfully')


@bp.route('/users/<user_id>/status', methods=['PUT'])
@admin_required()
def update_user_status(user_id):
    data = get_json_body()
    status = data.get('status')
    if status not in User.STATUSES:
        raise ValidationError("Status must be 'active', 'suspended', or 'pending'")

    with g.db.session_scope() as session:
        user = _get_user(session, user_id)
        user.status = status
        session.flush()
        payload = user.to_dict()

    logger.info(f"Admin {current_user_id()} set status of {user_id} to {status}")
    return success_response({'user': payload}, message='User status updated successfully')


@bp.route('/users/<user_id>', methods=['DELETE'])
@admin_required()
def delete_user(user_id):
    """Delete an account together with its personal rows"""
    admin_id = current_user_id()
    if user_id == admin_id:
        raise BusinessRuleError('Cannot delete your own account')

    with g.db.session_scope() as session:
        user = _get_user(session, user_id)
        for model in OWNED_ROWS:
            session.query(model).filter_by(user_id=user_id).delete()
        session.delete(user)

    logger.warning(f"Admin {admin_id} deleted user {user_id}")
    return success_response({'id': user_id}, message='User deleted successfully')
