"""
User Routes
User directory, profile management and avatar upload
"""

import logging
import os
from flask import Blueprint, current_app, g, request
from sqlalchemy import or_
from werkzeug.utils import secure_filename

from vaultke.auth import login_required, current_user_id
from vaultke.errors import ValidationError, NotFoundError
from vaultke.models import User
from vaultke.utils.helpers import generate_id
from vaultke.utils.responses import success_response, paginated
from vaultke.utils.validation import get_json_body, get_pagination, require_text, optional_text

logger = logging.getLogger(__name__)

bp = Blueprint('users', __name__)

# JSON key -> (column, max length)
PROFILE_FIELDS = {
    'bio': ('bio', 500),
    'occupation': ('occupation', 128),
    'county': ('county', 64),
    'town': ('town', 64),
    'language': ('language', 8),
}


def read_profile():
    """Envelope with the caller's own user row"""
    user_id = current_user_id()
    with g.db.session_scope() as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError('User not found')
        return success_response({'user': user.to_dict()})


def update_profile():
    """Apply a partial profile update for the caller"""
    user_id = current_user_id()
    data = get_json_body()

    changes = {}
    if 'firstName' in data:
        changes['first_name'] = require_text(data, 'firstName', 'First name cannot be empty')
    if 'lastName' in data:
        changes['last_name'] = require_text(data, 'lastName', 'Last name cannot be empty')
    for key, (column, max_length) in PROFILE_FIELDS.items():
        if key in data:
            changes[column] = optional_text(data, key, max_length=max_length)
    if not changes:
        raise ValidationError('No fields to update')

    with g.db.session_scope() as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError('User not found')
        for column, value in changes.items():
            setattr(user, column, value)
        session.flush()
        payload = user.to_dict()

    logger.info(f"Profile updated for user {user_id}")
    return success_response({'user': payload}, message='Profile updated successfully')


@bp.route('', methods=['GET'])
@login_required
def get_users():
    """
    Paginated user directory

    Query params: q (name, email or phone), role, status, county
    """
    limit, offset = get_pagination()
    with g.db.session_scope() as session:
        query = session.query(User)

        q = (request.args.get('q') or '').strip()
        if q:
            pattern = f'%{q}%'
            query = query.filter(or_(User.first_name.ilike(pattern), User.last_name.ilike(pattern),
                                     User.email.ilike(pattern), User.phone.ilike(pattern)))
        for arg, column in (('role', User.role), ('status', User.status), ('county', User.county)):
            value = request.args.get(arg)
            if value:
                query = query.filter(column == value)

        total = query.count()
        users = query.order_by(User.created_at.desc()).offset(offset).limit(limit).all()
        data = paginated('users', [u.to_dict() for u in users], total, limit, offset)

    return success_response(data)


@bp.route('/profile', methods=['GET'])
@login_required
def get_profile():
    return read_profile()


@bp.route('/profile', methods=['PUT'])
@login_required
def put_profile():
    return update_profile()


@bp.route('/avatar', methods=['POST'])
@login_required
def upload_avatar():
    """Store an uploaded image under UPLOAD_PATH/avatars and link it to the caller"""
    user_id = current_user_id()

    upload = request.files.get('avatar')
    if upload is None or not upload.filename:
        raise ValidationError('No file uploaded')

    filename = secure_filename(upload.filename)
    extension = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    if extension not in current_app.config['ALLOWED_EXTENSIONS']:
        raise ValidationError('Invalid file type')

    content = upload.read()
    max_size = current_app.config['MAX_FILE_SIZE']
    if len(content) > max_size:
        raise ValidationError(f'File too large (maximum {max_size} bytes)')

    directory = os.path.join(current_app.config['UPLOAD_PATH'], 'avatars')
    os.makedirs(directory, exist_ok=True)
    stored_name = f'{user_id}_{generate_id()}.{extension}'
    with open(os.path.join(directory, stored_name), 'wb') as f:
        f.write(content)

    with g.db.session_scope() as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError('User not found')
        user.avatar = f'/uploads/avatars/{stored_name}'
        payload = user.to_dict()

    logger.info(f"Avatar uploaded for user {user_id} ({len(content)} bytes)")
    return success_response({'avatar': payload['avatar'], 'user': payload},
                            message='Avatar uploaded successfully')
