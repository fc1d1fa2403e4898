"""
Reminder Routes
Personal one-off and recurring reminders
"""

import logging
from flask import Blueprint, g, request

from vaultke.auth import login_required, current_user_id
from vaultke.errors import ValidationError, NotFoundError
from vaultke.models import Reminder
from vaultke.utils.helpers import utcnow
from vaultke.utils.responses import success_response, paginated
from vaultke.utils.validation import get_json_body, get_pagination, parse_datetime, query_bool

logger = logging.getLogger(__name__)

bp = Blueprint('reminders', __name__)

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500


def _get_own_reminder(session, reminder_id, user_id):
    # Other users' reminders are reported as missing
    reminder = session.get(Reminder, reminder_id)
    if reminder is None or reminder.user_id != user_id:
        raise NotFoundError('Reminder not found')
    return reminder


def _validate_fields(data, partial=False):
    values = {}

    if not partial or 'title' in data:
        title = data.get('title')
        if not isinstance(title, str) or not title.strip():
            raise ValidationError('Title is required')
        if len(title.strip()) > MAX_TITLE_LENGTH:
            raise ValidationError(f'Title must be at most {MAX_TITLE_LENGTH} characters')
        values['title'] = title.strip()

    if 'description' in data:
        description = data.get('description')
        if description is not None:
            if not isinstance(description, str):
                raise ValidationError('Description must be a string')
            if len(description) > MAX_DESCRIPTION_LENGTH:
                raise ValidationError(
                    f'Description must be at most {MAX_DESCRIPTION_LENGTH} characters'
                )
        values['description'] = description

    if not partial or 'reminderType' in data:
        reminder_type = data.get('reminderType')
        if reminder_type not in Reminder.TYPES:
            raise ValidationError('Reminder type must be one of: once, daily, weekly, monthly')
        values['reminder_type'] = reminder_type

    if not partial or 'scheduledAt' in data:
        if data.get('scheduledAt') in (None, ''):
            raise ValidationError('Scheduled time is required')
        scheduled_at = parse_datetime(data['scheduledAt'], 'scheduledAt')
        if scheduled_at <= utcnow():
            raise ValidationError('Scheduled time must be in the future')
        values['scheduled_at'] = scheduled_at

    if 'isEnabled' in data:
        if not isinstance(data['isEnabled'], bool):
            raise ValidationError('isEnabled must be a boolean')
        values['is_enabled'] = data['isEnabled']
    if partial and 'isCompleted' in data:
        if not isinstance(data['isCompleted'], bool):
            raise ValidationError('isCompleted must be a boolean')
        values['is_completed'] = data['isCompleted']
    return values


@bp.route('', methods=['GET'])
@login_required
def get_reminders():
    """The caller's reminders, soonest first; ?enabled= and ?type= filter"""
    user_id = current_user_id()
    limit, offset = get_pagination()
    with g.db.session_scope() as session:
        query = session.query(Reminder).filter(Reminder.user_id == user_id)
        enabled = query_bool('enabled')
        if enabled is not None:
            query = query.filter(Reminder.is_enabled.is_(enabled))
        reminder_type = request.args.get('type')
        if reminder_type:
            query = query.filter(Reminder.reminder_type == reminder_type)

        total = query.count()
        reminders = query.order_by(Reminder.scheduled_at.asc()).offset(offset).limit(limit).all()
        data = paginated('reminders', [r.to_dict() for r in reminders], total, limit, offset)

    return success_response(data)


@bp.route('', methods=['POST'])
@login_required
def create_reminder():
    user_id = current_user_id()
    values = _validate_fields(get_json_body())

    with g.db.session_scope() as session:
        reminder = Reminder(user_id=user_id, **values)
        session.add(reminder)
        session.flush()
        payload = reminder.to_dict()

    logger.info(f"Reminder {payload['id']} created by {user_id}")
    return success_response({'reminder': payload}, 201, 'Reminder created successfully')


@bp.route('/<reminder_id>', methods=['GET'])
@login_required
def get_reminder(reminder_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        reminder = _get_own_reminder(session, reminder_id, user_id)
        return success_response({'reminder': reminder.to_dict()})


@bp.route('/<reminder_id>', methods=['PUT'])
@login_required
def update_reminder(reminder_id):
    user_id = current_user_id()
    values = _validate_fields(get_json_body(), partial=True)

    with g.db.session_scope() as session:
        reminder = _get_own_reminder(session, reminder_id, user_id)
        for column, value in values.items():
            setattr(reminder, column, value)
        if 'scheduled_at' in values:
            reminder.notification_sent = False
        session.flush()
        payload = reminder.to_dict()

    return success_response({'reminder': payload}, message='Reminder updated successfully')


@bp.route('/<reminder_id>', methods=['DELETE'])
@login_required
def delete_reminder(reminder_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        reminder = _get_own_reminder(session, reminder_id, user_id)
        session.delete(reminder)
    return success_response({'id': reminder_id}, message='Reminder deleted successfully')


@bp.route('/<reminder_id>/toggle', methods=['PUT'])
@login_required
def toggle_reminder(reminder_id):
    """Flip is_enabled"""
    user_id = current_user_id()
    with g.db.session_scope() as session:
        reminder = _get_own_reminder(session, reminder_id, user_id)
        reminder.is_enabled = not reminder.is_enabled
        session.flush()
        payload = reminder.to_dict()

    state = 'enabled' if payload['isEnabled'] else 'disabled'
    return success_response({'reminder': payload}, message=f'Reminder {state}')
