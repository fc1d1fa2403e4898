"""
Notification Routes
In-app notifications, delivery and per-user notification settings
"""

import logging
from flask import Blueprint, g, request

from vaultke.auth import login_required, current_user_id
from vaultke.errors import ValidationError, BusinessRuleError, ForbiddenError, NotFoundError
from vaultke.models import User, Notification, NotificationSettings
from vaultke.utils.helpers import utcnow, dump_json
from vaultke.utils.responses import success_response, paginated
from vaultke.utils.validation import (
    get_json_body, get_pagination, get_sort, get_date_range, require_text,
    optional_text, is_integer, is_valid_time, parse_datetime, query_bool
)

logger = logging.getLogger(__name__)

bp = Blueprint('notifications', __name__)

SORT_FIELDS = {
    'createdAt': Notification.created_at,
    'priority': Notification.priority,
    'scheduledAt': Notification.scheduled_at,
    'title': Notification.title,
}


def _parse_priority(value):
    """Accept 1-5 or one of the named levels (low, medium, high, ...)"""
    if isinstance(value, str) and value.lower() in Notification.PRIORITY_NAMES:
        return Notification.PRIORITY_NAMES[value.lower()]
    if not is_integer(value) or not 1 <= value <= 5:
        raise ValidationError('Priority must be between 1 and 5')
    return int(value)


def _future(data, key, label):
    """Parse an optional timestamp that must lie in the future"""
    if data.get(key) in (None, ''):
        return None
    value = parse_datetime(data[key], key)
    if value <= utcnow():
        raise ValidationError(f'{label} must be in the future')
    return value


def _validate_type(data):
    notification_type = data.get('type', 'system')
    if notification_type not in Notification.TYPES:
        raise ValidationError('Invalid notification type')
    return notification_type


def _validate_channels(data):
    channels = data.get('channels', ['in_app'])
    if not isinstance(channels, list) or not channels:
        raise ValidationError('Invalid channel')
    for channel in channels:
        if channel not in Notification.CHANNELS:
            raise ValidationError(f'Invalid channel: {channel}')
    return channels


def _get_own_notification(session, notification_id, user_id):
    notification = session.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError('Notification not found')
    if notification.user_id != user_id:
        raise ForbiddenError('Access denied')
    return notification


# ============================================================
# NOTIFICATIONS
# ============================================================

@bp.route('', methods=['GET'])
@login_required
def get_notifications():
    """
    List the caller's notifications

    Query params: type, status, isRead, priority (1-5 or name),
    startDate, endDate, sortBy, sortOrder, limit, offset
    """
    user_id = current_user_id()
    limit, offset = get_pagination()
    start_at, end_at = get_date_range()

    priority = request.args.get('priority')
    if priority:
        try:
            priority = _parse_priority(int(priority) if priority.isdigit() else priority)
        except ValidationError:
            raise ValidationError('Invalid priority')

    with g.db.session_scope() as session:
        query = session.query(Notification).filter(Notification.user_id == user_id)

        notification_type = request.args.get('type')
        if notification_type:
            query = query.filter(Notification.type == notification_type)
        status = request.args.get('status')
        if status:
            query = query.filter(Notification.status == status)
        is_read = query_bool('isRead')
        if is_read is not None:
            query = query.filter(Notification.is_read == is_read)
        if priority:
            query = query.filter(Notification.priority == priority)
        if start_at is not None:
            query = query.filter(Notification.created_at >= start_at)
        if end_at is not None:
            query = query.filter(Notification.created_at < end_at)

        total = query.count()
        notifications = query.order_by(get_sort(SORT_FIELDS, 'createdAt')) \
            .offset(offset).limit(limit).all()
        data = paginated('notifications', [n.to_dict() for n in notifications],
                         total, limit, offset)

    return success_response(data)


@bp.route('', methods=['POST'])
@login_required
def create_notification():
    """Create a notification for a recipient, optionally scheduled"""
    sender_id = current_user_id()
    data = get_json_body()

    title = require_text(data, 'title', 'Title is required')
    message = require_text(data, 'message', 'Message is required')
    notification_type = _validate_type(data)

    recipient_id = data.get('recipientId')
    if not isinstance(recipient_id, str) or not recipient_id:
        raise ValidationError('Recipient ID is required')

    priority = _parse_priority(data.get('priority', 1))
    scheduled_at = _future(data, 'scheduledAt', 'Scheduled time')
    expires_at = _future(data, 'expiresAt', 'Expiration time')
    metadata = data.get('metadata') or {}
    if not isinstance(metadata, dict):
        raise ValidationError('Metadata must be an object')

    with g.db.session_scope() as session:
        if session.get(User, recipient_id) is None:
            raise NotFoundError('Recipient not found')

        notification = Notification(
            user_id=recipient_id,
            title=title,
            message=message,
            type=notification_type,
            priority=priority,
            status='scheduled' if scheduled_at else 'sent',
            related_id=optional_text(data, 'relatedId'),
            channels=dump_json(_validate_channels(data)),
            scheduled_at=scheduled_at,
            expires_at=expires_at,
            extra_data=dump_json(metadata),
        )
        session.add(notification)
        session.flush()
        payload = notification.to_dict()

    logger.info(f"Notification {payload['id']} created by {sender_id} for {recipient_id}")
    return success_response({'notification': payload}, 201, 'Notification created successfully')


@bp.route('/<notification_id>', methods=['GET'])
@login_required
def get_notification(notification_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        notification = _get_own_notification(session, notification_id, user_id)
        return success_response({'notification': notification.to_dict()})


@bp.route('/<notification_id>', methods=['PUT'])
@login_required
def update_notification(notification_id):
    """Edit a notification that has not been delivered yet"""
    user_id = current_user_id()
    data = get_json_body()

    with g.db.session_scope() as session:
        notification = _get_own_notification(session, notification_id, user_id)
        if notification.status == 'sent':
            raise BusinessRuleError('Cannot update sent notification')

        if 'title' in data:
            notification.title = require_text(data, 'title', 'Title is required')
        if 'message' in data:
            notification.message = require_text(data, 'message', 'Message is required')
        if 'type' in data:
            notification.type = _validate_type(data)
        if 'priority' in data:
            notification.priority = _parse_priority(data['priority'])
        if 'scheduledAt' in data:
            notification.scheduled_at = _future(data, 'scheduledAt', 'Scheduled time')
            notification.status = 'scheduled' if notification.scheduled_at else 'sent'
        if 'expiresAt' in data:
            notification.expires_at = _future(data, 'expiresAt', 'Expiration time')

        session.flush()
        payload = notification.to_dict()

    return success_response({'notification': payload}, message='Notification updated successfully')


@bp.route('/<notification_id>', methods=['DELETE'])
@login_required
def delete_notification(notification_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        notification = _get_own_notification(session, notification_id, user_id)
        session.delete(notification)
    return success_response({'id': notification_id}, message='Notification deleted successfully')


@bp.route('/<notification_id>/read', methods=['PUT'])
@login_required
def mark_as_read(notification_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        notification = _get_own_notification(session, notification_id, user_id)
        if notification.is_read:
            raise BusinessRuleError('Notification is already read')
        notification.is_read = True
        notification.read_at = utcnow()
        session.flush()
        payload = notification.to_dict()
    return success_response({'notification': payload}, message='Notification marked as read')


@bp.route('/<notification_id>/unread', methods=['PUT'])
@login_required
def mark_as_unread(notification_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        notification = _get_own_notification(session, notification_id, user_id)
        if not notification.is_read:
            raise BusinessRuleError('Notification is already unread')
        notification.is_read = False
        notification.read_at = None
        session.flush()
        payload = notification.to_dict()
    return success_response({'notification': payload}, message='Notification marked as unread')


@bp.route('/mark-all-read', methods=['POST'])
@login_required
def mark_all_as_read():
    user_id = current_user_id()
    with g.db.session_scope() as session:
        updated = session.query(Notification) \
            .filter(Notification.user_id == user_id, Notification.is_read.is_(False)) \
            .update({Notification.is_read: True, Notification.read_at: utcnow()},
                    synchronize_session=False)
    return success_response({'updated': updated}, message='All notifications marked as read')


@bp.route('/unread-count', methods=['GET'])
@login_required
def get_unread_count():
    user_id = current_user_id()
    with g.db.session_scope() as session:
        count = session.query(Notification) \
            .filter(Notification.user_id == user_id, Notification.is_read.is_(False)) \
            .count()
    return success_response({'count': count})


@bp.route('/send', methods=['POST'])
@login_required
def send_notification():
    """
    Deliver a notification immediately to one or more recipients

    External channels (email, sms, push) are recorded on the row and
    logged; only the in-app copy is materialised.
    """
    sender_id = current_user_id()
    data = get_json_body()

    title = require_text(data, 'title', 'Title is required')
    message = require_text(data, 'message', 'Message is required')
    notification_type = _validate_type(data)

    recipient_ids = data.get('recipientIds')
    if recipient_ids is None and data.get('recipientId'):
        recipient_ids = [data['recipientId']]
    if not isinstance(recipient_ids, list) or not recipient_ids \
            or not all(isinstance(r, str) and r for r in recipient_ids):
        raise ValidationError('Recipient is required')

    channels = _validate_channels(data)
    priority = _parse_priority(data.get('priority', 1))

    with g.db.session_scope() as session:
        known = {uid for (uid,) in session.query(User.id).filter(User.id.in_(recipient_ids))}
        missing = [r for r in recipient_ids if r not in known]
        if missing:
            raise NotFoundError(f'Recipient not found: {missing[0]}')

        notifications = []
        for recipient_id in dict.fromkeys(recipient_ids):
            notification = Notification(
                user_id=recipient_id,
                title=title,
                message=message,
                type=notification_type,
                priority=priority,
                status='sent',
                channels=dump_json(channels),
            )
            session.add(notification)
            notifications.append(notification)
        session.flush()
        payload = [n.to_dict() for n in notifications]

    for channel in channels:
        if channel != 'in_app':
            logger.info(f"Queued {channel} delivery of '{title}' to {len(payload)} recipient(s)")
    logger.info(f"Notification sent by {sender_id} to {len(payload)} recipient(s)")

    return success_response({'notifications': payload, 'sent': len(payload)},
                            message='Notification sent successfully')


# ============================================================
# SETTINGS
# ============================================================

def _get_or_create_settings(session, user_id):
    settings = session.query(NotificationSettings).filter_by(user_id=user_id).first()
    if settings is None:
        settings = NotificationSettings(user_id=user_id)
        session.add(settings)
        session.flush()
    return settings


@bp.route('/settings', methods=['GET'])
@login_required
def get_notification_settings():
    user_id = current_user_id()
    with g.db.session_scope() as session:
        settings = _get_or_create_settings(session, user_id)
        return success_response({'settings': settings.to_dict()})


@bp.route('/settings', methods=['PUT'])
@login_required
def update_notification_settings():
    """Update channel/category flags and the HH:MM quiet-hours window"""
    user_id = current_user_id()
    data = get_json_body()

    for key in NotificationSettings.FLAG_FIELDS:
        if key in data and not isinstance(data[key], bool):
            raise ValidationError(f'Invalid boolean value for {key}')
    for key in NotificationSettings.TIME_FIELDS:
        if key in data and not is_valid_time(data[key]):
            raise ValidationError(f'Invalid quiet hours format for {key}')

    with g.db.session_scope() as session:
        settings = _get_or_create_settings(session, user_id)
        for key, column in NotificationSettings.FLAG_FIELDS.items():
            if key in data:
                setattr(settings, column, data[key])
        for key, column in NotificationSettings.TIME_FIELDS.items():
            if key in data:
                setattr(settings, column, data[key])
        session.flush()
        payload = settings.to_dict()

    return success_response({'settings': payload}, message='Notification settings updated')
