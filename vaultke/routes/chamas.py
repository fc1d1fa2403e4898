"""
Chama Routes
Savings groups, membership and member listings
"""

import logging
from flask import Blueprint, g, request
from sqlalchemy import or_, select

from vaultke.auth import login_required, current_user_id
from vaultke.errors import ValidationError, BusinessRuleError, ForbiddenError, NotFoundError
from vaultke.models import Chama, ChamaMember, Wallet
from vaultke.utils.helpers import utcnow
from vaultke.utils.responses import success_response, paginated
from vaultke.utils.validation import (
    get_json_body, get_pagination, require_text, optional_text, is_number, is_integer, query_bool
)

logger = logging.getLogger(__name__)

bp = Blueprint('chamas', __name__)


def _get_chama(session, chama_id):
    chama = session.get(Chama, chama_id)
    if chama is None:
        raise NotFoundError('Chama not found')
    return chama


def _can_manage(chama, user_id):
    """Creator or active chairperson"""
    if chama.created_by == user_id:
        return True
    member = chama.active_member(user_id)
    return member is not None and member.role == 'chairperson'


def _chama_payload(chama, user_id):
    data = chama.to_dict()
    member = chama.active_member(user_id)
    data['isMember'] = member is not None
    data['userRole'] = member.role if member is not None else None
    return data


def _validate_fields(data, partial=False):
    """Validated column values from a create or update body"""
    values = {}
    if not partial or 'name' in data:
        values['name'] = require_text(data, 'name', 'Chama name is required')
    if 'description' in data:
        values['description'] = optional_text(data, 'description', max_length=1000)

    if not partial or 'type' in data:
        chama_type = data.get('type', 'savings')
        if chama_type not in Chama.TYPES:
            raise ValidationError('Invalid chama type')
        values['type'] = chama_type

    if not partial or 'contributionAmount' in data:
        amount = data.get('contributionAmount')
        if not is_number(amount) or amount <= 0:
            raise ValidationError('Contribution amount must be greater than 0')
        values['contribution_amount'] = float(amount)

    if not partial or 'contributionFrequency' in data:
        frequency = data.get('contributionFrequency', 'monthly')
        if frequency not in Chama.FREQUENCIES:
            raise ValidationError('Invalid contribution frequency')
        values['contribution_frequency'] = frequency

    if not partial or 'maxMembers' in data:
        max_members = data.get('maxMembers', 50)
        if not is_integer(max_members) or max_members < 2:
            raise ValidationError('Maximum members must be at least 2')
        values['max_members'] = int(max_members)

    if 'isPublic' in data:
        if not isinstance(data['isPublic'], bool):
            raise ValidationError('isPublic must be a boolean')
        values['is_public'] = data['isPublic']
    for key in ('county', 'town'):
        if key in data:
            values[key] = optional_text(data, key, max_length=64)
    return values


# ============================================================
# CHAMAS
# ============================================================

@bp.route('', methods=['GET'])
@login_required
def get_chamas():
    """
    Active chamas visible to the caller

    Query params: type, county, q, mine (only chamas the caller belongs to)
    """
    user_id = current_user_id()
    limit, offset = get_pagination()

    with g.db.session_scope() as session:
        member_of = select(ChamaMember.chama_id) \
            .where(ChamaMember.user_id == user_id, ChamaMember.is_active.is_(True))

        query = session.query(Chama).filter(Chama.status == 'active')
        if query_bool('mine'):
            query = query.filter(Chama.id.in_(member_of))
        else:
            query = query.filter(or_(Chama.is_public.is_(True), Chama.id.in_(member_of)))

        chama_type = request.args.get('type')
        if chama_type:
            query = query.filter(Chama.type == chama_type)
        county = request.args.get('county')
        if county:
            query = query.filter(Chama.county == county)
        q = (request.args.get('q') or '').strip()
        if q:
            query = query.filter(Chama.name.ilike(f'%{q}%'))

        total = query.count()
        chamas = query.order_by(Chama.created_at.desc()).offset(offset).limit(limit).all()
        data = paginated('chamas', [_chama_payload(c, user_id) for c in chamas],
                         total, limit, offset)

    return success_response(data)


@bp.route('', methods=['POST'])
@login_required
def create_chama():
    """Create a chama with the caller as chairperson and open its wallet"""
    user_id = current_user_id()
    values = _validate_fields(get_json_body())

    with g.db.session_scope() as session:
        chama = Chama(created_by=user_id, current_members=1, **values)
        chama.members.append(ChamaMember(user_id=user_id, role='chairperson'))
        session.add(chama)
        session.flush()
        session.add(Wallet(owner_id=chama.id, type='chama', balance=0))
        payload = _chama_payload(chama, user_id)

    logger.info(f"Chama {payload['id']} created by {user_id}")
    return success_response({'chama': payload}, 201, 'Chama created successfully')


@bp.route('/<chama_id>', methods=['GET'])
@login_required
def get_chama(chama_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        chama = _get_chama(session, chama_id)
        if not chama.is_public and chama.active_member(user_id) is None:
            raise ForbiddenError('Access denied')
        return success_response({'chama': _chama_payload(chama, user_id)})


@bp.route('/<chama_id>', methods=['PUT'])
@login_required
def update_chama(chama_id):
    user_id = current_user_id()
    values = _validate_fields(get_json_body(), partial=True)
    if not values:
        raise ValidationError('No fields to update')

    with g.db.session_scope() as session:
        chama = _get_chama(session, chama_id)
        if not _can_manage(chama, user_id):
            raise ForbiddenError('Only the chairperson can update this chama')
        if 'max_members' in values and values['max_members'] < (chama.current_members or 0):
            raise BusinessRuleError('Maximum members cannot be below the current member count')
        for column, value in values.items():
            setattr(chama, column, value)
        session.flush()
        payload = _chama_payload(chama, user_id)

    return success_response({'chama': payload}, message='Chama updated successfully')


@bp.route('/<chama_id>', methods=['DELETE'])
@login_required
def delete_chama(chama_id):
    """Remove a chama and its memberships; its wallet is deactivated, not deleted"""
    user_id = current_user_id()
    with g.db.session_scope() as session:
        chama = _get_chama(session, chama_id)
        if not _can_manage(chama, user_id):
            raise ForbiddenError('Only the chairperson can delete this chama')
        session.query(Wallet).filter_by(owner_id=chama_id, type='chama') \
            .update({Wallet.is_active: False}, synchronize_session=False)
        session.delete(chama)

    logger.warning(f"Chama {chama_id} deleted by {user_id}")
    return success_response({'id': chama_id}, message='Chama deleted successfully')


# ============================================================
# MEMBERSHIP
# ============================================================

@bp.route('/<chama_id>/join', methods=['POST'])
@login_required
def join_chama(chama_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        chama = _get_chama(session, chama_id)
        if chama.status != 'active':
            raise BusinessRuleError('Chama is not active')
        if chama.active_member(user_id) is not None:
            raise BusinessRuleError('You are already a member of this chama')
        if chama.is_full:
            raise BusinessRuleError('Chama is full')

        member = session.query(ChamaMember).filter_by(chama_id=chama_id, user_id=user_id).first()
        if member is None:
            member = ChamaMember(user_id=user_id, role='member')
            chama.members.append(member)
        else:
            member.is_active = True
            member.role = 'member'
            member.joined_at = utcnow()
        chama.current_members = (chama.current_members or 0) + 1
        session.flush()
        payload = member.to_dict()

    logger.info(f"User {user_id} joined chama {chama_id}")
    return success_response({'member': payload}, message='Joined chama successfully')


@bp.route('/<chama_id>/leave', methods=['POST'])
@login_required
def leave_chama(chama_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        chama = _get_chama(session, chama_id)
        member = chama.active_member(user_id)
        if member is None:
            raise BusinessRuleError('You are not a member of this chama')
        if member.role == 'chairperson':
            raise BusinessRuleError('Chairperson cannot leave the chama')
        member.is_active = False
        chama.current_members = max((chama.current_members or 1) - 1, 0)

    logger.info(f"User {user_id} left chama {chama_id}")
    return success_response({'id': chama_id}, message='Left chama successfully')


@bp.route('/<chama_id>/members', methods=['GET'])
@login_required
def get_chama_members(chama_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        chama = _get_chama(session, chama_id)
        if not chama.is_public and chama.active_member(user_id) is None:
            raise ForbiddenError('Access denied')
        members = [m.to_dict() for m in chama.members if m.is_active]

    return success_response({'members': members, 'total': len(members)})
