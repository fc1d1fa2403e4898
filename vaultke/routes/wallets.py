"""
Wallet Routes
Balances, transaction history, transfers, deposits and withdrawals
"""

import logging
from flask import Blueprint, current_app, g, request
from sqlalchemy import or_

from vaultke.auth import login_required, current_user_id
from vaultke.errors import ValidationError, BusinessRuleError, ForbiddenError, NotFoundError
from vaultke.models import Chama, ChamaMember, Wallet, Transaction
from vaultke.utils.helpers import generate_reference, format_currency, mask_phone
from vaultke.utils.responses import success_response, paginated
from vaultke.utils.validation import get_json_body, get_pagination, optional_text, is_number

logger = logging.getLogger(__name__)

bp = Blueprint('wallets', __name__)


def _membership(session, wallet, user_id):
    """Active ChamaMember row linking the caller to a chama wallet, if any"""
    if wallet.type != 'chama':
        return None
    return session.query(ChamaMember).filter_by(
        chama_id=wallet.owner_id, user_id=user_id, is_active=True
    ).first()


def _can_view(session, wallet, user_id):
    return wallet.owner_id == user_id or _membership(session, wallet, user_id) is not None


def _can_spend(session, wallet, user_id):
    """Owners spend personal wallets; chama officials spend chama wallets"""
    if wallet.owner_id == user_id:
        return True
    member = _membership(session, wallet, user_id)
    return member is not None and member.role in ChamaMember.OFFICIAL_ROLES


def _get_wallet(session, wallet_id, message='Wallet not found'):
    wallet = session.get(Wallet, wallet_id)
    if wallet is None:
        raise NotFoundError(message)
    return wallet


def _get_visible_wallet(session, wallet_id, user_id):
    wallet = _get_wallet(session, wallet_id)
    if not _can_view(session, wallet, user_id):
        raise ForbiddenError('Access denied')
    return wallet


def _validate_amount(data):
    amount = data.get('amount')
    if not is_number(amount) or amount <= 0:
        raise ValidationError('Amount must be greater than 0')
    limit = current_app.config['MAX_TRANSFER_AMOUNT']
    if amount > limit:
        currency = current_app.config['CURRENCY']
        raise ValidationError(
            f'Amount exceeds maximum transfer limit of {format_currency(limit, currency, 0)}'
        )
    return float(amount)


def _require_wallet_id(data, key):
    wallet_id = data.get(key)
    if not isinstance(wallet_id, str) or not wallet_id:
        raise ValidationError('Wallet ID is required')
    return wallet_id


def _require_usable(wallet):
    if not wallet.is_usable:
        raise BusinessRuleError('Wallet is locked or inactive')


# ============================================================
# WALLETS
# ============================================================

@bp.route('', methods=['GET'])
@login_required
def get_wallets():
    """Personal wallets plus the wallets of chamas the caller belongs to"""
    user_id = current_user_id()
    with g.db.session_scope() as session:
        chama_ids = [cid for (cid,) in session.query(ChamaMember.chama_id).filter_by(
            user_id=user_id, is_active=True)]
        wallets = session.query(Wallet).filter(or_(
            Wallet.owner_id == user_id,
            Wallet.owner_id.in_(chama_ids) & (Wallet.type == 'chama'),
        )).order_by(Wallet.created_at).all()
        names = dict(session.query(Chama.id, Chama.name).filter(Chama.id.in_(chama_ids)))

        payload = []
        for wallet in wallets:
            data = wallet.to_dict()
            if wallet.type == 'chama':
                data['chamaName'] = names.get(wallet.owner_id)
            payload.append(data)

    return success_response({'wallets': payload, 'total': len(payload)})


@bp.route('/<wallet_id>', methods=['GET'])
@login_required
def get_wallet(wallet_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        wallet = _get_visible_wallet(session, wallet_id, user_id)
        return success_response({'wallet': wallet.to_dict()})


@bp.route('/<wallet_id>/balance', methods=['GET'])
@login_required
def get_wallet_balance(wallet_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        wallet = _get_visible_wallet(session, wallet_id, user_id)
        data = {
            'walletId': wallet.id,
            'balance': wallet.balance,
            'currency': wallet.currency,
            'formatted': format_currency(wallet.balance, wallet.currency),
        }
    return success_response(data)


@bp.route('/<wallet_id>/transactions', methods=['GET'])
@login_required
def get_wallet_transactions(wallet_id):
    """Paginated history of transactions touching the wallet; ?type= filters"""
    user_id = current_user_id()
    limit, offset = get_pagination()
    with g.db.session_scope() as session:
        _get_visible_wallet(session, wallet_id, user_id)
        query = session.query(Transaction).filter(or_(
            Transaction.from_wallet_id == wallet_id,
            Transaction.to_wallet_id == wallet_id,
        ))
        transaction_type = request.args.get('type')
        if transaction_type:
            query = query.filter(Transaction.type == transaction_type)

        total = query.count()
        rows = query.order_by(Transaction.created_at.desc()).offset(offset).limit(limit).all()
        data = paginated('transactions', [t.to_dict() for t in rows], total, limit, offset)

    return success_response(data)


# ============================================================
# MONEY MOVEMENT
# ============================================================

@bp.route('/transfer', methods=['POST'])
@login_required
def transfer_money():
    """Move funds between two wallets in one transaction"""
    user_id = current_user_id()
    data = get_json_body()

    from_id = _require_wallet_id(data, 'fromWalletId')
    to_id = _require_wallet_id(data, 'toWalletId')
    amount = _validate_amount(data)
    if from_id == to_id:
        raise BusinessRuleError('Cannot transfer to the same wallet')

    with g.db.session_scope() as session:
        source = _get_wallet(session, from_id, 'Sender wallet not found')
        target = _get_wallet(session, to_id, 'Recipient wallet not found')
        if not _can_spend(session, source, user_id):
            raise ForbiddenError('Access denied')
        _require_usable(source)
        _require_usable(target)
        if source.balance < amount:
            raise BusinessRuleError('Insufficient balance')

        source.balance -= amount
        target.balance += amount
        transaction = Transaction(
            from_wallet_id=source.id,
            to_wallet_id=target.id,
            type='transfer',
            amount=amount,
            currency=source.currency,
            status='completed',
            reference=generate_reference(),
            description=optional_text(data, 'description', max_length=255),
            initiated_by=user_id,
        )
        session.add(transaction)
        session.flush()
        payload = {'transaction': transaction.to_dict(), 'balance': source.balance}

    logger.info(f"Transfer {payload['transaction']['reference']}: "
                f"{format_currency(amount)} from {from_id} to {to_id}")
    return success_response(payload, message='Transfer completed successfully')


def _payment_method(data):
    method = data.get('method') or data.get('paymentMethod') or 'mpesa'
    if method not in Transaction.PAYMENT_METHODS:
        raise ValidationError('Invalid payment method')
    return method


@bp.route('/deposit', methods=['POST'])
@login_required
def deposit_money():
    """
    Credit a wallet from an external source

    The payment gateway is not contacted; the deposit is recorded as
    completed immediately.
    """
    user_id = current_user_id()
    data = get_json_body()

    wallet_id = _require_wallet_id(data, 'walletId')
    amount = _validate_amount(data)
    method = _payment_method(data)

    with g.db.session_scope() as session:
        wallet = _get_visible_wallet(session, wallet_id, user_id)
        _require_usable(wallet)
        wallet.balance += amount
        transaction = Transaction(
            to_wallet_id=wallet.id,
            type='deposit',
            amount=amount,
            currency=wallet.currency,
            payment_method=method,
            reference=generate_reference('DEP'),
            description=optional_text(data, 'description', max_length=255),
            initiated_by=user_id,
        )
        session.add(transaction)
        session.flush()
        payload = {'transaction': transaction.to_dict(), 'balance': wallet.balance}

    logger.info(f"Deposit of {format_currency(amount)} to {wallet_id} via {method} "
                f"({mask_phone(data.get('phone'))})")
    return success_response(payload, message='Deposit completed successfully')


@bp.route('/withdraw', methods=['POST'])
@login_required
def withdraw_money():
    user_id = current_user_id()
    data = get_json_body()

    wallet_id = _require_wallet_id(data, 'walletId')
    amount = _validate_amount(data)
    method = _payment_method(data)

    with g.db.session_scope() as session:
        wallet = _get_wallet(session, wallet_id)
        if not _can_spend(session, wallet, user_id):
            raise ForbiddenError('Access denied')
        _require_usable(wallet)
        if wallet.balance < amount:
            raise BusinessRuleError('Insufficient balance')

        wallet.balance -= amount
        transaction = Transaction(
            from_wallet_id=wallet.id,
            type='withdrawal',
            amount=amount,
            currency=wallet.currency,
            payment_method=method,
            reference=generate_reference('WDR'),
            description=optional_text(data, 'description', max_length=255),
            initiated_by=user_id,
        )
        session.add(transaction)
        session.flush()
        payload = {'transaction': transaction.to_dict(), 'balance': wallet.balance}

    logger.info(f"Withdrawal of {format_currency(amount)} from {wallet_id} via {method} "
                f"({mask_phone(data.get('phone'))})")
    return success_response(payload, message='Withdrawal completed successfully')
