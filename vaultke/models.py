"""
Database Models
SQLAlchemy ORM models for the VaultKe backend
"""

from datetime import timedelta
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from vaultke.utils.helpers import (
    utcnow, generate_id, isoformat, add_months, load_json_list
)

db = SQLAlchemy()


# ============================================================
# USERS
# ============================================================

class User(UserMixin, db.Model):
    """User model for authentication and ownership"""
    __tablename__ = 'users'

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(20), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(64), nullable=False)
    last_name = db.Column(db.String(64), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    avatar = db.Column(db.String(255))
    role = db.Column(db.String(16), nullable=False, default='user')
    # Roles: user, admin
    status = db.Column(db.String(16), nullable=False, default='pending')
    # Statuses: pending, active, suspended
    is_email_verified = db.Column(db.Boolean, default=False)
    is_phone_verified = db.Column(db.Boolean, default=False)
    language = db.Column(db.String(8), default='en')
    county = db.Column(db.String(64))
    town = db.Column(db.String(64))
    rating = db.Column(db.Float, default=0)
    total_ratings = db.Column(db.Integer, default=0)
    bio = db.Column(db.Text)
    occupation = db.Column(db.String(128))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    ROLES = ('user', 'admin')
    STATUSES = ('pending', 'active', 'suspended')

    def set_password(self, password):
        """Hash and set password"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Verify password"""
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == 'admin'

    @property
    def is_active(self):
        # Flask-Login: suspended accounts cannot authenticate
        return self.status != 'suspended'

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'phone': self.phone,
            'firstName': self.first_name,
            'lastName': self.last_name,
            'avatar': self.avatar,
            'role': self.role,
            'status': self.status,
            'isEmailVerified': bool(self.is_email_verified),
            'isPhoneVerified': bool(self.is_phone_verified),
            'language': self.language,
            'county': self.county,
            'town': self.town,
            'rating': self.rating or 0,
            'totalRatings': self.total_ratings or 0,
            'bio': self.bio,
            'occupation': self.occupation,
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }

    def __repr__(self):
        return f'<User {self.email}>'


class VerificationToken(db.Model):
    """One-time tokens for email/phone verification and password reset"""
    __tablename__ = 'verification_tokens'

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False)
    token = db.Column(db.String(128), unique=True, nullable=False, index=True)
    purpose = db.Column(db.String(32), nullable=False)
    # Purposes: email, phone, password_reset
    expires_at = db.Column(db.DateTime, nullable=False)
    used = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    PURPOSES = ('email', 'phone', 'password_reset')

    @property
    def is_valid(self):
        return not self.used and self.expires_at > utcnow()


class RevokedToken(db.Model):
    """Bearer tokens invalidated by logout"""
    __tablename__ = 'revoked_tokens'

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    jti = db.Column(db.String(64), unique=True, nullable=False, index=True)
    expires_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)


# ============================================================
# MARKETPLACE
# ============================================================

class Product(db.Model):
    """Marketplace listing owned by a seller"""
    __tablename__ = 'products'

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    seller_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(32), nullable=False, index=True)
    price = db.Column(db.Float, nullable=False)
    stock = db.Column(db.Integer, nullable=False, default=0)
    min_order = db.Column(db.Integer, default=1)
    max_order = db.Column(db.Integer)
    images = db.Column(db.Text, default='[]')
    tags = db.Column(db.Text, default='[]')
    status = db.Column(db.String(16), nullable=False, default='active')
    county = db.Column(db.String(64))
    town = db.Column(db.String(64))
    rating = db.Column(db.Float, default=0)
    total_ratings = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    seller = db.relationship('User', lazy='joined')

    STATUSES = ('active', 'inactive')

    @property
    def is_available(self):
        return self.status == 'active' and (self.stock or 0) > 0

    def to_dict(self):
        data = {
            'id': self.id,
            'sellerId': self.seller_id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'price': self.price,
            'stock': self.stock,
            'minOrder': self.min_order,
            'maxOrder': self.max_order,
            'images': load_json_list(self.images),
            'tags': load_json_list(self.tags),
            'status': self.status,
            'county': self.county,
            'town': self.town,
            'rating': self.rating or 0,
            'totalRatings': self.total_ratings or 0,
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }
        if self.seller is not None:
            data['seller'] = {
                'id': self.seller.id,
                'firstName': self.seller.first_name,
                'lastName': self.seller.last_name,
                'rating': self.seller.rating or 0,
            }
        return data


class CartItem(db.Model):
    """Line in a buyer's cart; one row per (user, product)"""
    __tablename__ = 'cart_items'
    __table_args__ = (db.UniqueConstraint('user_id', 'product_id', name='uq_cart_user_product'),)

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False, index=True)
    product_id = db.Column(db.String(64), db.ForeignKey('products.id'), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Float)
    added_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    product = db.relationship('Product', lazy='joined')

    @property
    def unit_price(self):
        if self.product is not None:
            return self.product.price
        return self.price or 0

    @property
    def subtotal(self):
        return self.unit_price * self.quantity

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'productId': self.product_id,
            'quantity': self.quantity,
            'price': self.unit_price,
            'subtotal': self.subtotal,
            'addedAt': isoformat(self.added_at),
            'product': self.product.to_dict() if self.product is not None else None,
        }


class Order(db.Model):
    """Purchase from a single seller"""
    __tablename__ = 'orders'

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    buyer_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False, index=True)
    seller_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False, index=True)
    total_amount = db.Column(db.Float, nullable=False)
    status = db.Column(db.String(16), nullable=False, default='pending')
    # Statuses: pending, confirmed, processing, shipped, delivered, completed, cancelled
    payment_method = db.Column(db.String(16), default='mpesa')
    payment_status = db.Column(db.String(16), nullable=False, default='pending')
    delivery_address = db.Column(db.String(255))
    delivery_phone = db.Column(db.String(20))
    delivery_status = db.Column(db.String(16), nullable=False, default='pending')
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    items = db.relationship('OrderItem', backref='order', lazy='selectin',
                            cascade='all, delete-orphan')

    STATUSES = ('pending', 'confirmed', 'processing', 'shipped', 'delivered',
                'completed', 'cancelled')
    FINAL_STATUSES = ('completed', 'cancelled')

    @property
    def is_final(self):
        return self.status in self.FINAL_STATUSES

    def to_dict(self):
        return {
            'id': self.id,
            'buyerId': self.buyer_id,
            'sellerId': self.seller_id,
            'totalAmount': self.total_amount,
            'status': self.status,
            'paymentMethod': self.payment_method,
            'paymentStatus': self.payment_status,
            'deliveryAddress': self.delivery_address,
            'deliveryPhone': self.delivery_phone,
            'deliveryStatus': self.delivery_status,
            'notes': self.notes,
            'items': [item.to_dict() for item in self.items],
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }


class OrderItem(db.Model):
    """Snapshot of a product at purchase time"""
    __tablename__ = 'order_items'

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    order_id = db.Column(db.String(64), db.ForeignKey('orders.id'), nullable=False, index=True)
    product_id = db.Column(db.String(64), db.ForeignKey('products.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'orderId': self.order_id,
            'productId': self.product_id,
            'name': self.name,
            'quantity': self.quantity,
            'price': self.price,
            'subtotal': self.price * self.quantity,
        }


class ProductReview(db.Model):
    """Buyer rating of a product, one per user and product"""
    __tablename__ = 'product_reviews'
    __table_args__ = (db.UniqueConstraint('user_id', 'product_id', name='uq_review_user_product'),)

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False)
    product_id = db.Column(db.String(64), db.ForeignKey('products.id'), nullable=False, index=True)
    rating = db.Column(db.Float, nullable=False)
    comment = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utcnow)

    reviewer = db.relationship('User', lazy='joined')

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'productId': self.product_id,
            'rating': self.rating,
            'comment': self.comment,
            'reviewerName': self.reviewer.full_name if self.reviewer is not None else None,
            'createdAt': isoformat(self.created_at),
        }


# ============================================================
# NOTIFICATIONS
# ============================================================

class Notification(db.Model):
    """In-app notification addressed to one user"""
    __tablename__ = 'notifications'

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(16), nullable=False, default='system')
    status = db.Column(db.String(16), nullable=False, default='sent')
    priority = db.Column(db.Integer, nullable=False, default=1)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime)
    related_id = db.Column(db.String(64))
    channels = db.Column(db.Text, default='[]')
    scheduled_at = db.Column(db.DateTime)
    expires_at = db.Column(db.DateTime)
    # "metadata" is reserved on declarative classes
    extra_data = db.Column('metadata', db.Text, default='{}')
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    TYPES = ('system', 'payment', 'meeting', 'chama')
    STATUSES = ('scheduled', 'sent')
    CHANNELS = ('email', 'sms', 'push', 'in_app')
    PRIORITY_NAMES = {'low': 1, 'medium': 2, 'normal': 2, 'high': 3, 'urgent': 4, 'critical': 5}

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'title': self.title,
            'message': self.message,
            'type': self.type,
            'status': self.status,
            'priority': self.priority,
            'isRead': bool(self.is_read),
            'readAt': isoformat(self.read_at),
            'relatedId': self.related_id or None,
            'channels': load_json_list(self.channels),
            'scheduledAt': isoformat(self.scheduled_at),
            'expiresAt': isoformat(self.expires_at),
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }


class NotificationSettings(db.Model):
    """Per-user delivery preferences; exactly one row per user"""
    __tablename__ = 'notification_settings'

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id'), unique=True, nullable=False)
    email_notifications = db.Column(db.Boolean, default=True)
    sms_notifications = db.Column(db.Boolean, default=True)
    push_notifications = db.Column(db.Boolean, default=True)
    in_app_notifications = db.Column(db.Boolean, default=True)
    meeting_reminders = db.Column(db.Boolean, default=True)
    payment_alerts = db.Column(db.Boolean, default=True)
    chama_updates = db.Column(db.Boolean, default=True)
    system_alerts = db.Column(db.Boolean, default=True)
    quiet_hours_start = db.Column(db.String(5), default='22:00')
    quiet_hours_end = db.Column(db.String(5), default='07:00')
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # JSON key -> column
    FLAG_FIELDS = {
        'emailNotifications': 'email_notifications',
        'smsNotifications': 'sms_notifications',
        'pushNotifications': 'push_notifications',
        'inAppNotifications': 'in_app_notifications',
        'meetingReminders': 'meeting_reminders',
        'paymentAlerts': 'payment_alerts',
        'chamaUpdates': 'chama_updates',
        'systemAlerts': 'system_alerts',
    }
    TIME_FIELDS = {
        'quietHoursStart': 'quiet_hours_start',
        'quietHoursEnd': 'quiet_hours_end',
    }

    def to_dict(self):
        data = {'id': self.id, 'userId': self.user_id}
        for key, column in self.FLAG_FIELDS.items():
            data[key] = bool(getattr(self, column))
        for key, column in self.TIME_FIELDS.items():
            data[key] = getattr(self, column)
        data['updatedAt'] = isoformat(self.updated_at)
        return data


# ============================================================
# CHAMAS
# ============================================================

class Chama(db.Model):
    """Savings group"""
    __tablename__ = 'chamas'

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    type = db.Column(db.String(32), nullable=False, default='savings')
    county = db.Column(db.String(64))
    town = db.Column(db.String(64))
    contribution_amount = db.Column(db.Float, nullable=False, default=0)
    contribution_frequency = db.Column(db.String(16), nullable=False, default='monthly')
    max_members = db.Column(db.Integer, default=50)
    current_members = db.Column(db.Integer, default=0)
    is_public = db.Column(db.Boolean, default=True)
    created_by = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False)
    status = db.Column(db.String(16), nullable=False, default='active')
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    members = db.relationship('ChamaMember', backref='chama', lazy='selectin',
                              cascade='all, delete-orphan')

    TYPES = ('savings', 'investment', 'welfare', 'merry_go_round')
    FREQUENCIES = ('weekly', 'monthly', 'quarterly')

    @property
    def is_full(self):
        return self.max_members is not None and (self.current_members or 0) >= self.max_members

    def active_member(self, user_id):
        for member in self.members:
            if member.user_id == user_id and member.is_active:
                return member
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'type': self.type,
            'county': self.county,
            'town': self.town,
            'contributionAmount': self.contribution_amount,
            'contributionFrequency': self.contribution_frequency,
            'maxMembers': self.max_members,
            'currentMembers': self.current_members or 0,
            'isPublic': bool(self.is_public),
            'createdBy': self.created_by,
            'status': self.status,
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }


class ChamaMember(db.Model):
    """Membership of a user in a chama"""
    __tablename__ = 'chama_members'
    __table_args__ = (db.UniqueConstraint('chama_id', 'user_id', name='uq_chama_member'),)

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    chama_id = db.Column(db.String(64), db.ForeignKey('chamas.id'), nullable=False, index=True)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False)
    role = db.Column(db.String(16), nullable=False, default='member')
    is_active = db.Column(db.Boolean, default=True)
    joined_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship('User', lazy='joined')

    ROLES = ('chairperson', 'treasurer', 'secretary', 'member')
    OFFICIAL_ROLES = ('chairperson', 'treasurer', 'secretary')

    def to_dict(self):
        return {
            'id': self.id,
            'chamaId': self.chama_id,
            'userId': self.user_id,
            'role': self.role,
            'isActive': bool(self.is_active),
            'joinedAt': isoformat(self.joined_at),
            'user': {
                'firstName': self.user.first_name,
                'lastName': self.user.last_name,
                'phone': self.user.phone,
            } if self.user is not None else None,
        }


# ============================================================
# WALLETS
# ============================================================

class Wallet(db.Model):
    """Balance holder owned by a user or a chama"""
    __tablename__ = 'wallets'

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False, default='personal')
    balance = db.Column(db.Float, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default='KES')
    is_active = db.Column(db.Boolean, default=True)
    is_locked = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    TYPES = ('personal', 'chama')

    @property
    def is_usable(self):
        return self.is_active and not self.is_locked

    def to_dict(self):
        return {
            'id': self.id,
            'ownerId': self.owner_id,
            'type': self.type,
            'balance': self.balance,
            'currency': self.currency,
            'isActive': bool(self.is_active),
            'isLocked': bool(self.is_locked),
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }


class Transaction(db.Model):
    """Money movement into, out of, or between wallets"""
    __tablename__ = 'transactions'

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    from_wallet_id = db.Column(db.String(64), db.ForeignKey('wallets.id'), index=True)
    to_wallet_id = db.Column(db.String(64), db.ForeignKey('wallets.id'), index=True)
    type = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='KES')
    status = db.Column(db.String(16), nullable=False, default='completed')
    payment_method = db.Column(db.String(16))
    reference = db.Column(db.String(64), unique=True)
    description = db.Column(db.String(255))
    initiated_by = db.Column(db.String(64), db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    TYPES = ('deposit', 'withdrawal', 'transfer')
    PAYMENT_METHODS = ('mpesa', 'bank', 'card')

    def to_dict(self):
        return {
            'id': self.id,
            'fromWalletId': self.from_wallet_id,
            'toWalletId': self.to_wallet_id,
            'type': self.type,
            'amount': self.amount,
            'currency': self.currency,
            'status': self.status,
            'paymentMethod': self.payment_method,
            'reference': self.reference,
            'description': self.description,
            'initiatedBy': self.initiated_by,
            'createdAt': isoformat(self.created_at),
        }


# ============================================================
# REMINDERS
# ============================================================

class Reminder(db.Model):
    """Personal reminder, one-off or recurring"""
    __tablename__ = 'reminders'

    id = db.Column(db.String(64), primary_key=True, default=generate_id)
    user_id = db.Column(db.String(64), db.ForeignKey('users.id'), nullable=False, index=True)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500))
    reminder_type = db.Column(db.String(16), nullable=False, default='once')
    scheduled_at = db.Column(db.DateTime, nullable=False)
    is_enabled = db.Column(db.Boolean, default=True)
    is_completed = db.Column(db.Boolean, default=False)
    notification_sent = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    TYPES = ('once', 'daily', 'weekly', 'monthly')

    def next_scheduled_time(self, now=None):
        """
        Next occurrence for recurring reminders.

        One-time reminders have no next occurrence. A recurring reminder
        whose first time is still ahead returns that time; otherwise the
        interval is stepped forward until it passes `now`.
        """
        if self.reminder_type not in ('daily', 'weekly', 'monthly'):
            return None
        now = now or utcnow()
        if self.scheduled_at > now:
            return self.scheduled_at

        def occurrence(n):
            if self.reminder_type == 'daily':
                return self.scheduled_at + timedelta(days=n)
            if self.reminder_type == 'weekly':
                return self.scheduled_at + timedelta(weeks=n)
            return add_months(self.scheduled_at, n)

        n = 1
        next_time = occurrence(n)
        while next_time < now:
            n += 1
            next_time = occurrence(n)
        return next_time

    def should_send_notification(self, now=None):
        """True when a notification is due (within a minute for recurring)"""
        if not self.is_enabled or self.is_completed:
            return False
        now = now or utcnow()
        if self.reminder_type == 'once':
            return now > self.scheduled_at and not self.notification_sent
        next_time = self.next_scheduled_time(now)
        if next_time is None:
            return False
        return abs(next_time - now) <= timedelta(minutes=1)

    def to_dict(self):
        next_time = self.next_scheduled_time()
        return {
            'id': self.id,
            'userId': self.user_id,
            'title': self.title,
            'description': self.description,
            'reminderType': self.reminder_type,
            'scheduledAt': isoformat(self.scheduled_at),
            'nextScheduledAt': isoformat(next_time),
            'isEnabled': bool(self.is_enabled),
            'isCompleted': bool(self.is_completed),
            'notificationSent': bool(self.notification_sent),
            'createdAt': isoformat(self.created_at),
            'updatedAt': isoformat(self.updated_at),
        }
