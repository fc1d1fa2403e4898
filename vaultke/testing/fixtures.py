"""
Test Fixtures
Deterministic seed graph for integration suites; every primary key starts with 'test-'
"""

import logging
from datetime import datetime, timedelta
from functools import lru_cache

from werkzeug.security import generate_password_hash

from vaultke.models import (
    User, Product, CartItem, Order, OrderItem, ProductReview, Notification,
    NotificationSettings, Chama, ChamaMember, Wallet, Transaction, Reminder
)
from vaultke.utils.helpers import utcnow, dump_json

logger = logging.getLogger(__name__)

TEST_PASSWORD = 'password123'
TEST_PREFIX = 'test-'

DEFAULT_USER_ID = 'test-user-123'
ADMIN_USER_ID = 'test-admin-123'

# Table name -> documented fixture keys, in insertion order
FIXTURE_IDS = {
    'users': ('test-user-123', 'test-user-456', 'test-user-789', 'test-admin-123'),
    'products': ('test-product-123', 'test-product-456', 'test-product-789',
                 'test-product-012', 'test-product-out-of-stock'),
    'cart_items': ('test-cart-item-123', 'test-cart-item-456'),
    'orders': ('test-order-123', 'test-order-456'),
    'order_items': ('test-order-item-123', 'test-order-item-456'),
    'product_reviews': ('test-review-123', 'test-review-456'),
    'notifications': ('test-notification-123', 'test-notification-456', 'test-notification-789',
                      'test-notification-012', 'test-notification-345'),
    'notification_settings': ('test-settings-123', 'test-settings-456'),
    'chamas': ('test-chama-123',),
    'chama_members': ('test-member-123', 'test-member-456'),
    'wallets': ('test-wallet-123', 'test-wallet-456', 'test-wallet-chama-123'),
    'transactions': ('test-transaction-123',),
    'reminders': ('test-reminder-123', 'test-reminder-456'),
}


@lru_cache(maxsize=1)
def password_hash():
    """Hash of TEST_PASSWORD, computed once per process"""
    return generate_password_hash(TEST_PASSWORD)


def _users():
    hashed = password_hash()
    people = (
        ('test-user-123', 'test@example.com', '+254712345678', 'John', 'Doe', 'user'),
        ('test-user-456', 'jane@example.com', '+254712345679', 'Jane', 'Smith', 'user'),
        ('test-user-789', 'bob@example.com', '+254712345680', 'Bob', 'Wilson', 'user'),
        ('test-admin-123', 'admin@example.com', '+254712345681', 'Admin', 'User', 'admin'),
    )
    return [
        User(id=uid, email=email, phone=phone, first_name=first, last_name=last,
             password_hash=hashed, role=role, status='active', is_email_verified=True,
             is_phone_verified=True, county='Nairobi', town='Westlands', rating=4.5,
             total_ratings=10)
        for uid, email, phone, first, last, role in people
    ]


def _products():
    return [
        Product(id='test-product-123', seller_id='test-user-123', name='Test Product',
                description='A test product description', category='electronics',
                price=15000, stock=10, images=dump_json(['image1.jpg']),
                tags=dump_json(['phone', 'android']), status='active',
                county='Nairobi', town='Westlands', rating=5, total_ratings=1),
        Product(id='test-product-456', seller_id='test-user-789', name='Test Product 2',
                description='Another test product', category='clothing', price=2500,
                stock=5, status='active', county='Mombasa', town='Nyali',
                rating=4, total_ratings=1),
        Product(id='test-product-789', seller_id='test-user-456', name='Test Product 3',
                description='An inactive product', category='electronics', price=8000,
                stock=0, status='inactive', county='Kisumu', town='Milimani'),
        Product(id='test-product-012', seller_id='test-user-789', name='Test Product 4',
                description='Handwoven kiondo basket', category='crafts', price=1200,
                stock=25, tags=dump_json(['handmade']), status='active',
                county='Nairobi', town='Westlands'),
        Product(id='test-product-out-of-stock', seller_id='test-user-456',
                name='Out of Stock Product', description='Nothing left', category='electronics',
                price=5000, stock=0, status='active', county='Nairobi', town='CBD'),
    ]


def _cart_items():
    return [
        CartItem(id='test-cart-item-123', user_id='test-user-123',
                 product_id='test-product-456', quantity=2, price=2500),
        CartItem(id='test-cart-item-456', user_id='test-user-123',
                 product_id='test-product-789', quantity=1, price=8000),
    ]


def _orders():
    return [
        Order(id='test-order-123', buyer_id='test-user-123', seller_id='test-user-456',
              total_amount=8000, status='pending', payment_method='mpesa',
              payment_status='pending', delivery_address='123 Test Street, Nairobi',
              delivery_phone='+254712345678', delivery_status='pending'),
        Order(id='test-order-456', buyer_id='test-user-123', seller_id='test-user-789',
              total_amount=2500, status='completed', payment_method='mpesa',
              payment_status='paid', delivery_address='456 Test Avenue, Nairobi',
              delivery_phone='+254712345678', delivery_status='delivered'),
    ]


def _order_items():
    return [
        OrderItem(id='test-order-item-123', order_id='test-order-123',
                  product_id='test-product-789', name='Test Product 3', quantity=1, price=8000),
        OrderItem(id='test-order-item-456', order_id='test-order-456',
                  product_id='test-product-456', name='Test Product 2', quantity=1, price=2500),
    ]


def _reviews():
    return [
        ProductReview(id='test-review-123', user_id='test-user-456',
                      product_id='test-product-123', rating=5, comment='Excellent product!'),
        ProductReview(id='test-review-456', user_id='test-user-456',
                      product_id='test-product-456', rating=4, comment='Good value'),
    ]


def _notifications(now):
    return [
        Notification(id='test-notification-123', user_id='test-user-123',
                     title='Test Notification', message='This is a test notification',
                     type='system', status='scheduled', priority=1, is_read=False,
                     scheduled_at=now + timedelta(hours=1)),
        Notification(id='test-notification-456', user_id='test-user-123',
                     title='Payment Received', message='You received KES 1,000',
                     type='payment', status='sent', priority=2, is_read=False,
                     related_id='test-transaction-123'),
        Notification(id='test-notification-789', user_id='test-user-123',
                     title='Meeting Reminder', message='Chama meeting tomorrow at 10am',
                     type='meeting', status='sent', priority=3, is_read=True,
                     read_at=datetime(2024, 6, 15, 10, 0),
                     created_at=datetime(2024, 6, 15, 9, 0)),
        Notification(id='test-notification-012', user_id='test-user-456',
                     title='Chama Update', message='New member joined your chama',
                     type='chama', status='sent', priority=2, is_read=False,
                     related_id='test-chama-123'),
        Notification(id='test-notification-345', user_id='test-user-123',
                     title='Scheduled Notification', message='Contribution due tomorrow',
                     type='system', status='scheduled', priority=1, is_read=False,
                     scheduled_at=now + timedelta(hours=24)),
    ]


def _settings():
    return [
        NotificationSettings(id='test-settings-123', user_id='test-user-123',
                             quiet_hours_start='22:00', quiet_hours_end='07:00'),
        NotificationSettings(id='test-settings-456', user_id='test-user-456',
                             sms_notifications=False, chama_updates=False,
                             quiet_hours_start='23:00', quiet_hours_end='06:00'),
    ]


def _chamas():
    return [
        Chama(id='test-chama-123', name='Test Chama', description='A test savings group',
              type='savings', county='Nairobi', town='Westlands', contribution_amount=5000,
              contribution_frequency='monthly', max_members=20, current_members=2,
              is_public=True, created_by='test-user-123', status='active'),
    ]


def _chama_members():
    return [
        ChamaMember(id='test-member-123', chama_id='test-chama-123',
                    user_id='test-user-123', role='chairperson'),
        ChamaMember(id='test-member-456', chama_id='test-chama-123',
                    user_id='test-user-456', role='treasurer'),
    ]


def _wallets():
    return [
        Wallet(id='test-wallet-123', owner_id='test-user-123', type='personal', balance=10000),
        Wallet(id='test-wallet-456', owner_id='test-user-456', type='personal', balance=5000),
        Wallet(id='test-wallet-chama-123', owner_id='test-chama-123', type='chama',
               balance=50000),
    ]


def _transactions():
    return [
        Transaction(id='test-transaction-123', to_wallet_id='test-wallet-123', type='deposit',
                    amount=10000, status='completed', payment_method='mpesa',
                    reference='TXN-TEST-0001', description='Initial deposit',
                    initiated_by='test-user-123'),
    ]


def _reminders(now):
    return [
        Reminder(id='test-reminder-123', user_id='test-user-123', title='Monthly contribution',
                 description='Pay the Test Chama contribution', reminder_type='monthly',
                 scheduled_at=now + timedelta(days=1)),
        Reminder(id='test-reminder-456', user_id='test-user-456', title='Call the treasurer',
                 reminder_type='once', scheduled_at=now + timedelta(days=2)),
    ]


def insert_test_data(store):
    """
    Seed the fixture graph in referential order

    users -> products -> cart items -> orders -> order items -> reviews
    -> notifications -> settings -> chamas -> members -> wallets
    -> transactions -> reminders
    """
    now = utcnow()
    groups = (
        _users(), _products(), _cart_items(), _orders(), _order_items(), _reviews(),
        _notifications(now), _settings(), _chamas(), _chama_members(), _wallets(),
        _transactions(), _reminders(now),
    )
    with store.session_scope() as session:
        for rows in groups:
            session.add_all(rows)
            session.flush()
    logger.debug(f"Seeded {sum(len(rows) for rows in groups)} fixture rows")


def cleanup_test_data(store):
    """Delete every row whose key starts with 'test-', children first"""
    removed = 0
    with store.session_scope() as session:
        for table in reversed(store.tables):
            result = session.execute(table.delete().where(table.c.id.like(f'{TEST_PREFIX}%')))
            removed += result.rowcount or 0
    logger.debug(f"Removed {removed} fixture rows")
    return removed


def fixture_keys(store):
    """Primary keys currently present, per table (for isolation checks)"""
    keys = {}
    with store.session_scope() as session:
        for table in store.tables:
            ids = sorted(row[0] for row in session.execute(table.select().with_only_columns(table.c.id)))
            if ids:
                keys[table.name] = tuple(ids)
    return keys
