"""
Marketplace Routes
Products, cart, orders, reviews, categories and search
"""

import logging
from flask import Blueprint, g, request
from sqlalchemy import func, or_

from vaultke.auth import login_required, current_user_id
from vaultke.errors import ValidationError, BusinessRuleError, ForbiddenError, NotFoundError
from vaultke.models import User, Product, CartItem, Order, OrderItem, ProductReview
from vaultke.utils.helpers import dump_json
from vaultke.utils.responses import success_response, paginated
from vaultke.utils.validation import (
    get_json_body, get_pagination, get_sort, get_date_range, require_text,
    optional_text, is_number, is_integer, query_float
)

logger = logging.getLogger(__name__)

bp = Blueprint('marketplace', __name__)

# Category id -> (display name, icon)
CATEGORIES = {
    'agriculture': ('Agriculture', 'leaf'),
    'food_beverage': ('Food & Beverage', 'restaurant'),
    'clothing': ('Clothing', 'shirt'),
    'electronics': ('Electronics', 'phone-portrait'),
    'home_garden': ('Home & Garden', 'home'),
    'health_beauty': ('Health & Beauty', 'heart'),
    'sports_outdoors': ('Sports & Outdoors', 'football'),
    'books_media': ('Books & Media', 'book'),
    'automotive': ('Automotive', 'car'),
    'services': ('Services', 'construct'),
    'crafts': ('Crafts', 'color-palette'),
    'beauty': ('Beauty', 'flower'),
    'other': ('Other', 'ellipsis-horizontal'),
}

PAYMENT_METHODS = ('mpesa', 'cash', 'card', 'bank')
CANCELLABLE_STATUSES = ('pending', 'confirmed')

PRODUCT_SORT_FIELDS = {
    'createdAt': Product.created_at,
    'price': Product.price,
    'rating': Product.rating,
    'name': Product.name,
    'stock': Product.stock,
}


def _get_product(session, product_id):
    product = session.get(Product, product_id)
    if product is None:
        raise NotFoundError('Product not found')
    return product


def _validate_quantity(value):
    if not is_integer(value) or value <= 0:
        raise ValidationError('Quantity must be positive')
    return int(value)


def _validate_string_list(data, key):
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValidationError(f"{key} must be a list of strings")
    return value


def _filtered_products(session, search_required=False):
    """Product query with the shared list/search filters applied"""
    query = session.query(Product)

    q = (request.args.get('q') or '').strip()
    if search_required and not q:
        raise ValidationError('Search query is required')
    if q:
        pattern = f'%{q}%'
        query = query.filter(or_(Product.name.ilike(pattern),
                                 Product.description.ilike(pattern),
                                 Product.tags.ilike(pattern)))

    status = request.args.get('status', 'active')
    if status != 'all':
        query = query.filter(Product.status == status)

    category = request.args.get('category')
    if category:
        query = query.filter(Product.category == category)

    seller_id = request.args.get('sellerId')
    if seller_id:
        query = query.filter(Product.seller_id == seller_id)

    min_price = query_float('minPrice')
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    max_price = query_float('maxPrice')
    if max_price is not None:
        query = query.filter(Product.price <= max_price)

    min_rating = query_float('minRating')
    if min_rating is not None:
        query = query.filter(Product.rating >= min_rating)

    county = request.args.get('county')
    if county:
        query = query.filter(Product.county == county)
    town = request.args.get('town')
    if town:
        query = query.filter(Product.town == town)

    if request.args.get('inStock', '').lower() == 'true':
        query = query.filter(Product.stock > 0)

    return query, q


def _list_products(search_required=False):
    limit, offset = get_pagination()
    with g.db.session_scope() as session:
        query, q = _filtered_products(session, search_required=search_required)
        total = query.count()
        products = query.order_by(get_sort(PRODUCT_SORT_FIELDS, 'createdAt')) \
            .offset(offset).limit(limit).all()
        data = paginated('products', [p.to_dict() for p in products], total, limit, offset)
    if search_required:
        data['query'] = q
    return success_response(data)


# ============================================================
# PRODUCTS
# ============================================================

@bp.route('/products', methods=['GET'])
@login_required
def get_products():
    """List active products with filters, sorting and pagination"""
    return _list_products()


@bp.route('/products', methods=['POST'])
@login_required
def create_product():
    """Create a listing owned by the caller"""
    user_id = current_user_id()
    data = get_json_body()

    name = require_text(data, 'name', 'Name is required')
    description = require_text(data, 'description', 'Description is required')

    category = data.get('category')
    if category not in CATEGORIES:
        raise ValidationError('Invalid category')

    price = data.get('price')
    if not is_number(price) or price <= 0:
        raise ValidationError('Price must be positive')

    stock = data.get('stock', 0)
    if not is_integer(stock) or stock < 0:
        raise ValidationError('Stock must be non-negative')

    min_order = data.get('minOrder', 1)
    max_order = data.get('maxOrder')
    if not is_integer(min_order) or min_order < 1:
        raise ValidationError('Minimum order must be at least 1')
    if max_order is not None and (not is_integer(max_order) or max_order < min_order):
        raise ValidationError('Maximum order must be at least the minimum order')

    images = _validate_string_list(data, 'images') or []
    tags = _validate_string_list(data, 'tags') or []

    with g.db.session_scope() as session:
        seller = session.get(User, user_id)
        if seller is None:
            raise NotFoundError('User not found')

        product = Product(
            seller_id=user_id,
            name=name,
            description=description,
            category=category,
            price=float(price),
            stock=int(stock),
            min_order=int(min_order),
            max_order=int(max_order) if max_order is not None else None,
            images=dump_json(images),
            tags=dump_json(tags),
            status='active',
            county=optional_text(data, 'county') or seller.county,
            town=optional_text(data, 'town') or seller.town,
        )
        session.add(product)
        session.flush()
        payload = product.to_dict()

    logger.info(f"Product {payload['id']} created by {user_id}")
    return success_response({'product': payload}, 201, 'Product created successfully')


@bp.route('/products/<product_id>', methods=['GET'])
@login_required
def get_product(product_id):
    """Fetch one product; inactive listings remain viewable"""
    with g.db.session_scope() as session:
        product = _get_product(session, product_id)
        return success_response({'product': product.to_dict()})


@bp.route('/products/<product_id>', methods=['PUT'])
@login_required
def update_product(product_id):
    """Update a listing; seller only"""
    user_id = current_user_id()
    data = get_json_body()

    with g.db.session_scope() as session:
        product = _get_product(session, product_id)
        if product.seller_id != user_id:
            raise ForbiddenError('Only the seller can update this product')

        if 'name' in data:
            product.name = require_text(data, 'name', 'Name is required')
        if 'description' in data:
            product.description = require_text(data, 'description', 'Description is required')
        if 'category' in data:
            if data['category'] not in CATEGORIES:
                raise ValidationError('Invalid category')
            product.category = data['category']
        if 'price' in data:
            if not is_number(data['price']) or data['price'] <= 0:
                raise ValidationError('Price must be positive')
            product.price = float(data['price'])
        if 'stock' in data:
            if not is_integer(data['stock']) or data['stock'] < 0:
                raise ValidationError('Stock must be non-negative')
            product.stock = int(data['stock'])
        if 'status' in data:
            if data['status'] not in Product.STATUSES:
                raise ValidationError('Invalid status')
            product.status = data['status']
        if 'images' in data:
            product.images = dump_json(_validate_string_list(data, 'images'))
        if 'tags' in data:
            product.tags = dump_json(_validate_string_list(data, 'tags'))
        for key, column in (('county', 'county'), ('town', 'town')):
            if key in data:
                setattr(product, column, optional_text(data, key))

        session.flush()
        payload = product.to_dict()

    return success_response({'product': payload}, message='Product updated successfully')


@bp.route('/products/<product_id>', methods=['DELETE'])
@login_required
def delete_product(product_id):
    """Remove a listing and any cart lines or reviews that point at it"""
    user_id = current_user_id()
    with g.db.session_scope() as session:
        product = _get_product(session, product_id)
        if product.seller_id != user_id:
            raise ForbiddenError('Only the seller can delete this product')

        session.query(CartItem).filter_by(product_id=product_id).delete()
        session.query(ProductReview).filter_by(product_id=product_id).delete()
        session.delete(product)

    logger.info(f"Product {product_id} deleted by {user_id}")
    return success_response({'id': product_id}, message='Product deleted successfully')


@bp.route('/search', methods=['GET'])
@login_required
def search_products():
    """Full-text-ish search over name, description and tags"""
    return _list_products(search_required=True)


@bp.route('/categories', methods=['GET'])
@login_required
def get_categories():
    """All categories with active product counts"""
    with g.db.session_scope() as session:
        counts = dict(
            session.query(Product.category, func.count(Product.id))
            .filter(Product.status == 'active')
            .group_by(Product.category)
            .all()
        )

    categories = [
        {'id': key, 'name': name, 'icon': icon, 'productCount': counts.get(key, 0)}
        for key, (name, icon) in CATEGORIES.items()
    ]
    return success_response({'categories': categories})


# ============================================================
# CART
# ============================================================

@bp.route('/cart', methods=['GET'])
@login_required
def get_cart():
    user_id = current_user_id()
    with g.db.session_scope() as session:
        items = session.query(CartItem).filter_by(user_id=user_id) \
            .order_by(CartItem.added_at.desc()).all()
        payload = [item.to_dict() for item in items]
        total_amount = sum(item.subtotal for item in items)
        total_items = sum(item.quantity for item in items)

    return success_response({
        'items': payload,
        'totalAmount': total_amount,
        'totalItems': total_items,
    })


@bp.route('/cart', methods=['POST'])
@login_required
def add_to_cart():
    """Add a product to the cart, merging with an existing line"""
    user_id = current_user_id()
    data = get_json_body()

    product_id = data.get('productId')
    if not isinstance(product_id, str) or not product_id:
        raise ValidationError('Product ID is required')
    quantity = _validate_quantity(data.get('quantity', 1))

    with g.db.session_scope() as session:
        product = _get_product(session, product_id)
        if product.status != 'active':
            raise BusinessRuleError('Product is not available')
        if (product.stock or 0) <= 0:
            raise BusinessRuleError('Product is out of stock')

        item = session.query(CartItem).filter_by(user_id=user_id, product_id=product_id).first()
        in_cart = item.quantity if item is not None else 0
        if in_cart + quantity > product.stock:
            raise BusinessRuleError('Insufficient stock')

        if item is None:
            item = CartItem(user_id=user_id, product_id=product_id,
                            quantity=quantity, price=product.price)
            session.add(item)
        else:
            item.quantity = in_cart + quantity
            item.price = product.price
        session.flush()
        payload = item.to_dict()

    return success_response({'item': payload}, 201, 'Item added to cart')


def _get_cart_item(session, item_id, user_id):
    item = session.get(CartItem, item_id)
    if item is None or item.user_id != user_id:
        raise NotFoundError('Cart item not found')
    return item


@bp.route('/cart/<item_id>', methods=['PUT'])
@login_required
def update_cart_item(item_id):
    user_id = current_user_id()
    data = get_json_body()
    quantity = _validate_quantity(data.get('quantity'))

    with g.db.session_scope() as session:
        item = _get_cart_item(session, item_id, user_id)
        if item.product is not None and quantity > (item.product.stock or 0):
            raise BusinessRuleError('Insufficient stock')
        item.quantity = quantity
        session.flush()
        payload = item.to_dict()

    return success_response({'item': payload}, message='Cart item updated')


@bp.route('/cart/<item_id>', methods=['DELETE'])
@login_required
def remove_from_cart(item_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        item = _get_cart_item(session, item_id, user_id)
        session.delete(item)
    return success_response({'id': item_id}, message='Item removed from cart')


@bp.route('/cart/clear', methods=['POST'])
@login_required
def clear_cart():
    user_id = current_user_id()
    with g.db.session_scope() as session:
        removed = session.query(CartItem).filter_by(user_id=user_id).delete()
    return success_response({'removed': removed}, message='Cart cleared')


# ============================================================
# ORDERS
# ============================================================

def _get_order(session, order_id, user_id):
    order = session.get(Order, order_id)
    if order is None:
        raise NotFoundError('Order not found')
    if user_id not in (order.buyer_id, order.seller_id):
        raise ForbiddenError('Access denied')
    return order


@bp.route('/orders', methods=['GET'])
@login_required
def get_orders():
    """Orders where the caller is the buyer (or the seller, with ?role=seller)"""
    user_id = current_user_id()
    limit, offset = get_pagination()
    start_at, end_at = get_date_range()

    with g.db.session_scope() as session:
        query = session.query(Order)
        if request.args.get('role') == 'seller':
            query = query.filter(Order.seller_id == user_id)
        else:
            query = query.filter(Order.buyer_id == user_id)

        status = request.args.get('status')
        if status:
            query = query.filter(Order.status == status)
        if start_at is not None:
            query = query.filter(Order.created_at >= start_at)
        if end_at is not None:
            query = query.filter(Order.created_at < end_at)

        total = query.count()
        orders = query.order_by(Order.created_at.desc()).offset(offset).limit(limit).all()
        data = paginated('orders', [o.to_dict() for o in orders], total, limit, offset)

    return success_response(data)


@bp.route('/orders', methods=['POST'])
@login_required
def create_order():
    """
    Place an order for a list of {productId, quantity}

    Items from different sellers are split into one order per seller.
    Stock is reserved and the purchased lines leave the caller's cart.
    """
    user_id = current_user_id()
    data = get_json_body()

    items = data.get('items')
    if not isinstance(items, list) or not items:
        raise ValidationError('Order items are required')
    delivery_address = require_text(data, 'deliveryAddress', 'Delivery address is required')

    payment_method = data.get('paymentMethod', 'mpesa')
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError('Invalid payment method')

    requested = []
    for entry in items:
        if not isinstance(entry, dict):
            raise ValidationError('Invalid order item')
        product_id = entry.get('productId')
        if not isinstance(product_id, str) or not product_id:
            raise ValidationError('Product ID is required')
        requested.append((product_id, _validate_quantity(entry.get('quantity', 1))))

    with g.db.session_scope() as session:
        buyer = session.get(User, user_id)
        if buyer is None:
            raise NotFoundError('User not found')

        by_seller = {}
        for product_id, quantity in requested:
            product = _get_product(session, product_id)
            if product.status != 'active':
                raise BusinessRuleError(f'Product is not available: {product.name}')
            if (product.stock or 0) <= 0:
                raise BusinessRuleError('Product is out of stock')
            if quantity > product.stock:
                raise BusinessRuleError('Insufficient stock')
            product.stock -= quantity
            by_seller.setdefault(product.seller_id, []).append((product, quantity))

        orders = []
        for seller_id, lines in by_seller.items():
            order = Order(
                buyer_id=user_id,
                seller_id=seller_id,
                total_amount=sum(product.price * quantity for product, quantity in lines),
                payment_method=payment_method,
                delivery_address=delivery_address,
                delivery_phone=optional_text(data, 'deliveryPhone') or buyer.phone,
                notes=optional_text(data, 'notes'),
            )
            for product, quantity in lines:
                order.items.append(OrderItem(product_id=product.id, name=product.name,
                                             quantity=quantity, price=product.price))
            session.add(order)
            orders.append(order)

        session.query(CartItem).filter(
            CartItem.user_id == user_id,
            CartItem.product_id.in_([product_id for product_id, _ in requested])
        ).delete(synchronize_session=False)

        session.flush()
        payload = [order.to_dict() for order in orders]

    logger.info(f"User {user_id} placed {len(payload)} order(s)")
    return success_response({'order': payload[0], 'orders': payload}, 201,
                            'Order created successfully')


@bp.route('/orders/<order_id>', methods=['GET'])
@login_required
def get_order(order_id):
    user_id = current_user_id()
    with g.db.session_scope() as session:
        order = _get_order(session, order_id, user_id)
        return success_response({'order': order.to_dict()})


@bp.route('/orders/<order_id>', methods=['PUT'])
@login_required
def update_order(order_id):
    """
    Sellers move an order through its statuses; buyers may edit
    delivery details while it is still pending
    """
    user_id = current_user_id()
    data = get_json_body()

    with g.db.session_scope() as session:
        order = _get_order(session, order_id, user_id)
        if order.is_final:
            raise BusinessRuleError(f'Cannot update a {order.status} order')

        if 'status' in data:
            if order.seller_id != user_id:
                raise ForbiddenError('Only the seller can update order status')
            if data['status'] not in Order.STATUSES:
                raise ValidationError('Invalid order status')
            if data['status'] == 'cancelled':
                raise BusinessRuleError('Orders are cancelled with DELETE so reserved stock is released')
            order.status = data['status']
            if order.status == 'delivered':
                order.delivery_status = 'delivered'
            if order.status == 'completed':
                order.delivery_status = 'delivered'
                order.payment_status = 'paid'

        if 'paymentStatus' in data:
            if order.seller_id != user_id:
                raise ForbiddenError('Only the seller can update payment status')
            if data['paymentStatus'] not in ('pending', 'paid', 'failed', 'refunded'):
                raise ValidationError('Invalid payment status')
            order.payment_status = data['paymentStatus']

        for key, column in (('deliveryAddress', 'delivery_address'),
                            ('deliveryPhone', 'delivery_phone'),
                            ('notes', 'notes')):
            if key in data:
                if order.buyer_id != user_id or order.status != 'pending':
                    raise ForbiddenError('Delivery details can only be changed by the buyer while pending')
                setattr(order, column, optional_text(data, key))

        session.flush()
        payload = order.to_dict()

    return success_response({'order': payload}, message='Order updated successfully')


@bp.route('/orders/<order_id>', methods=['DELETE'])
@login_required
def cancel_order(order_id):
    """Cancel a pending order and release its reserved stock"""
    user_id = current_user_id()
    with g.db.session_scope() as session:
        order = _get_order(session, order_id, user_id)
        if order.status not in CANCELLABLE_STATUSES:
            raise BusinessRuleError('Only pending orders can be cancelled')

        for item in order.items:
            product = session.get(Product, item.product_id)
            if product is not None:
                product.stock = (product.stock or 0) + item.quantity
        order.status = 'cancelled'
        session.flush()
        payload = order.to_dict()

    logger.info(f"Order {order_id} cancelled by {user_id}")
    return success_response({'order': payload}, message='Order cancelled successfully')


# ============================================================
# REVIEWS
# ============================================================

@bp.route('/reviews', methods=['GET'])
@login_required
def get_reviews():
    limit, offset = get_pagination()
    with g.db.session_scope() as session:
        query = session.query(ProductReview)
        product_id = request.args.get('productId')
        if product_id:
            query = query.filter(ProductReview.product_id == product_id)

        total = query.count()
        average = query.with_entities(func.avg(ProductReview.rating)).scalar()
        reviews = query.order_by(ProductReview.created_at.desc()) \
            .offset(offset).limit(limit).all()
        data = paginated('reviews', [r.to_dict() for r in reviews], total, limit, offset,
                         averageRating=round(average, 2) if average is not None else 0)

    return success_response(data)


@bp.route('/reviews', methods=['POST'])
@login_required
def create_review():
    """Rate a product (1-5) and refresh its aggregate rating"""
    user_id = current_user_id()
    data = get_json_body()

    product_id = data.get('productId')
    if not isinstance(product_id, str) or not product_id:
        raise ValidationError('Product ID is required')
    rating = data.get('rating')
    if not is_number(rating) or not 1 <= rating <= 5:
        raise ValidationError('Rating must be between 1 and 5')

    with g.db.session_scope() as session:
        product = _get_product(session, product_id)
        if product.seller_id == user_id:
            raise BusinessRuleError('You cannot review your own product')
        existing = session.query(ProductReview).filter_by(user_id=user_id, product_id=product_id).first()
        if existing is not None:
            raise BusinessRuleError('You have already reviewed this product')

        review = ProductReview(user_id=user_id, product_id=product_id, rating=float(rating),
                               comment=optional_text(data, 'comment', max_length=1000))
        session.add(review)
        session.flush()

        count, average = session.query(func.count(ProductReview.id), func.avg(ProductReview.rating)) \
            .filter(ProductReview.product_id == product_id).one()
        product.total_ratings = count
        product.rating = round(average or 0, 2)
        payload = review.to_dict()

    return success_response({'review': payload}, 201, 'Review created successfully')
