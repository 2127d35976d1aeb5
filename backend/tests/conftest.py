"""
Pytest fixtures for storefront backend tests.

Provides test database setup, warehouse/product/cart fixtures, and test client.
"""

import pytest
from storefront import create_app
from storefront.extensions import db
from storefront.models import Cart, Product, ProductStock, User, Warehouse
from storefront.services.order_service import CheckoutItem, CheckoutRequest


# Coordinates used across the suite: three warehouses on Java.
JAKARTA = (-6.2000, 106.8166)
BANDUNG = (-6.9175, 107.6191)
SURABAYA = (-7.2575, 112.7521)


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PAYMENT_PROOF_UPLOAD_FOLDER': str(tmp_path_factory.mktemp("payment")),
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def user(db_session):
    user = User(username="sari", email="sari@example.com")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def other_user(db_session):
    user = User(username="budi", email="budi@example.com")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def warehouse_a(db_session):
    """Warehouse A (Jakarta)."""
    wh = Warehouse(name="Jakarta Hub", latitude=JAKARTA[0], longitude=JAKARTA[1])
    db_session.add(wh)
    db_session.commit()
    return wh


@pytest.fixture(scope='function')
def warehouse_b(db_session, warehouse_a):
    """Warehouse B (Bandung), nearer to Jakarta than C."""
    wh = Warehouse(name="Bandung Hub", latitude=BANDUNG[0], longitude=BANDUNG[1])
    db_session.add(wh)
    db_session.commit()
    return wh


@pytest.fixture(scope='function')
def warehouse_c(db_session, warehouse_b):
    """Warehouse C (Surabaya), farthest from Jakarta."""
    wh = Warehouse(name="Surabaya Hub", latitude=SURABAYA[0], longitude=SURABAYA[1])
    db_session.add(wh)
    db_session.commit()
    return wh


@pytest.fixture(scope='function')
def product_x(db_session):
    product = Product(name="Organic Rice 5kg", price=75000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_y(db_session):
    product = Product(name="Fresh Milk 1L", price=21000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def cart(db_session, user):
    """Active cart for `user`."""
    cart = Cart(user_id=user.id, is_active=True)
    db_session.add(cart)
    db_session.commit()
    return cart


@pytest.fixture(scope='function')
def set_stock(db_session):
    """Set (or create) the stock row for a product at a warehouse."""
    def _set(product, warehouse, quantity):
        row = db_session.query(ProductStock).filter_by(
            product_id=product.id, warehouse_id=warehouse.id
        ).first()
        if row is None:
            row = ProductStock(product_id=product.id, warehouse_id=warehouse.id, stock=quantity)
            db_session.add(row)
        else:
            row.stock = quantity
        db_session.commit()
        return row
    return _set


@pytest.fixture(scope='function')
def stock_of(db_session):
    """Read the committed stock for a product at a warehouse (None if no row)."""
    def _stock(product, warehouse):
        db_session.expire_all()
        row = db_session.query(ProductStock).filter_by(
            product_id=product.id, warehouse_id=warehouse.id
        ).first()
        return None if row is None else row.stock
    return _stock


def make_checkout_request(cart, items, coordinate=JAKARTA, **overrides) -> CheckoutRequest:
    """
    Build a checkout request.

    items: list of (product, quantity) tuples; price comes from the product.
    """
    checkout_items = [
        CheckoutItem(product_id=product.id, quantity=quantity, price=product.price)
        for product, quantity in items
    ]
    fields = {
        "cart_id": cart.id,
        "items": checkout_items,
        "latitude": coordinate[0],
        "longitude": coordinate[1],
        "total": sum(item.line_total for item in checkout_items),
        "shipping_cost": 10000,
        "payment_method": "BANK_TRANSFER",
    }
    fields.update(overrides)
    return CheckoutRequest(**fields)


def user_headers(user) -> dict:
    """Helper to create the upstream identity header."""
    return {'X-User-Id': str(user.id)}
